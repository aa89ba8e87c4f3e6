"""
Logging helpers for PeerLink.

The relay and the client share one root logger configuration so uvicorn's
access log and the signaling logs end up in the same stream.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
PACKAGE_LOGGER = "peerlink"


def resolve_level(level: Union[int, str]) -> int:
    """Translate ``"debug"``/``"INFO"``/``10`` style values into a logging level."""

    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level '{level}'")
    return resolved


def configure_logging(level: Union[int, str] = logging.INFO, format: Optional[str] = None) -> None:
    """
    Install a stdout handler on the root logger unless one is already present.

    When the host application configured logging first, only the ``peerlink``
    loggers are set to ``level``.
    """

    numeric_level = resolve_level(level)
    if logging.getLogger().handlers:
        logging.getLogger(PACKAGE_LOGGER).setLevel(numeric_level)
        return

    logging.basicConfig(
        level=numeric_level,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
