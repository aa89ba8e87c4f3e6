"""
Profile-based configuration loading.
"""

from __future__ import annotations

import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from . import PeerLinkConfig
from .errors import ConfigError
from .utils.logging import resolve_level

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"
ENV_PROFILES_VAR = "PEERLINK_PROFILES"

LOG = logging.getLogger(__name__)

_FIELD_NAMES = {item.name for item in fields(PeerLinkConfig)}


def resolve_profiles_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_PROFILES_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return PROFILES_PATH


def load_profiles(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """
    Read every profile from the YAML profiles file.

    A missing file yields an empty mapping so the built-in defaults apply.
    """

    profiles_path = resolve_profiles_path(path)
    try:
        with profiles_path.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.debug("Profiles file %s not found; using defaults", profiles_path)
        return {}
    if not isinstance(profiles, dict):
        raise ConfigError(f"Profiles file {profiles_path} must contain a mapping")
    return {str(name): dict(values or {}) for name, values in profiles.items()}


def load_config(
    profile: str = "default",
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PeerLinkConfig:
    """
    Build a :class:`PeerLinkConfig` for ``profile``.

    Non-default profiles are layered on top of the ``default`` profile, and
    ``overrides`` (typically CLI flags) win over both. ``None`` overrides are
    ignored.
    """

    profiles = load_profiles(path)
    if profile != "default" and profile not in profiles:
        raise ConfigError(f"Unknown profile '{profile}'")

    values: Dict[str, Any] = {}
    values.update(profiles.get("default", {}))
    if profile != "default":
        values.update(profiles[profile])
    if overrides:
        values.update({key: value for key, value in overrides.items() if value is not None})

    unknown = sorted(set(values) - _FIELD_NAMES)
    if unknown:
        LOG.warning("Ignoring unknown config keys for profile %s: %s", profile, ", ".join(unknown))
    values = {key: value for key, value in values.items() if key in _FIELD_NAMES}
    values["profile"] = profile

    try:
        config = PeerLinkConfig(**values)
        config.port = int(config.port)
        config.queue_size = max(1, int(config.queue_size))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in profile '{profile}': {exc}") from exc
    servers = config.ice_servers or []
    if isinstance(servers, str):
        servers = [servers]
    config.ice_servers = [str(url) for url in servers]

    try:
        resolve_level(config.log_level)
    except ValueError as exc:
        raise ConfigError(f"Invalid log_level in profile '{profile}': {exc}") from exc
    if isinstance(config.log_level, str):
        config.log_level = config.log_level.strip().upper()
    return config
