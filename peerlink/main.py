"""
Relay process entrypoint.

Resolves the configuration profile, initialises logging and serves the
signaling relay with uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from . import PeerLinkConfig
from .api.server import SignalingRelay, create_app
from .config import load_config
from .errors import ConfigError
from .utils.logging import configure_logging, resolve_level

LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(relay: SignalingRelay) -> AsyncIterator[None]:
    LOG.info("Relay lifespan starting")
    try:
        yield
    finally:
        LOG.info("Relay lifespan shutting down (%d clients registered)", len(relay.registry))


async def serve(config: PeerLinkConfig) -> None:
    """
    Run the signaling relay inside an asyncio loop.

    Parameters
    ----------
    config:
        Resolved configuration; ``host`` and ``port`` select the bind address.
    """

    import uvicorn

    configure_logging(config.log_level)
    relay = SignalingRelay(queue_size=config.queue_size)

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        async with lifespan(relay):
            yield

    app = create_app(config=config, relay=relay, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=config.host,
        port=config.port,
        log_config=None,
        log_level=resolve_level(config.log_level),
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down relay...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    LOG.info("Signaling relay listening on ws://%s:%s", config.host, config.port)
    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PeerLink signaling relay")
    parser.add_argument("--profile", default="default", help="configuration profile to load")
    parser.add_argument("--profiles-file", default=None, help="path to an alternative profiles.yaml")
    parser.add_argument("--host", default=None, help="bind host for the relay")
    parser.add_argument("--port", type=int, default=None, help="bind port for the relay")
    parser.add_argument("--log-level", default=None, help="logging level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PeerLinkConfig:
    return load_config(
        args.profile,
        path=args.profiles_file,
        overrides={"host": args.host, "port": args.port, "log_level": args.log_level},
    )


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ConfigError as exc:
        raise SystemExit(f"peerlink-relay: {exc}") from exc

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        LOG.info("Relay interrupted by user.")


if __name__ == "__main__":
    run()
