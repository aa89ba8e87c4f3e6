"""Loopback demo for the signaling relay and the aiortc transport.

Starts two clients in one process, registers both with a running relay, lets
the first call the second and exchanges a few chat messages over the data
channel once it opens.

Examples
--------
Start a relay, then run the demo against it::

    peerlink-relay --profile lan
    python scripts/demo_loopback.py --relay ws://127.0.0.1:8080

Press Ctrl+C to end the call early.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Iterable

from peerlink import PeerLinkConfig
from peerlink.client import PeerClient, PeerEvents
from peerlink.rtc.negotiation import ConnectivityState
from peerlink.utils.logging import configure_logging

LOG = logging.getLogger("peerlink.demo")


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PeerLink loopback demo")
    parser.add_argument("--relay", default="ws://127.0.0.1:8080", help="relay WebSocket URL")
    parser.add_argument("--caller", default="alice", help="identifier of the calling side")
    parser.add_argument("--callee", default="bob", help="identifier of the called side")
    parser.add_argument(
        "--message",
        action="append",
        default=[],
        help="chat message to send once the channel opens (repeatable).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="seconds to wait for the data channel before giving up.",
    )
    return parser.parse_args(argv)


def make_events(name: str) -> PeerEvents:
    def on_connectivity(state: ConnectivityState) -> None:
        LOG.info("[%s] connectivity %s", name, state.value)

    def on_message(data, from_remote: bool) -> None:
        LOG.info("[%s] %s: %s", name, "remote" if from_remote else "local", data)

    def on_negotiation(state) -> None:
        LOG.info("[%s] negotiation %s", name, state.value)

    return PeerEvents(
        on_connectivity_change=on_connectivity,
        on_app_message=on_message,
        on_negotiation_state=on_negotiation,
    )


async def wait_for_channel(client: PeerClient, timeout: float) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if client.channel_ready:
            return True
        await asyncio.sleep(0.1)
    return False


async def run_demo(args: argparse.Namespace) -> int:
    config = PeerLinkConfig(relay_url=args.relay, ice_servers=[])
    caller = PeerClient(config, make_events(args.caller))
    callee = PeerClient(config, make_events(args.callee))

    await caller.connect()
    await callee.connect()
    try:
        await caller.register(args.caller)
        await callee.register(args.callee)
        # Registration has no acknowledgment; give the relay a moment.
        await asyncio.sleep(0.2)

        await caller.create_offer(args.callee)
        if not await wait_for_channel(caller, args.timeout):
            LOG.error("Data channel did not open within %.1fs", args.timeout)
            return 1

        for text in args.message or ["hello", "how are you?"]:
            caller.send_app_message(text)
        await asyncio.sleep(1.0)
        if callee.channel_ready:
            callee.send_app_message("bye")
            await asyncio.sleep(0.5)
    finally:
        await caller.close()
        await callee.close()
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(logging.INFO)
    try:
        return asyncio.run(run_demo(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
