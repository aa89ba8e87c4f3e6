"""
WebSocket client for the signaling relay.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Awaitable, Callable, Optional

import websockets

from ..api.schemas import SignalMessage
from ..errors import SignalingError

LOG = logging.getLogger(__name__)

MessageHandler = Callable[[SignalMessage], Awaitable[None]]


class SignalingChannel:
    """
    Persistent connection to the relay.

    Inbound frames are parsed and handed to ``on_message`` one at a time, in
    the order the relay delivered them.  Frames that do not parse are logged
    and skipped.
    """

    def __init__(self, url: str, on_message: Optional[MessageHandler] = None) -> None:
        self.url = url
        self.on_message = on_message
        self._websocket: Optional[websockets.ClientConnection] = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    async def connect(self) -> None:
        if self._websocket is not None:
            return
        try:
            self._websocket = await websockets.connect(self.url)
        except OSError as exc:
            raise SignalingError(f"could not reach relay at {self.url}: {exc}") from exc
        LOG.info("Connected to signaling relay %s", self.url)
        self._reader = asyncio.create_task(self._read_loop(self._websocket))

    async def send(self, message: SignalMessage) -> None:
        websocket = self._websocket
        if websocket is None:
            raise SignalingError("signaling channel is not connected")
        try:
            await websocket.send(json.dumps(message.to_wire()))
        except websockets.ConnectionClosed as exc:
            self._websocket = None
            raise SignalingError("signaling connection closed") from exc

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        reader, self._reader = self._reader, None
        if websocket is not None:
            await websocket.close()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

    async def _read_loop(self, websocket: websockets.ClientConnection) -> None:
        try:
            async for raw in websocket:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                try:
                    message = SignalMessage.parse_frame(raw)
                except ValueError as exc:
                    LOG.warning("Ignoring malformed signaling frame: %s", exc)
                    continue
                if self.on_message is None:
                    continue
                try:
                    await self.on_message(message)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    LOG.exception("Failed to handle %s from %s", message.type, message.sender_id)
        except websockets.ConnectionClosed:
            LOG.info("Signaling relay closed the connection")
        finally:
            if self._websocket is websocket:
                self._websocket = None
