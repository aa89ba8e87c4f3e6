"""
FastAPI signaling relay.

The relay binds user-chosen identifiers to WebSocket connections and forwards
``offer``/``answer``/``candidate`` frames, unchanged, to the connection bound
to the frame's target.  Delivery is fire-and-forget: a frame addressed to an
identifier that is not registered is dropped and the sender is never told.
There is no acknowledgment channel in the protocol, so there are no retries.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from enum import Enum
from typing import Callable, Optional, Protocol

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .. import PeerLinkConfig
from ..registry import ClientRegistry
from . import schemas
from .schemas import SignalMessage

LOG = logging.getLogger(__name__)


class RelayOutcome(str, Enum):
    REGISTERED = "registered"
    FORWARDED = "forwarded"
    DROPPED = "dropped"
    MALFORMED = "malformed"


class RelayConnection(Protocol):
    session_id: str

    async def deliver(self, text: str) -> None:
        ...


class RelaySession:
    """Track one signaling WebSocket and run its send/receive loops."""

    def __init__(self, relay: "SignalingRelay", websocket: WebSocket, *, queue_size: int) -> None:
        self.relay = relay
        self.websocket = websocket
        self.session_id = uuid.uuid4().hex
        self.send_queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._stop_event = asyncio.Event()
        self._closing = False
        self.logger = LOG.getChild(f"ws.{self.session_id[:8]}")

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> None:
        try:
            await self.websocket.accept()
        except Exception:  # pragma: no cover - defensive
            self.logger.exception("Failed to accept WebSocket connection")
            return

        LOG.info("Signaling client connected session=%s", self.session_id)
        try:
            async with asyncio.TaskGroup() as task_group:
                task_group.create_task(self._recv_loop())
                task_group.create_task(self._send_loop())
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - defensive
            self.logger.exception("Signaling session crashed")
        finally:
            await self.relay.on_disconnect(self)
            await self.close(code=1000)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self._closing:
            return
        self._closing = True
        self._stop_event.set()
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await self.websocket.close(code=code, reason=reason)

    async def deliver(self, text: str) -> None:
        """
        Queue a frame for this connection.

        Frames are dropped when the session is stopped or its queue is full;
        the relay makes no delivery guarantee.
        """

        if self.is_stopped:
            return
        try:
            self.send_queue.put_nowait(text)
        except asyncio.QueueFull:
            self.logger.warning("Dropping frame due to backpressure")

    async def _recv_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    message = await self.websocket.receive()
                except asyncio.CancelledError:
                    raise
                except (WebSocketDisconnect, RuntimeError):
                    break

                if message.get("type") == "websocket.disconnect":
                    break

                text = message.get("text")
                if text is None:
                    raw_bytes = message.get("bytes")
                    if raw_bytes is None:
                        continue
                    try:
                        text = raw_bytes.decode("utf-8")
                    except UnicodeDecodeError:
                        self.logger.warning("Discarding non UTF-8 binary frame")
                        continue

                try:
                    await self.relay.handle_message(self, text)
                except asyncio.CancelledError:
                    raise
                except Exception:  # pragma: no cover - guard rails
                    self.logger.exception("Unhandled error while relaying frame")
        finally:
            self._stop_event.set()

    async def _send_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    outbound = await asyncio.wait_for(self.send_queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self.websocket.send_text(outbound)
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    self._stop_event.set()
                    break
                except RuntimeError as exc:
                    message = str(exc)
                    if "close message has been sent" in message:
                        self.logger.debug("Send after close ignored: %s", message)
                    else:
                        self.logger.exception("Failed to send frame", exc_info=exc)
                    self._stop_event.set()
                    break
                finally:
                    self.send_queue.task_done()
        finally:
            self._stop_event.set()


class SignalingRelay:
    """Route signaling frames between registered connections."""

    def __init__(
        self,
        registry: Optional[ClientRegistry[RelayConnection]] = None,
        *,
        queue_size: int = 256,
    ) -> None:
        self.registry: ClientRegistry[RelayConnection] = registry if registry is not None else ClientRegistry()
        self.queue_size = max(1, int(queue_size))

    async def run(self, websocket: WebSocket) -> None:
        session = RelaySession(self, websocket, queue_size=self.queue_size)
        await session.run()

    async def handle_message(self, connection: RelayConnection, text: str) -> RelayOutcome:
        try:
            message = SignalMessage.parse_frame(text)
        except ValueError as exc:
            LOG.warning("Discarding malformed frame session=%s: %s", connection.session_id, exc)
            return RelayOutcome.MALFORMED

        if message.type == "register":
            await self.registry.register(message.sender_id, connection)
            LOG.info("Registered %s session=%s", message.sender_id, connection.session_id)
            return RelayOutcome.REGISTERED

        target = await self.registry.lookup(message.target_id or "")
        if target is None:
            LOG.debug(
                "Dropping %s from %s: target %s is not registered",
                message.type,
                message.sender_id,
                message.target_id,
            )
            return RelayOutcome.DROPPED

        # Forward the original text so the payload reaches the peer untouched.
        await target.deliver(text)
        LOG.debug("Forwarded %s %s -> %s", message.type, message.sender_id, message.target_id)
        return RelayOutcome.FORWARDED

    async def on_disconnect(self, connection: RelayConnection) -> None:
        removed = await self.registry.remove(connection)
        LOG.info(
            "Signaling client disconnected session=%s released=%s",
            connection.session_id,
            ",".join(removed) or "-",
        )


def create_app(
    *,
    config: Optional[PeerLinkConfig] = None,
    relay: Optional[SignalingRelay] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    relay_config = config or PeerLinkConfig()
    signaling = relay or SignalingRelay(queue_size=relay_config.queue_size)

    app = FastAPI(title="PeerLink Signaling Relay", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.relay = signaling

    @app.websocket("/")
    async def root_websocket(websocket: WebSocket) -> None:
        await signaling.run(websocket)

    @app.websocket("/signal")
    async def signal_websocket(websocket: WebSocket) -> None:
        await signaling.run(websocket)

    @app.get("/healthz", response_model=schemas.HealthModel)
    async def healthz() -> schemas.HealthModel:
        return schemas.HealthModel(
            status="ok",
            profile=relay_config.profile,
            clients=len(signaling.registry),
        )

    return app
