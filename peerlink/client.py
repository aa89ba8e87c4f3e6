"""
Command/event facade used by the view layer.

The view issues commands (:meth:`PeerClient.register`,
:meth:`PeerClient.create_offer`, :meth:`PeerClient.send_app_message`,
:meth:`PeerClient.add_local_track`, :meth:`PeerClient.end_call`) and reacts to the callbacks on
:class:`PeerEvents`.  It owns no negotiation logic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from . import PeerLinkConfig
from .api.schemas import SignalMessage
from .errors import ChannelNotReady, SignalingError
from .rtc.datachannel import AppMessage, DataChannelHandle
from .rtc.negotiation import ConnectivityState, NegotiationState, PeerNegotiator
from .rtc.signaling import MessageHandler, SignalingChannel
from .rtc.transport import PeerTransport

LOG = logging.getLogger(__name__)

TransportFactory = Callable[[], PeerTransport]


def _ignore(*_args: Any) -> None:
    return None


@dataclass
class PeerEvents:
    """Callbacks delivered to the view layer."""

    on_connectivity_change: Callable[[ConnectivityState], None] = field(default=_ignore)
    on_app_message: Callable[[AppMessage, bool], None] = field(default=_ignore)
    on_negotiation_state: Callable[[NegotiationState], None] = field(default=_ignore)
    on_remote_track: Callable[[Any], None] = field(default=_ignore)


class Signaling(Protocol):
    on_message: Optional[MessageHandler]

    async def connect(self) -> None:
        ...

    async def send(self, message: SignalMessage) -> None:
        ...

    async def close(self) -> None:
        ...


class PeerClient:
    """One local endpoint: a relay connection plus the current call."""

    def __init__(
        self,
        config: Optional[PeerLinkConfig] = None,
        events: Optional[PeerEvents] = None,
        *,
        signaling: Optional[Signaling] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.config = config or PeerLinkConfig()
        self.events = events or PeerEvents()
        self.identifier: Optional[str] = None
        self.signaling: Signaling = signaling or SignalingChannel(self.config.relay_url)
        self.signaling.on_message = self._dispatch
        self._transport_factory = transport_factory or self._default_transport
        self._negotiator: Optional[PeerNegotiator] = None
        self._local_tracks: List[Any] = []

    @property
    def negotiator(self) -> Optional[PeerNegotiator]:
        return self._negotiator

    @property
    def negotiation_state(self) -> NegotiationState:
        if self._negotiator is None:
            return NegotiationState.IDLE
        return self._negotiator.state

    @property
    def connectivity(self) -> ConnectivityState:
        if self._negotiator is None:
            return ConnectivityState.NEW
        return self._negotiator.connectivity

    @property
    def channel_ready(self) -> bool:
        negotiator = self._negotiator
        return bool(negotiator and negotiator.data_channel and negotiator.data_channel.is_open)

    # ------------------------------------------------------------------ commands

    async def connect(self) -> None:
        await self.signaling.connect()

    async def register(self, identifier: str) -> None:
        if not identifier:
            raise ValueError("identifier is required")
        self.identifier = identifier
        await self.signaling.send(SignalMessage.build("register", identifier))

    async def create_offer(self, target_id: str) -> None:
        await self._ensure_negotiator().create_offer(target_id)

    def send_app_message(self, data: AppMessage) -> None:
        """
        Send ``data`` over the data channel.

        Raises :class:`ChannelNotReady` when there is no open channel; the
        message is not queued.
        """

        negotiator = self._negotiator
        channel = negotiator.data_channel if negotiator is not None else None
        if channel is None:
            raise ChannelNotReady("no data channel")
        channel.send(data)
        self._emit(self.events.on_app_message, data, False)

    def add_local_track(self, track: Any) -> None:
        """
        Send ``track`` (an aiortc ``MediaStreamTrack``) on every call from now on.

        A call that is already negotiating keeps its current media.
        """

        self._local_tracks.append(track)
        negotiator = self._negotiator
        if negotiator is not None and negotiator.state is NegotiationState.IDLE:
            negotiator.local_tracks.append(track)
            negotiator.transport.add_track(track)

    async def end_call(self) -> None:
        negotiator, self._negotiator = self._negotiator, None
        if negotiator is not None:
            await negotiator.close()

    async def close(self) -> None:
        await self.end_call()
        await self.signaling.close()

    # ------------------------------------------------------------------ inbound

    async def _dispatch(self, message: SignalMessage) -> None:
        if message.type == "offer":
            await self._ensure_negotiator().handle_offer(message.sender_id, message.payload)
        elif message.type == "answer":
            negotiator = self._negotiator
            if negotiator is None:
                LOG.warning("Ignoring answer from %s without an active call", message.sender_id)
                return
            await negotiator.handle_answer(message.sender_id, message.payload)
        elif message.type == "candidate":
            negotiator = self._negotiator
            if negotiator is None or negotiator.is_closed:
                LOG.debug("Ignoring candidate from %s without an active call", message.sender_id)
                return
            if negotiator.target_id is not None and negotiator.target_id != message.sender_id:
                LOG.debug("Ignoring candidate from %s; call is with %s", message.sender_id, negotiator.target_id)
                return
            await negotiator.handle_candidate(message.sender_id, message.payload)
        else:
            LOG.debug("Ignoring %s frame from relay", message.type)

    # ------------------------------------------------------------------ helpers

    def _ensure_negotiator(self) -> PeerNegotiator:
        negotiator = self._negotiator
        if negotiator is None or negotiator.is_closed:
            negotiator = PeerNegotiator(
                self._transport_factory(),
                self._send_signal,
                data_channel_label=self.config.data_channel_label,
                on_negotiation_state=self._on_negotiation_state,
                on_connectivity_change=self._on_connectivity_change,
                on_data_channel=self._on_data_channel,
                on_track=self._on_remote_track,
                transport_factory=self._transport_factory,
                local_tracks=self._local_tracks,
            )
            self._negotiator = negotiator
        return negotiator

    def _default_transport(self) -> PeerTransport:
        from .rtc.aiortc_transport import AiortcTransport

        return AiortcTransport(self.config.ice_servers)

    async def _send_signal(self, message_type: str, target_id: str, payload: Dict[str, Any]) -> None:
        if not self.identifier:
            raise SignalingError("register an identifier before signaling")
        await self.signaling.send(SignalMessage.build(message_type, self.identifier, target_id, payload))

    def _on_negotiation_state(self, state: NegotiationState) -> None:
        self._emit(self.events.on_negotiation_state, state)

    def _on_connectivity_change(self, state: ConnectivityState) -> None:
        self._emit(self.events.on_connectivity_change, state)

    def _on_data_channel(self, handle: DataChannelHandle) -> None:
        handle.on_message = self._on_remote_message

    def _on_remote_message(self, data: AppMessage) -> None:
        self._emit(self.events.on_app_message, data, True)

    def _on_remote_track(self, track: Any) -> None:
        self._emit(self.events.on_remote_track, track)

    @staticmethod
    def _emit(callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:  # pragma: no cover - view failures should not break the call
            LOG.exception("Event listener failed.")
