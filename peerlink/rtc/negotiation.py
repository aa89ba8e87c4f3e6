"""
Per-peer offer/answer/ICE negotiation state machine.

One :class:`PeerNegotiator` exists per remote peer relationship.  It tracks two
independent facets:

* :class:`NegotiationState` -- progress of the offer/answer exchange, driven
  by local commands and relayed signal messages;
* :class:`ConnectivityState` -- what the transport reports about the actual
  peer-to-peer path, driven only by the transport.

Everything runs on one asyncio loop; state changes happen on delivery of a
signal message, a local command or a transport callback.  There are no
timeouts: an offer that is never answered leaves the negotiator in
``OFFER_SENT`` until :meth:`PeerNegotiator.close` is called.

Glare (both sides offering at once) is not reconciled.  An offer received in
any open state is processed as a fresh offer: the sender becomes the target,
and the negotiator ends in ``ANSWER_SENT``.  The last offer wins.  When a
transport factory is supplied, the current transport is discarded and a fresh
one answers the new offer, since a WebRTC stack holding its own local offer
rejects a remote one.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple

from ..errors import NegotiationClosed, NegotiationStateError
from .datachannel import DataChannelHandle
from .transport import PeerTransport
from .webrtc import ICECandidate, SessionDescription

LOG = logging.getLogger(__name__)

SignalSender = Callable[[str, str, Dict[str, Any]], Awaitable[None]]
TransportFactory = Callable[[], PeerTransport]


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    ANSWER_SENT = "answer-sent"
    CONNECTED = "connected"
    CLOSED = "closed"


class ConnectivityState(str, Enum):
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


_TRANSPORT_STATES = {
    "new": ConnectivityState.NEW,
    "checking": ConnectivityState.CONNECTING,
    "connecting": ConnectivityState.CONNECTING,
    "connected": ConnectivityState.CONNECTED,
    "completed": ConnectivityState.CONNECTED,
    "disconnected": ConnectivityState.DISCONNECTED,
    "failed": ConnectivityState.FAILED,
    "closed": ConnectivityState.CLOSED,
}


class PeerNegotiator:
    """Drive the offer/answer/candidate exchange for one remote peer."""

    def __init__(
        self,
        transport: PeerTransport,
        send_signal: SignalSender,
        *,
        data_channel_label: str = "chat",
        on_negotiation_state: Optional[Callable[[NegotiationState], None]] = None,
        on_connectivity_change: Optional[Callable[[ConnectivityState], None]] = None,
        on_data_channel: Optional[Callable[[DataChannelHandle], None]] = None,
        on_track: Optional[Callable[[Any], None]] = None,
        transport_factory: Optional[TransportFactory] = None,
        local_tracks: Sequence[Any] = (),
    ) -> None:
        self.transport = transport
        self.data_channel_label = data_channel_label
        self.on_negotiation_state = on_negotiation_state
        self.on_connectivity_change = on_connectivity_change
        self.on_data_channel = on_data_channel
        self.on_track = on_track
        self.local_tracks: List[Any] = list(local_tracks)

        self.state = NegotiationState.IDLE
        self.connectivity = ConnectivityState.NEW
        self.target_id: Optional[str] = None
        self.local_description: Optional[SessionDescription] = None
        self.remote_description: Optional[SessionDescription] = None
        self.data_channel: Optional[DataChannelHandle] = None

        self._send_signal = send_signal
        self._transport_factory = transport_factory
        self._candidate_queue: Deque[ICECandidate] = deque()
        self._remote_candidates: Deque[ICECandidate] = deque()
        # Serialises outbound signals so descriptions precede their candidates.
        self._signal_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

        self._attach(transport)

    # ------------------------------------------------------------------ properties

    @property
    def is_closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    @property
    def pending_candidates(self) -> Tuple[ICECandidate, ...]:
        """Local candidates still waiting for a target."""

        return tuple(self._candidate_queue)

    @property
    def buffered_remote_candidates(self) -> Tuple[ICECandidate, ...]:
        """Remote candidates received before any remote description."""

        return tuple(self._remote_candidates)

    # ------------------------------------------------------------------ commands

    async def create_offer(self, target_id: str) -> None:
        """
        Start a call towards ``target_id``: ``IDLE -> OFFER_SENT``.

        The offering side creates the data channel, which makes it the
        deterministic channel initiator.
        """

        if self.is_closed:
            raise NegotiationClosed("negotiation is closed")
        if self.state is not NegotiationState.IDLE:
            raise NegotiationStateError(f"cannot create an offer while {self.state.value}")
        if not target_id:
            raise ValueError("target_id is required")

        self.target_id = target_id
        if self.data_channel is None:
            self._adopt_channel(self.transport.create_data_channel(self.data_channel_label))

        async with self._signal_lock:
            try:
                offer = await self.transport.create_offer()
                self.local_description = await self.transport.set_local_description(offer)
            except Exception:
                LOG.exception("Failed to create offer for %s", target_id)
                await self._fail()
                return
            self._set_state(NegotiationState.OFFER_SENT)
            try:
                await self._send_signal("offer", target_id, self.local_description.to_dict())
            except Exception:
                # Nothing reached the peer; allow the call to be placed again.
                if self.state is NegotiationState.OFFER_SENT:
                    self.target_id = None
                    self._set_state(NegotiationState.IDLE)
                raise

        await self.flush_candidates()

    async def close(self) -> None:
        """
        Move to ``CLOSED`` and release the transport, the data channel and
        every queued candidate.  Safe to call more than once.
        """

        if self.is_closed:
            return
        self._set_state(NegotiationState.CLOSED)

        self._candidate_queue.clear()
        self._remote_candidates.clear()
        self.local_description = None
        self.remote_description = None

        channel = self.data_channel
        self.data_channel = None
        if channel is not None:
            channel.close()

        self._cancel_tasks()
        await self._release_transport()

        if self.connectivity is not ConnectivityState.FAILED:
            self._set_connectivity(ConnectivityState.CLOSED)

    # ------------------------------------------------------------------ inbound signals

    async def handle_offer(self, sender_id: str, payload: Any) -> None:
        """``IDLE -> OFFER_RECEIVED -> ANSWER_SENT``; the sender becomes the target."""

        if self.is_closed:
            LOG.debug("Ignoring offer from %s on a closed negotiation", sender_id)
            return
        try:
            description = SessionDescription.from_dict(payload, expected_type="offer")
        except ValueError as exc:
            LOG.warning("Ignoring malformed offer from %s: %s", sender_id, exc)
            return

        if self.state is not NegotiationState.IDLE:
            LOG.warning(
                "Offer from %s received while %s; processing it as a new offer",
                sender_id,
                self.state.value,
            )
            if self._transport_factory is not None:
                await self._replace_transport()

        self.target_id = sender_id
        self._set_state(NegotiationState.OFFER_RECEIVED)

        async with self._signal_lock:
            try:
                await self.transport.set_remote_description(description)
                self.remote_description = description
                await self._apply_buffered_candidates()
                answer = await self.transport.create_answer()
                self.local_description = await self.transport.set_local_description(answer)
            except Exception:
                LOG.exception("Failed to answer offer from %s", sender_id)
                await self._fail()
                return
            self._set_state(NegotiationState.ANSWER_SENT)
            try:
                await self._send_signal("answer", sender_id, self.local_description.to_dict())
            except Exception:
                LOG.exception("Failed to send answer to %s", sender_id)
                await self._fail()
                return

        await self.flush_candidates()

    async def handle_answer(self, sender_id: str, payload: Any) -> None:
        """``OFFER_SENT -> CONNECTED``."""

        if self.is_closed:
            LOG.debug("Ignoring answer from %s on a closed negotiation", sender_id)
            return
        try:
            description = SessionDescription.from_dict(payload, expected_type="answer")
        except ValueError as exc:
            LOG.warning("Ignoring malformed answer from %s: %s", sender_id, exc)
            return
        if self.state is not NegotiationState.OFFER_SENT:
            LOG.warning("Ignoring answer from %s while %s", sender_id, self.state.value)
            return

        try:
            await self.transport.set_remote_description(description)
        except Exception:
            LOG.exception("Remote answer from %s was rejected", sender_id)
            await self._fail()
            return
        self.remote_description = description
        self._set_state(NegotiationState.CONNECTED)
        await self._apply_buffered_candidates()

    async def handle_candidate(self, sender_id: str, payload: Any) -> None:
        """
        Apply a remote candidate regardless of negotiation state.

        Candidates that arrive before a remote description are buffered and
        applied, in arrival order, once one is set.
        """

        if self.is_closed:
            return
        try:
            candidate = ICECandidate.from_dict(payload)
        except ValueError as exc:
            LOG.warning("Ignoring malformed candidate from %s: %s", sender_id, exc)
            return
        if self.remote_description is None:
            self._remote_candidates.append(candidate)
            return
        await self._apply_candidate(candidate)

    # ------------------------------------------------------------------ candidates

    async def flush_candidates(self) -> int:
        """Send queued local candidates to the current target, oldest first."""

        sent = 0
        async with self._signal_lock:
            while self._candidate_queue and self.target_id is not None and not self.is_closed:
                candidate = self._candidate_queue.popleft()
                await self._send_signal("candidate", self.target_id, candidate.to_dict())
                sent += 1
        return sent

    def _on_local_candidate(self, candidate: ICECandidate) -> None:
        if self.is_closed:
            return
        self._candidate_queue.append(candidate)
        if self.target_id is not None:
            self._spawn(self.flush_candidates())

    async def _apply_candidate(self, candidate: ICECandidate) -> None:
        try:
            await self.transport.add_ice_candidate(candidate)
        except Exception:
            LOG.warning("Failed to apply remote candidate %s", candidate.candidate, exc_info=True)

    async def _apply_buffered_candidates(self) -> None:
        while self._remote_candidates and not self.is_closed:
            await self._apply_candidate(self._remote_candidates.popleft())

    # ------------------------------------------------------------------ transport callbacks

    def _on_transport_state(self, raw_state: str) -> None:
        state = _TRANSPORT_STATES.get(str(raw_state).lower())
        if state is None:
            LOG.debug("Ignoring unknown transport state %s", raw_state)
            return
        self._set_connectivity(state)
        if state in (ConnectivityState.FAILED, ConnectivityState.CLOSED) and not self.is_closed:
            self._spawn(self.close())

    def _on_remote_channel(self, channel: Any) -> None:
        if self.is_closed:
            channel.close()
            return
        if self.data_channel is not None:
            LOG.info("Replacing data channel %s with remote channel", self.data_channel.label)
            self.data_channel.close()
        self._adopt_channel(channel)

    def _adopt_channel(self, channel: Any) -> None:
        handle = DataChannelHandle(channel)
        self.data_channel = handle
        if self.on_data_channel is not None:
            try:
                self.on_data_channel(handle)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Data channel listener failed.")

    def _on_remote_track(self, track: Any) -> None:
        if self.is_closed:
            return
        LOG.info("Remote %s track from %s", getattr(track, "kind", "media"), self.target_id)
        if self.on_track is not None:
            try:
                self.on_track(track)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Track listener failed.")

    # ------------------------------------------------------------------ transport lifecycle

    def _attach(self, transport: PeerTransport) -> None:
        transport.on_ice_candidate = self._on_local_candidate
        transport.on_connection_state_change = self._on_transport_state
        transport.on_data_channel = self._on_remote_channel
        transport.on_track = self._on_remote_track
        for track in self.local_tracks:
            transport.add_track(track)

    async def _release_transport(self) -> None:
        transport = self.transport
        transport.on_ice_candidate = None
        transport.on_connection_state_change = None
        transport.on_data_channel = None
        transport.on_track = None
        try:
            await transport.close()
        except Exception:
            LOG.warning("Transport close failed", exc_info=True)

    async def _replace_transport(self) -> None:
        LOG.info("Discarding %s transport to answer a new offer", self.state.value)
        channel = self.data_channel
        self.data_channel = None
        if channel is not None:
            channel.close()
        self._candidate_queue.clear()
        self.local_description = None
        self.remote_description = None
        self._cancel_tasks()
        await self._release_transport()

        self.transport = self._transport_factory()  # type: ignore[misc]
        self._attach(self.transport)
        self._set_connectivity(ConnectivityState.NEW)

    # ------------------------------------------------------------------ helpers

    async def _fail(self) -> None:
        self._set_connectivity(ConnectivityState.FAILED)
        await self.close()

    def _spawn(self, coro: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop; queued candidates go out with the next flush.
            LOG.debug("No running loop; deferring negotiation task")
            coro.close()  # type: ignore[attr-defined]
            return
        task = loop.create_task(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("Negotiation task failed", exc_info=exc)

    def _set_state(self, state: NegotiationState) -> None:
        if self.state is state:
            return
        previous = self.state
        self.state = state
        LOG.info("Negotiation %s -> %s (target=%s)", previous.value, state.value, self.target_id)
        if self.on_negotiation_state is not None:
            try:
                self.on_negotiation_state(state)
            except Exception:  # pragma: no cover - listener failures should not kill negotiation
                LOG.exception("Negotiation state listener failed.")

    def _set_connectivity(self, state: ConnectivityState) -> None:
        if self.connectivity is state:
            return
        self.connectivity = state
        LOG.info("Connectivity %s (target=%s)", state.value, self.target_id)
        if self.on_connectivity_change is not None:
            try:
                self.on_connectivity_change(state)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Connectivity listener failed.")
