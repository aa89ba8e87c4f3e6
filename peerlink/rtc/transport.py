"""
Transport abstraction underneath the negotiation state machine.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .webrtc import ICECandidate, SessionDescription

LOG = logging.getLogger(__name__)

CandidateCallback = Callable[[ICECandidate], None]
StateCallback = Callable[[str], None]
ChannelCallback = Callable[[Any], None]
TrackCallback = Callable[[Any], None]


class PeerTransport:
    """
    Base class for peer connection backends.

    Subclasses wrap a concrete WebRTC stack.  The negotiator installs the four
    callbacks below and only talks to the transport through this interface:

    ``on_ice_candidate``
        a locally gathered candidate that should be trickled to the peer.
    ``on_connection_state_change``
        the transport connectivity state (``new``, ``connecting``,
        ``connected``, ``disconnected``, ``failed``, ``closed``).
    ``on_data_channel``
        a data channel announced by the remote peer.  Channel objects follow
        the aiortc ``RTCDataChannel`` surface: ``label``, ``readyState``,
        ``send()``, ``close()`` and ``on(event, callback)``.
    ``on_track``
        a remote media track (an aiortc ``MediaStreamTrack`` with a ``kind``).
    """

    def __init__(self) -> None:
        self.on_ice_candidate: Optional[CandidateCallback] = None
        self.on_connection_state_change: Optional[StateCallback] = None
        self.on_data_channel: Optional[ChannelCallback] = None
        self.on_track: Optional[TrackCallback] = None

    async def create_offer(self) -> SessionDescription:
        raise NotImplementedError

    async def create_answer(self) -> SessionDescription:
        raise NotImplementedError

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Apply ``description`` and return the effective local description."""

        raise NotImplementedError

    async def set_remote_description(self, description: SessionDescription) -> None:
        raise NotImplementedError

    async def add_ice_candidate(self, candidate: ICECandidate) -> None:
        raise NotImplementedError

    def create_data_channel(self, label: str) -> Any:
        raise NotImplementedError

    def add_track(self, track: Any) -> Any:
        """Send a local media track; must be called before the description is created."""

        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------ helpers

    def _emit_candidate(self, candidate: ICECandidate) -> None:
        callback = self.on_ice_candidate
        if callback is None:
            return
        try:
            callback(candidate)
        except Exception:  # pragma: no cover - listener failures should not kill the transport
            LOG.exception("ICE candidate listener failed.")

    def _emit_state(self, state: str) -> None:
        callback = self.on_connection_state_change
        if callback is None:
            return
        try:
            callback(state)
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Connection state listener failed.")

    def _emit_data_channel(self, channel: Any) -> None:
        callback = self.on_data_channel
        if callback is None:
            return
        try:
            callback(channel)
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Data channel listener failed.")

    def _emit_track(self, track: Any) -> None:
        callback = self.on_track
        if callback is None:
            return
        try:
            callback(track)
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Track listener failed.")
