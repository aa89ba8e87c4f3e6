"""
aiortc-backed peer transport.

aiortc gathers every local candidate while applying the local description and
embeds them in the SDP instead of trickling them, so ``on_ice_candidate`` is
never fired by this backend; the description returned from
:meth:`AiortcTransport.set_local_description` already carries the candidates.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from .transport import PeerTransport
from .webrtc import ICECandidate, SessionDescription

LOG = logging.getLogger(__name__)


def build_configuration(ice_servers: Sequence[str]) -> RTCConfiguration:
    # An explicit empty list keeps aiortc from falling back to its default STUN server.
    return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])


class AiortcTransport(PeerTransport):
    """Wrap a single :class:`aiortc.RTCPeerConnection`."""

    def __init__(self, ice_servers: Sequence[str] = ()) -> None:
        super().__init__()
        self._pc = RTCPeerConnection(configuration=build_configuration(ice_servers))
        self._pc.on("connectionstatechange", self._handle_connection_state)
        self._pc.on("datachannel", self._emit_data_channel)
        self._pc.on("track", self._emit_track)

    @property
    def connection(self) -> RTCPeerConnection:
        return self._pc

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))
        local = self._pc.localDescription
        return SessionDescription(type=local.type, sdp=local.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

    async def add_ice_candidate(self, candidate: ICECandidate) -> None:
        line = candidate.candidate.strip()
        if line.startswith("a="):
            line = line[2:]
        if line.startswith("candidate:"):
            line = line[len("candidate:"):]
        if not line:
            LOG.debug("Ignoring end-of-candidates marker")
            return
        parsed = candidate_from_sdp(line)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(parsed)

    def create_data_channel(self, label: str) -> Any:
        return self._pc.createDataChannel(label, ordered=True)

    def add_track(self, track: Any) -> Any:
        return self._pc.addTrack(track)

    async def close(self) -> None:
        await self._pc.close()

    def _handle_connection_state(self) -> None:
        state = self._pc.connectionState
        LOG.debug("aiortc connection state %s", state)
        self._emit_state(state)
