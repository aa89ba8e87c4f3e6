"""
Client-side WebRTC negotiation helpers.
"""

from __future__ import annotations

from .datachannel import ChannelState, DataChannelHandle
from .negotiation import ConnectivityState, NegotiationState, PeerNegotiator
from .transport import PeerTransport
from .webrtc import ICECandidate, SessionDescription

__all__ = [
    "ChannelState",
    "ConnectivityState",
    "DataChannelHandle",
    "ICECandidate",
    "NegotiationState",
    "PeerNegotiator",
    "PeerTransport",
    "SessionDescription",
]
