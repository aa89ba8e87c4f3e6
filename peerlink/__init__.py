"""
PeerLink signaling package.

The package hosts the WebSocket signaling relay that lets two endpoints find
each other by a user-chosen identifier, together with the client-side
negotiation machinery that turns the relayed offer/answer/candidate exchange
into a direct WebRTC transport and data channel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

__all__ = [
    "PeerLinkConfig",
]

DEFAULT_ICE_SERVERS = ["stun:stun.l.google.com:19302"]


@dataclass
class PeerLinkConfig:
    """Top level configuration shared by the relay and the client."""

    profile: str = "default"
    host: str = "127.0.0.1"
    port: int = 8080
    relay_url: str = "ws://127.0.0.1:8080"
    ice_servers: List[str] = field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    data_channel_label: str = "chat"
    log_level: str = "INFO"
    queue_size: int = 256
