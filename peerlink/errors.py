"""
Exception hierarchy shared by the relay and the client.
"""

from __future__ import annotations


class PeerLinkError(RuntimeError):
    """Base class for PeerLink errors."""


class ConfigError(PeerLinkError):
    """Raised when a configuration profile cannot be resolved."""


class ChannelNotReady(PeerLinkError):
    """Raised when sending on a data channel that is not open."""


class SignalingError(PeerLinkError):
    """Raised when the signaling channel is used while disconnected."""


class NegotiationStateError(PeerLinkError):
    """Raised when a negotiation command is not valid in the current state."""


class NegotiationClosed(NegotiationStateError):
    """Raised when a command is issued on a closed negotiation."""
