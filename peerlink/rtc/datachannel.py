"""
Ordered, reliable application-message channel on top of the peer transport.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Optional, Union

from ..errors import ChannelNotReady

LOG = logging.getLogger(__name__)

AppMessage = Union[str, bytes]


class ChannelState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


_READY_STATES = {
    "connecting": ChannelState.CONNECTING,
    "open": ChannelState.OPEN,
    "closing": ChannelState.CLOSED,
    "closed": ChannelState.CLOSED,
}


class DataChannelHandle:
    """
    Track one data channel through ``Connecting -> Open -> Closed``.

    Sending while the channel is not open raises :class:`ChannelNotReady`
    synchronously; nothing is queued or transmitted, so callers check
    :attr:`is_open` first or handle the error.  Once closed the handle never
    reopens.
    """

    def __init__(
        self,
        channel: Any,
        *,
        on_message: Optional[Callable[[AppMessage], None]] = None,
        on_state_change: Optional[Callable[[ChannelState], None]] = None,
    ) -> None:
        self._channel = channel
        self.label = str(getattr(channel, "label", ""))
        self.on_message = on_message
        self.on_state_change = on_state_change
        self.state = _READY_STATES.get(str(getattr(channel, "readyState", "connecting")), ChannelState.CONNECTING)

        channel.on("open", self._handle_open)
        channel.on("message", self._handle_message)
        channel.on("close", self._handle_close)

    @property
    def is_open(self) -> bool:
        return self.state is ChannelState.OPEN

    def send(self, data: AppMessage) -> None:
        if self.state is not ChannelState.OPEN:
            raise ChannelNotReady(f"data channel '{self.label}' is {self.state.value}")
        self._channel.send(data)

    def close(self) -> None:
        if self.state is ChannelState.CLOSED:
            return
        try:
            self._channel.close()
        except Exception:  # pragma: no cover - the transport may already be gone
            LOG.debug("Data channel close raised", exc_info=True)
        self._set_state(ChannelState.CLOSED)

    def _set_state(self, state: ChannelState) -> None:
        if self.state is state:
            return
        if self.state is ChannelState.CLOSED:
            return
        self.state = state
        LOG.info("Data channel %s is %s", self.label, state.value)
        if self.on_state_change is not None:
            try:
                self.on_state_change(state)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Data channel state listener failed.")

    def _handle_open(self) -> None:
        self._set_state(ChannelState.OPEN)

    def _handle_close(self) -> None:
        self._set_state(ChannelState.CLOSED)

    def _handle_message(self, data: AppMessage) -> None:
        if self.on_message is None:
            return
        try:
            self.on_message(data)
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Data channel message listener failed.")
