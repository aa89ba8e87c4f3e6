"""Tests covering the data channel handle lifecycle."""

import pytest

from fakes import FakeChannel
from peerlink.errors import ChannelNotReady
from peerlink.rtc.datachannel import ChannelState, DataChannelHandle


def test_send_before_open_is_rejected() -> None:
    channel = FakeChannel("chat")
    handle = DataChannelHandle(channel)

    with pytest.raises(ChannelNotReady):
        handle.send("hello")

    assert channel.sent == []
    assert handle.state is ChannelState.CONNECTING


def test_open_channel_sends_in_order() -> None:
    channel = FakeChannel("chat")
    states = []
    handle = DataChannelHandle(channel, on_state_change=states.append)

    channel.open()
    for text in ["one", "two", "three"]:
        handle.send(text)
    handle.send(b"\x00\x01")

    assert handle.is_open
    assert states == [ChannelState.OPEN]
    assert channel.sent == ["one", "two", "three", b"\x00\x01"]


def test_messages_reach_listener() -> None:
    channel = FakeChannel("chat", ready_state="open")
    received = []
    DataChannelHandle(channel, on_message=received.append)

    channel.emit("message", "hi")
    channel.emit("message", b"raw")

    assert received == ["hi", b"raw"]


def test_close_is_terminal() -> None:
    channel = FakeChannel("chat")
    states = []
    handle = DataChannelHandle(channel, on_state_change=states.append)
    channel.open()

    handle.close()
    handle.close()
    channel.emit("open")

    assert handle.state is ChannelState.CLOSED
    assert channel.readyState == "closed"
    assert states == [ChannelState.OPEN, ChannelState.CLOSED]
    with pytest.raises(ChannelNotReady):
        handle.send("late")


def test_remote_close_is_observed() -> None:
    channel = FakeChannel("chat", ready_state="open")
    handle = DataChannelHandle(channel)

    channel.close()

    assert handle.state is ChannelState.CLOSED
    assert not handle.is_open
