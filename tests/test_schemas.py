"""Tests covering the signaling wire model."""

import json

import pytest

from peerlink.api.schemas import SignalMessage
from peerlink.rtc.webrtc import ICECandidate, SessionDescription


def test_parse_offer_frame() -> None:
    text = json.dumps({"type": "offer", "id": "alice", "target": "bob", "offer": {"type": "offer", "sdp": "v=0"}})

    message = SignalMessage.parse_frame(text)

    assert message.type == "offer"
    assert message.sender_id == "alice"
    assert message.target_id == "bob"
    assert message.is_routed
    assert message.payload == {"type": "offer", "sdp": "v=0"}


def test_register_needs_no_target() -> None:
    message = SignalMessage.parse_frame('{"type": "register", "id": "alice"}')

    assert not message.is_routed
    assert message.payload is None


@pytest.mark.parametrize(
    "text",
    [
        "",
        "null",
        '"offer"',
        '{"type": "offer", "id": "alice"}',
        '{"type": "bye", "id": "alice", "target": "bob"}',
        '{"type": "register", "id": ""}',
        '{"type": "candidate", "target": "bob"}',
    ],
)
def test_malformed_frames_raise_value_error(text: str) -> None:
    with pytest.raises(ValueError):
        SignalMessage.parse_frame(text)


def test_build_uses_wire_keys() -> None:
    candidate = ICECandidate(candidate="candidate:1 1 udp 1 192.0.2.1 5000 typ host", sdp_mid="0", sdp_mline_index=0)

    message = SignalMessage.build("candidate", "bob", "alice", candidate.to_dict())

    assert message.to_wire() == {
        "type": "candidate",
        "id": "bob",
        "target": "alice",
        "candidate": {
            "candidate": "candidate:1 1 udp 1 192.0.2.1 5000 typ host",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        },
    }


def test_description_validation() -> None:
    assert SessionDescription.from_dict({"type": "answer", "sdp": "v=0"}) == SessionDescription("answer", "v=0")
    assert SessionDescription.from_dict({"sdp": "v=0"}, expected_type="offer").type == "offer"
    with pytest.raises(ValueError):
        SessionDescription.from_dict({"type": "answer", "sdp": "v=0"}, expected_type="offer")
    with pytest.raises(ValueError):
        SessionDescription.from_dict({"type": "pranswer", "sdp": "v=0"})


def test_candidate_accepts_camel_and_snake_case() -> None:
    camel = ICECandidate.from_dict({"candidate": "c", "sdpMid": "audio", "sdpMLineIndex": "1"})
    snake = ICECandidate.from_dict({"candidate": "c", "sdp_mid": "audio", "sdp_mline_index": 1})

    assert camel == snake == ICECandidate("c", "audio", 1)
    with pytest.raises(ValueError):
        ICECandidate.from_dict({"candidate": "c", "sdpMLineIndex": "first"})
