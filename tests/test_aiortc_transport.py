"""Tests running the negotiator on real aiortc peer connections over loopback."""

import asyncio
from typing import Any, Callable, Dict, List

import pytest
from aiortc.mediastreams import AudioStreamTrack

from fakes import RecordingSender
from peerlink.rtc.aiortc_transport import AiortcTransport
from peerlink.rtc.negotiation import NegotiationState, PeerNegotiator
from peerlink.rtc.webrtc import ICECandidate


async def _wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.05)


def _wire(peers: Dict[str, PeerNegotiator], name: str):
    async def send(message_type: str, target_id: str, payload: Dict[str, Any]) -> None:
        handler = getattr(peers[target_id], f"handle_{message_type}")
        await handler(name, payload)

    return send


def test_loopback_call_delivers_messages_in_order() -> None:
    async def scenario() -> None:
        peers: Dict[str, PeerNegotiator] = {}
        received: List[Any] = []

        def on_bob_channel(handle) -> None:
            handle.on_message = received.append

        peers["alice"] = PeerNegotiator(AiortcTransport([]), _wire(peers, "alice"))
        peers["bob"] = PeerNegotiator(AiortcTransport([]), _wire(peers, "bob"), on_data_channel=on_bob_channel)
        alice, bob = peers["alice"], peers["bob"]
        try:
            await alice.create_offer("bob")

            assert alice.state is NegotiationState.CONNECTED
            assert bob.state is NegotiationState.ANSWER_SENT
            assert "a=candidate:" in alice.local_description.sdp

            await _wait_for(lambda: alice.data_channel.is_open)
            await _wait_for(lambda: bob.data_channel is not None and bob.data_channel.is_open)
            for text in ["one", "two"]:
                alice.data_channel.send(text)
            await _wait_for(lambda: len(received) == 2)

            assert received == ["one", "two"]
            assert bob.data_channel.label == "chat"
        finally:
            await alice.close()
            await bob.close()

    asyncio.run(scenario())


def test_candidate_lines_are_parsed_for_aiortc(monkeypatch: pytest.MonkeyPatch) -> None:
    async def scenario() -> None:
        transport = AiortcTransport([])
        applied = []

        async def record(parsed) -> None:
            applied.append(parsed)

        monkeypatch.setattr(transport.connection, "addIceCandidate", record)
        try:
            await transport.add_ice_candidate(
                ICECandidate(
                    candidate="a=candidate:842163049 1 udp 1677729535 192.0.2.10 50000 typ srflx "
                    "raddr 10.0.0.1 rport 50000 generation 0",
                    sdp_mid="0",
                    sdp_mline_index=0,
                )
            )
            await transport.add_ice_candidate(ICECandidate(candidate="", sdp_mid="0", sdp_mline_index=0))
        finally:
            await transport.close()

        assert len(applied) == 1
        parsed = applied[0]
        assert parsed.foundation == "842163049"
        assert parsed.component == 1
        assert parsed.protocol == "udp"
        assert parsed.ip == "192.0.2.10"
        assert parsed.port == 50000
        assert parsed.type == "srflx"
        assert parsed.relatedAddress == "10.0.0.1"
        assert parsed.sdpMid == "0"
        assert parsed.sdpMLineIndex == 0

    asyncio.run(scenario())


def test_glare_answers_from_a_fresh_peer_connection() -> None:
    async def scenario() -> None:
        alice_sender = RecordingSender()
        bob_sender = RecordingSender()
        alice = PeerNegotiator(AiortcTransport([]), alice_sender, transport_factory=lambda: AiortcTransport([]))
        bob = PeerNegotiator(AiortcTransport([]), bob_sender, transport_factory=lambda: AiortcTransport([]))
        first_transport = alice.transport
        try:
            await alice.create_offer("bob")
            await bob.create_offer("alice")

            await alice.handle_offer("bob", bob_sender.sent[0][2])

            assert alice.state is NegotiationState.ANSWER_SENT
            assert alice.transport is not first_transport
            assert first_transport.connection.connectionState == "closed"
            assert alice_sender.types() == ["offer", "answer"]

            await bob.handle_answer("alice", alice_sender.sent[-1][2])

            assert bob.state is NegotiationState.CONNECTED
            await _wait_for(lambda: bob.data_channel.is_open)
            await _wait_for(lambda: alice.data_channel is not None and alice.data_channel.is_open)
        finally:
            await alice.close()
            await bob.close()

    asyncio.run(scenario())


def test_local_audio_track_reaches_the_answering_side() -> None:
    async def scenario() -> None:
        sender = RecordingSender()
        tracks: List[Any] = []
        alice = PeerNegotiator(AiortcTransport([]), sender, local_tracks=[AudioStreamTrack()])
        bob = PeerNegotiator(AiortcTransport([]), RecordingSender(), on_track=tracks.append)
        try:
            await alice.create_offer("bob")
            offer = sender.sent[0][2]

            assert "m=audio" in offer["sdp"]

            await bob.handle_offer("alice", offer)

            assert bob.state is NegotiationState.ANSWER_SENT
            assert [track.kind for track in tracks] == ["audio"]
        finally:
            await alice.close()
            await bob.close()

    asyncio.run(scenario())
