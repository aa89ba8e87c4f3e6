"""
Serialisable WebRTC negotiation artefacts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

DESCRIPTION_TYPES = frozenset({"offer", "answer"})


@dataclass(frozen=True)
class SessionDescription:
    """An SDP blob together with its role in the exchange."""

    type: str
    sdp: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, expected_type: Optional[str] = None) -> "SessionDescription":
        if not isinstance(payload, Mapping):
            raise ValueError("session description must be an object")
        kind = str(payload.get("type") or expected_type or "").lower()
        sdp = payload.get("sdp")
        if kind not in DESCRIPTION_TYPES:
            raise ValueError(f"unsupported description type '{kind}'")
        if expected_type is not None and kind != expected_type:
            raise ValueError(f"expected {expected_type} description, got {kind}")
        if not isinstance(sdp, str):
            raise ValueError("session description requires an sdp string")
        return cls(type=kind, sdp=sdp)


@dataclass(frozen=True)
class ICECandidate:
    """Serialisable ICE candidate container."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ICECandidate":
        if not isinstance(payload, Mapping):
            raise ValueError("candidate must be an object")
        candidate = payload.get("candidate")
        if not isinstance(candidate, str):
            raise ValueError("candidate requires a candidate string")
        index = payload.get("sdpMLineIndex", payload.get("sdp_mline_index"))
        try:
            mline_index = int(index) if index is not None else None
        except (TypeError, ValueError) as exc:
            raise ValueError("sdpMLineIndex must be an integer") from exc
        sdp_mid = payload.get("sdpMid", payload.get("sdp_mid"))
        return cls(
            candidate=candidate,
            sdp_mid=str(sdp_mid) if sdp_mid is not None else None,
            sdp_mline_index=mline_index,
        )


__all__ = ["ICECandidate", "SessionDescription"]
