"""
Serialisable WebRTC negotiation values.

These mirror the browser ``RTCSessionDescriptionInit`` and
``RTCIceCandidateInit`` dictionaries so both endpoints see the exact same
JSON on the signaling wire.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

DESCRIPTION_TYPES = frozenset({"offer", "answer", "pranswer", "rollback"})


@dataclass(frozen=True)
class SessionDescription:
    """An SDP blob together with its role in the offer/answer exchange."""

    type: str
    sdp: str

    def __post_init__(self) -> None:
        if self.type not in DESCRIPTION_TYPES:
            raise ValueError(f"unsupported description type '{self.type}'")

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionDescription":
        return cls(type=str(payload.get("type") or ""), sdp=str(payload.get("sdp") or ""))


@dataclass(frozen=True)
class IceCandidate:
    """
    Serialisable ICE candidate container.

    An empty ``candidate`` string is the end-of-candidates marker.
    """

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None
    username_fragment: Optional[str] = None

    @property
    def is_end_of_candidates(self) -> bool:
        return not self.candidate.strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
            "usernameFragment": self.username_fragment,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "IceCandidate":
        index = payload.get("sdpMLineIndex")
        return cls(
            candidate=str(payload.get("candidate") or ""),
            sdp_mid=payload.get("sdpMid"),
            sdp_mline_index=int(index) if index is not None else None,
            username_fragment=payload.get("usernameFragment"),
        )


__all__ = ["DESCRIPTION_TYPES", "IceCandidate", "SessionDescription"]
