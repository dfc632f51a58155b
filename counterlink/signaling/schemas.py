"""
Pydantic schemas mirroring the signaling wire contract.

Field names on the wire are fixed (``to``, ``from``, ``sessionKey``,
``counterId`` ...) because the kiosk side decodes the very same JSON.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..rtc.webrtc import DESCRIPTION_TYPES, IceCandidate, SessionDescription

EVENT_JOIN_SESSION = "join-session"
EVENT_SESSION_JOINED = "session-joined"
EVENT_OFFER = "offer"
EVENT_ANSWER = "answer"
EVENT_ICE_CANDIDATE = "ice-candidate"
EVENT_SESSION_ERROR = "session-error"

SUBSCRIBED_EVENTS = (
    EVENT_SESSION_JOINED,
    EVENT_ANSWER,
    EVENT_ICE_CANDIDATE,
    EVENT_SESSION_ERROR,
)


class DescriptionModel(BaseModel):
    type: str
    sdp: str

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: object) -> str:
        result = str(value or "").strip().lower()
        if result not in DESCRIPTION_TYPES:
            raise ValueError(f"unsupported description type '{value}'")
        return result

    def to_description(self) -> SessionDescription:
        return SessionDescription(type=self.type, sdp=self.sdp)

    @classmethod
    def from_description(cls, description: SessionDescription) -> "DescriptionModel":
        return cls(type=description.type, sdp=description.sdp)


class CandidateModel(BaseModel):
    candidate: str = ""
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")
    username_fragment: Optional[str] = Field(default=None, alias="usernameFragment")
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("candidate", mode="before")
    @classmethod
    def _coerce_candidate(cls, value: object) -> str:
        return "" if value is None else str(value)

    def to_candidate(self) -> IceCandidate:
        return IceCandidate(
            candidate=self.candidate,
            sdp_mid=self.sdp_mid,
            sdp_mline_index=self.sdp_mline_index,
            username_fragment=self.username_fragment,
        )

    @classmethod
    def from_candidate(cls, candidate: IceCandidate) -> "CandidateModel":
        return cls(
            candidate=candidate.candidate,
            sdp_mid=candidate.sdp_mid,
            sdp_mline_index=candidate.sdp_mline_index,
            username_fragment=candidate.username_fragment,
        )


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class OfferMessage(_WireModel):
    to: str
    from_: str = Field(alias="from")
    offer: DescriptionModel


class AnswerMessage(_WireModel):
    to: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    answer: DescriptionModel


class IceCandidateMessage(_WireModel):
    to: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    candidate: CandidateModel


class JoinSessionMessage(_WireModel):
    session_key: str = Field(alias="sessionKey")
    counter_id: str = Field(alias="counterId")

    @field_validator("session_key")
    @classmethod
    def _require_session_key(cls, value: str) -> str:
        result = value.strip()
        if not result:
            raise ValueError("sessionKey is required")
        return result


class SessionJoinedMessage(BaseModel):
    remote_id: str = Field(
        validation_alias=AliasChoices("kioskId", "remoteId", "kiosk_id", "remote_id"),
        serialization_alias="kioskId",
    )

    @field_validator("remote_id")
    @classmethod
    def _require_remote_id(cls, value: str) -> str:
        result = value.strip()
        if not result:
            raise ValueError("remote id is required")
        return result


class SessionErrorMessage(_WireModel):
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, value: object) -> str:
        return "" if value is None else str(value)


__all__ = [
    "AnswerMessage",
    "CandidateModel",
    "DescriptionModel",
    "EVENT_ANSWER",
    "EVENT_ICE_CANDIDATE",
    "EVENT_JOIN_SESSION",
    "EVENT_OFFER",
    "EVENT_SESSION_ERROR",
    "EVENT_SESSION_JOINED",
    "IceCandidateMessage",
    "JoinSessionMessage",
    "OfferMessage",
    "SUBSCRIBED_EVENTS",
    "SessionErrorMessage",
    "SessionJoinedMessage",
]
