"""
Pydantic schemas for the control API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StartSessionRequest(BaseModel):
    session_key: Optional[str] = Field(default=None, alias="sessionKey")
    model_config = ConfigDict(populate_by_name=True)


class MessageRequest(BaseModel):
    text: str


class SessionSnapshotModel(BaseModel):
    role: str
    local_id: Optional[str] = Field(default=None, alias="localId")
    remote_id: Optional[str] = Field(default=None, alias="remoteId")
    session_key: Optional[str] = Field(default=None, alias="sessionKey")
    connection_state: str = Field(alias="connectionState")
    last_received_message: Optional[str] = Field(default=None, alias="lastReceivedMessage")
    buffered_candidates: int = Field(default=0, alias="bufferedCandidates")
    remote_description_applied: bool = Field(default=False, alias="remoteDescriptionApplied")
    channel_open: bool = Field(default=False, alias="channelOpen")
    failure: Optional[str] = None
    model_config = ConfigDict(populate_by_name=True)


class DiagnosticModel(BaseModel):
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float


class DiagnosticCollection(BaseModel):
    events: List[DiagnosticModel] = Field(default_factory=list)
