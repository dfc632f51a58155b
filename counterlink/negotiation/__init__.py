"""
Negotiation core: state machine, candidate buffer and diagnostics.
"""

from __future__ import annotations

from ..errors import (
    CandidateApplicationFailed,
    ChannelNotOpen,
    InvalidTransition,
    NegotiationError,
    NegotiationFailed,
    NotReady,
    SessionError,
)
from .buffer import CandidateBuffer
from .diagnostics import DiagnosticEvent, DiagnosticKind, DiagnosticStream
from .registry import SessionRegistry
from .state_machine import (
    ConnectionState,
    NegotiationStateMachine,
    Role,
    Session,
    SessionErrorPolicy,
)

__all__ = [
    "CandidateApplicationFailed",
    "CandidateBuffer",
    "ChannelNotOpen",
    "ConnectionState",
    "DiagnosticEvent",
    "DiagnosticKind",
    "DiagnosticStream",
    "InvalidTransition",
    "NegotiationError",
    "NegotiationFailed",
    "NegotiationStateMachine",
    "NotReady",
    "Role",
    "Session",
    "SessionError",
    "SessionErrorPolicy",
    "SessionRegistry",
]
