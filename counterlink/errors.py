"""
Error taxonomy shared by the negotiation core and its bridges.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .rtc.webrtc import IceCandidate


class NegotiationError(RuntimeError):
    """Base class for negotiation related errors."""


class NotReady(NegotiationError):
    """Raised when an operation needs an identifier or state that is not available yet."""


class InvalidTransition(NegotiationError):
    """Raised when an event arrives in a state that cannot handle it."""


class CandidateApplicationFailed(NegotiationError):
    """Raised when the peer connection rejects a remote candidate."""

    def __init__(self, candidate: IceCandidate, *, discarded: int = 0) -> None:
        self.candidate = candidate
        self.discarded = int(discarded)
        message = f"candidate rejected: {candidate.candidate or '<end-of-candidates>'}"
        if self.discarded:
            message += f" ({self.discarded} buffered candidates discarded)"
        super().__init__(message)


class NegotiationFailed(NegotiationError):
    """Terminal failure of a session; the session is closed when this is raised."""

    def __init__(self, message: str, *, phase: Optional[str] = None) -> None:
        self.phase = phase
        super().__init__(message)


class ChannelNotOpen(NegotiationError):
    """Raised when sending on a data channel that is not open."""


class SessionError(NegotiationError):
    """Error relayed by the remote side or the signaling service."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


__all__ = [
    "CandidateApplicationFailed",
    "ChannelNotOpen",
    "InvalidTransition",
    "NegotiationError",
    "NegotiationFailed",
    "NotReady",
    "SessionError",
]
