"""
Counterlink: the counter side of a counter/kiosk WebRTC data link.

The package negotiates a peer-to-peer data channel with a kiosk through a
signaling relay.  :class:`~counterlink.negotiation.NegotiationStateMachine`
is the core; signaling transports live in :mod:`counterlink.signaling` and the
aiortc-backed peer connection in :mod:`counterlink.rtc`.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .errors import (
    CandidateApplicationFailed,
    ChannelNotOpen,
    InvalidTransition,
    NegotiationError,
    NegotiationFailed,
    NotReady,
    SessionError,
)
from .negotiation import ConnectionState, NegotiationStateMachine, SessionErrorPolicy, SessionRegistry

__all__ = [
    "CandidateApplicationFailed",
    "ChannelNotOpen",
    "ConnectionState",
    "InvalidTransition",
    "NegotiationError",
    "NegotiationFailed",
    "NegotiationStateMachine",
    "NotReady",
    "SessionError",
    "SessionErrorPolicy",
    "SessionRegistry",
    "__version__",
]
