"""
Structured diagnostic stream published by every negotiation session.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from ..observable import EventHook

LOG = logging.getLogger(__name__)


class DiagnosticKind(str, Enum):
    """What a diagnostic entry is about."""

    TRANSITION = "transition"
    SIGNAL_SENT = "signal-sent"
    SIGNAL_RECEIVED = "signal-received"
    CANDIDATE_BUFFERED = "candidate-buffered"
    CANDIDATE_APPLIED = "candidate-applied"
    CANDIDATES_DRAINED = "candidates-drained"
    CONNECTIVITY = "connectivity"
    RESTART = "restart"
    CHANNEL = "channel"
    MESSAGE = "message"
    DROPPED = "dropped"
    ERROR = "error"


_LOG_LEVELS = {
    DiagnosticKind.ERROR: logging.WARNING,
    DiagnosticKind.DROPPED: logging.WARNING,
    DiagnosticKind.TRANSITION: logging.INFO,
    DiagnosticKind.RESTART: logging.INFO,
    DiagnosticKind.CHANNEL: logging.INFO,
}


@dataclass(frozen=True, slots=True)
class DiagnosticEvent:
    kind: DiagnosticKind
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "payload": dict(self.payload),
            "timestamp": float(self.timestamp),
        }


class DiagnosticStream:
    """
    Fan-out of :class:`DiagnosticEvent` entries with a bounded history.
    """

    def __init__(self, history: int = 200, *, logger: Optional[logging.Logger] = None) -> None:
        self._history: Deque[DiagnosticEvent] = deque(maxlen=max(1, int(history)))
        self._hook = EventHook("diagnostics")
        self._logger = logger or LOG

    def publish(self, kind: DiagnosticKind, **payload: Any) -> DiagnosticEvent:
        event = DiagnosticEvent(kind=kind, payload=payload)
        self._history.append(event)
        self._logger.log(_LOG_LEVELS.get(kind, logging.DEBUG), "%s %s", kind.value, payload)
        self._hook.emit(event)
        return event

    def subscribe(self, callback: Callable[[DiagnosticEvent], None]) -> int:
        return self._hook.subscribe(callback)

    def unsubscribe(self, token: int) -> None:
        self._hook.unsubscribe(token)

    @property
    def history(self) -> List[DiagnosticEvent]:
        return list(self._history)

    def recent(self, limit: Optional[int] = None) -> List[DiagnosticEvent]:
        entries = list(self._history)
        if limit is None or limit >= len(entries):
            return entries
        return entries[len(entries) - max(0, int(limit)):]

    def of_kind(self, kind: DiagnosticKind) -> List[DiagnosticEvent]:
        return [event for event in self._history if event.kind is kind]


__all__ = ["DiagnosticEvent", "DiagnosticKind", "DiagnosticStream"]
