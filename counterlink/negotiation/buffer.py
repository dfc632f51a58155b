"""
Holding area for remote candidates that arrive before the answer.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterator, Tuple

from ..errors import CandidateApplicationFailed, InvalidTransition
from ..rtc.adapter import PeerConnectionHandle
from ..rtc.webrtc import IceCandidate


class CandidateBuffer:
    """
    Ordered, session-scoped queue of not-yet-appliable remote candidates.

    The buffer is drained exactly once.  Draining stops at the first
    candidate the handle rejects; whatever is still queued at that point is
    discarded and reported through :class:`CandidateApplicationFailed`.
    """

    def __init__(self) -> None:
        self._pending: Deque[IceCandidate] = deque()
        self._drained = False

    def __len__(self) -> int:
        return len(self._pending)

    def __iter__(self) -> Iterator[IceCandidate]:
        return iter(self.snapshot())

    @property
    def drained(self) -> bool:
        return self._drained

    def snapshot(self) -> Tuple[IceCandidate, ...]:
        return tuple(self._pending)

    def append(self, candidate: IceCandidate) -> None:
        self._pending.append(candidate)

    def clear(self) -> None:
        self._pending.clear()

    async def drain_into(self, handle: PeerConnectionHandle) -> int:
        if self._drained:
            raise InvalidTransition("candidate buffer already drained")
        self._drained = True
        applied = 0
        while self._pending:
            candidate = self._pending.popleft()
            try:
                await handle.add_ice_candidate(candidate)
            except Exception as exc:
                discarded = len(self._pending)
                self._pending.clear()
                raise CandidateApplicationFailed(candidate, discarded=discarded) from exc
            applied += 1
        return applied


__all__ = ["CandidateBuffer"]
