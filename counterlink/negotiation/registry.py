"""
Session registry keyed by session key.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Iterator, List, Optional

from .state_machine import NegotiationStateMachine

LOG = logging.getLogger(__name__)

SessionFactory = Callable[[str], NegotiationStateMachine]


class SessionRegistry:
    """
    Owns one :class:`NegotiationStateMachine` per session key.

    ``factory`` builds a fresh, uninitialised session for a key.  Each session
    needs its own signaling channel: the machines subscribe to the same event
    names and would otherwise consume each other's answers.
    """

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: Dict[str, NegotiationStateMachine] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, session_key: object) -> bool:
        return session_key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def get(self, session_key: str) -> Optional[NegotiationStateMachine]:
        return self._sessions.get(session_key)

    async def open(self, session_key: str) -> NegotiationStateMachine:
        async with self._lock:
            existing = self._sessions.get(session_key)
            if existing is not None and not existing.is_closed:
                return existing
            session = self._factory(session_key)
            self._sessions[session_key] = session
        try:
            await session.initialise()
            await session.start(session_key)
        except Exception:
            async with self._lock:
                if self._sessions.get(session_key) is session:
                    del self._sessions[session_key]
            await session.close()
            raise
        LOG.info("Opened session %s", session_key)
        return session

    async def close(self, session_key: str) -> bool:
        async with self._lock:
            session = self._sessions.pop(session_key, None)
        if session is None:
            return False
        await session.close()
        LOG.info("Closed session %s", session_key)
        return True

    async def close_all(self) -> None:
        async with self._lock:
            sessions: List[NegotiationStateMachine] = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()


__all__ = ["SessionFactory", "SessionRegistry"]
