"""
Signaling channel contract and an in-memory implementation.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..rtc.ice_servers import IceServerConfig, default_ice_servers

LOG = logging.getLogger(__name__)

SignalHandler = Callable[[Dict[str, Any]], Any]


class SignalingChannel(ABC):
    """
    Named-event relay between the two endpoints.

    Delivery is assumed at-least-once; ordering is only expected within one
    event name.  Handlers may be plain callables or coroutine functions.
    """

    def __init__(self) -> None:
        self._handler_lock = threading.RLock()
        self._handler_counter = 0
        self._handlers: Dict[int, Tuple[str, SignalHandler]] = {}
        self._pending: Set[asyncio.Task] = set()

    @abstractmethod
    async def get_local_id(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def get_ice_servers(self) -> List[IceServerConfig]:
        raise NotImplementedError

    @abstractmethod
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Fire-and-forget send."""
        raise NotImplementedError

    def on(self, event: str, handler: SignalHandler) -> int:
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._handler_lock:
            self._handler_counter += 1
            token = self._handler_counter
            self._handlers[token] = (event, handler)
        return token

    def off(self, token: int) -> None:
        with self._handler_lock:
            self._handlers.pop(token, None)

    def handler_count(self, event: Optional[str] = None) -> int:
        with self._handler_lock:
            if event is None:
                return len(self._handlers)
            return sum(1 for name, _ in self._handlers.values() if name == event)

    def dispatch(self, event: str, payload: Optional[Dict[str, Any]]) -> None:
        """Deliver one inbound event to every handler registered for it."""

        with self._handler_lock:
            handlers = [handler for name, handler in self._handlers.values() if name == event]
        if not handlers:
            LOG.debug("No handler for signaling event '%s'", event)
            return
        data = dict(payload or {})
        for handler in handlers:
            try:
                result = handler(dict(data))
            except Exception:  # pragma: no cover - handler failures must not stop delivery
                LOG.exception("Signaling handler for '%s' failed.", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._finish_handler_task)

    def _finish_handler_task(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("Async signaling handler failed: %s", exc, exc_info=exc)


class LoopbackSignalingChannel(SignalingChannel):
    """
    In-process channel: records everything emitted and lets the owner inject
    inbound events with :meth:`deliver`.

    ``on_emit`` is called for every outbound event, which is enough to script
    a remote endpoint in demos and tests.
    """

    def __init__(
        self,
        local_id: str = "counter-1",
        *,
        ice_servers: Optional[Sequence[IceServerConfig]] = None,
        on_emit: Optional[Callable[[str, Dict[str, Any]], None]] = None,
    ) -> None:
        super().__init__()
        self.local_id = local_id
        self.ice_servers = list(ice_servers) if ice_servers is not None else default_ice_servers()
        self.on_emit = on_emit
        self.emitted: List[Tuple[str, Dict[str, Any]]] = []

    async def get_local_id(self) -> str:
        return self.local_id

    async def get_ice_servers(self) -> List[IceServerConfig]:
        return list(self.ice_servers)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.emitted.append((event, dict(payload)))
        if self.on_emit is not None:
            self.on_emit(event, dict(payload))

    def deliver(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.dispatch(event, payload)

    def emitted_events(self, event: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.emitted if name == event]


__all__ = ["LoopbackSignalingChannel", "SignalHandler", "SignalingChannel"]
