"""
Negotiation state machine for the initiating ("counter") endpoint.

Every input, whether a signaling event, a peer-connection callback or a
caller request, becomes an ``_Event`` on a per-session queue.  A single
worker task consumes that queue, so handlers never interleave: applying the
answer and draining buffered candidates happen inside one handler and no
candidate event can slip in between.

After each ``await`` a handler re-checks that the session is still open and
that the peer-connection handle it started with is still the live one.
Completions that arrive after :meth:`NegotiationStateMachine.close` are
dropped on the floor.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import (
    CandidateApplicationFailed,
    ChannelNotOpen,
    InvalidTransition,
    NegotiationError,
    NegotiationFailed,
    NotReady,
    SessionError,
)
from ..observable import Observable
from ..rtc.adapter import CONNECTIVITY_STATES, PeerConnectionFactory, PeerConnectionHandle
from ..rtc.data_channel import DataChannelBridge
from ..rtc.webrtc import IceCandidate, SessionDescription
from ..signaling.channel import SignalingChannel
from ..signaling.schemas import (
    EVENT_ANSWER,
    EVENT_ICE_CANDIDATE,
    EVENT_JOIN_SESSION,
    EVENT_OFFER,
    EVENT_SESSION_ERROR,
    EVENT_SESSION_JOINED,
    SUBSCRIBED_EVENTS,
    AnswerMessage,
    CandidateModel,
    DescriptionModel,
    IceCandidateMessage,
    JoinSessionMessage,
    OfferMessage,
    SessionErrorMessage,
    SessionJoinedMessage,
)
from .buffer import CandidateBuffer
from .diagnostics import DiagnosticKind, DiagnosticStream

LOG = logging.getLogger(__name__)

DEFAULT_CHANNEL_LABEL = "chat"
DEFAULT_NEGOTIATION_TIMEOUT = 30.0

ModelT = TypeVar("ModelT", bound=BaseModel)


class ConnectionState(str, Enum):
    NEW = "new"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


class Role(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class SessionErrorPolicy(str, Enum):
    """How a relayed ``session-error`` affects the session."""

    ADVISORY = "advisory"
    FATAL = "fatal"


@dataclass
class Session:
    """
    Identity of one negotiation.

    ``remote_id`` is set by the join and never changes afterwards.  A session
    closed before any join ends in CLOSED with ``remote_id`` still ``None``.
    """

    role: Role = Role.INITIATOR
    local_id: Optional[str] = None
    remote_id: Optional[str] = None
    session_key: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "localId": self.local_id,
            "remoteId": self.remote_id,
            "sessionKey": self.session_key,
        }


_JOINED = "joined"
_ANSWER = "answer"
_CANDIDATE = "candidate"
_LOCAL_CANDIDATE = "local-candidate"
_CONNECTIVITY = "connectivity"
_CHANNEL = "channel"
_SESSION_ERROR = "session-error"
_TIMEOUT = "timeout"
_STOP = "stop"

_CONNECTED_STATES = frozenset({"connected", "completed"})


@dataclass
class _Event:
    kind: str
    payload: Any = None
    future: Optional[asyncio.Future] = None


class NegotiationStateMachine:
    """
    Drives one session from ``join-session`` to a connected data channel.

    ``connection_state`` and ``last_received_message`` are observables;
    everything else the session does is published on ``diagnostics``.
    """

    def __init__(
        self,
        channel: SignalingChannel,
        factory: PeerConnectionFactory,
        *,
        role: Role = Role.INITIATOR,
        channel_label: str = DEFAULT_CHANNEL_LABEL,
        negotiation_timeout: Optional[float] = DEFAULT_NEGOTIATION_TIMEOUT,
        max_restarts: int = 1,
        session_error_policy: SessionErrorPolicy = SessionErrorPolicy.ADVISORY,
        diagnostics: Optional[DiagnosticStream] = None,
    ) -> None:
        role = Role(role)
        if role is not Role.INITIATOR:
            raise ValueError(f"unsupported role '{role.value}': only the initiator is implemented")

        self.instance_id = uuid.uuid4().hex
        self.logger = LOG.getChild(f"session.{self.instance_id[:8]}")
        self.session = Session(role=role)
        self.connection_state: Observable[ConnectionState] = Observable(ConnectionState.NEW)
        self.last_received_message: Observable[Optional[str]] = Observable(None)
        self.diagnostics = diagnostics or DiagnosticStream(logger=self.logger)
        self.failure: Optional[NegotiationFailed] = None
        self.last_session_error: Optional[SessionError] = None

        self._channel = channel
        self._factory = factory
        self._channel_label = channel_label
        self._negotiation_timeout = negotiation_timeout
        self._max_restarts = max(0, int(max_restarts))
        self._session_error_policy = SessionErrorPolicy(session_error_policy)

        self._handle: Optional[PeerConnectionHandle] = None
        self._bridge: Optional[DataChannelBridge] = None
        self._buffer = CandidateBuffer()
        self._remote_applied = False
        self._restarts = 0
        self._timeout: Optional[asyncio.TimerHandle] = None
        self._timeout_generation = 0
        self._subscriptions: List[int] = []
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self._handlers: Dict[str, Callable[[Any], Awaitable[Any]]] = {
            _JOINED: self._handle_joined,
            _ANSWER: self._handle_answer,
            _CANDIDATE: self._handle_candidate,
            _LOCAL_CANDIDATE: self._handle_local_candidate,
            _CONNECTIVITY: self._handle_connectivity,
            _CHANNEL: self._handle_channel,
            _SESSION_ERROR: self._handle_session_error,
            _TIMEOUT: self._handle_timeout,
        }

    # ------------------------------------------------------------------
    # Introspection
    @property
    def state(self) -> ConnectionState:
        return self.connection_state.value

    @property
    def local_id(self) -> Optional[str]:
        return self.session.local_id

    @property
    def remote_id(self) -> Optional[str]:
        return self.session.remote_id

    @property
    def bridge(self) -> Optional[DataChannelBridge]:
        return self._bridge

    @property
    def buffered_candidates(self) -> int:
        return len(self._buffer)

    @property
    def remote_description_applied(self) -> bool:
        return self._remote_applied

    @property
    def restart_attempts(self) -> int:
        return self._restarts

    @property
    def is_closed(self) -> bool:
        return self._closed

    def snapshot(self) -> dict:
        data = self.session.to_dict()
        data.update(
            {
                "connectionState": self.state.value,
                "lastReceivedMessage": self.last_received_message.value,
                "bufferedCandidates": len(self._buffer),
                "remoteDescriptionApplied": self._remote_applied,
                "channelOpen": bool(self._bridge is not None and self._bridge.is_open),
                "failure": str(self.failure) if self.failure is not None else None,
            }
        )
        return data

    # ------------------------------------------------------------------
    # Caller operations
    async def initialise(self) -> str:
        """Obtain the local id and subscribe to the inbound signaling events."""

        if self._closed:
            raise InvalidTransition("session is closed")
        if self.session.local_id is None:
            local_id = await self._channel.get_local_id()
            if self._closed:
                raise InvalidTransition("session was closed while obtaining the local id")
            self.session.local_id = local_id
            self.logger.info("Local id %s", local_id)
        if not self._subscriptions:
            routes = {
                EVENT_SESSION_JOINED: self._on_session_joined_signal,
                EVENT_ANSWER: self._on_answer_signal,
                EVENT_ICE_CANDIDATE: self._on_candidate_signal,
                EVENT_SESSION_ERROR: self._on_session_error_signal,
            }
            for event in SUBSCRIBED_EVENTS:
                self._subscriptions.append(self._channel.on(event, routes[event]))
        return self.session.local_id

    async def start(self, session_key: str) -> None:
        if self._closed:
            raise InvalidTransition("session is closed")
        local_id = self.session.local_id
        if local_id is None:
            error = NotReady("local id has not been obtained yet")
            self._report(error)
            raise error
        if self.state is not ConnectionState.NEW:
            raise InvalidTransition(f"cannot start a session that is {self.state.value}")
        message = JoinSessionMessage(session_key=session_key, counter_id=local_id)
        self.session.session_key = message.session_key
        self._emit(EVENT_JOIN_SESSION, message.to_wire())

    async def on_joined(self, remote_id: str) -> None:
        await self._submit(_JOINED, remote_id)

    async def on_answer_received(self, description: SessionDescription, sender: Optional[str] = None) -> None:
        await self._submit(_ANSWER, (description, sender))

    async def on_candidate_received(self, candidate: IceCandidate, sender: Optional[str] = None) -> None:
        await self._submit(_CANDIDATE, (candidate, sender))

    async def on_local_candidate_gathered(self, candidate: IceCandidate) -> None:
        await self._submit(_LOCAL_CANDIDATE, (self._handle, candidate))

    async def on_connectivity_state_changed(self, state: str) -> None:
        await self._submit(_CONNECTIVITY, (self._handle, state))

    async def on_session_error(self, message: str) -> None:
        await self._submit(_SESSION_ERROR, message)

    def send_message(self, text: str) -> None:
        bridge = self._bridge
        try:
            if bridge is None or self._closed:
                raise ChannelNotOpen("no data channel has been created")
            bridge.send(text)
        except ChannelNotOpen as exc:
            self._report(exc)
            raise
        self.diagnostics.publish(DiagnosticKind.MESSAGE, direction="sent", text=text)

    async def close(self) -> None:
        await self._close("closed by caller")

    async def wait_idle(self) -> None:
        """Wait until every queued event has been handled."""

        if self._worker is None or self._worker.done():
            return
        await self._queue.join()

    # ------------------------------------------------------------------
    # Inbound signaling
    def _on_session_joined_signal(self, payload: Dict[str, Any]) -> None:
        message = self._parse(SessionJoinedMessage, EVENT_SESSION_JOINED, payload)
        if message is not None:
            self._post(_JOINED, message.remote_id)

    def _on_answer_signal(self, payload: Dict[str, Any]) -> None:
        message = self._parse(AnswerMessage, EVENT_ANSWER, payload)
        if message is not None:
            self._post(_ANSWER, (message.answer.to_description(), message.from_))

    def _on_candidate_signal(self, payload: Dict[str, Any]) -> None:
        message = self._parse(IceCandidateMessage, EVENT_ICE_CANDIDATE, payload)
        if message is not None:
            self._post(_CANDIDATE, (message.candidate.to_candidate(), message.from_))

    def _on_session_error_signal(self, payload: Dict[str, Any]) -> None:
        message = self._parse(SessionErrorMessage, EVENT_SESSION_ERROR, payload)
        if message is not None:
            self._post(_SESSION_ERROR, message.message)

    def _parse(self, model: Type[ModelT], event: str, payload: Dict[str, Any]) -> Optional[ModelT]:
        if self._closed:
            return None
        try:
            message = model.model_validate(payload or {})
        except ValidationError as exc:
            self.diagnostics.publish(
                DiagnosticKind.DROPPED,
                event=event,
                reason="malformed payload",
                detail=str(exc),
            )
            return None
        self.diagnostics.publish(DiagnosticKind.SIGNAL_RECEIVED, event=event)
        return message

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        self._channel.emit(event, payload)
        self.diagnostics.publish(DiagnosticKind.SIGNAL_SENT, event=event)

    # ------------------------------------------------------------------
    # Event queue
    async def _submit(self, kind: str, payload: Any = None) -> Any:
        if self._closed:
            self.logger.debug("Ignoring %s: session is closed", kind)
            return None
        future = asyncio.get_running_loop().create_future()
        self._enqueue(_Event(kind, payload, future))
        return await future

    def _post(self, kind: str, payload: Any = None) -> None:
        if self._closed:
            return
        self._enqueue(_Event(kind, payload))

    def _enqueue(self, event: _Event) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())
        self._queue.put_nowait(event)

    async def _run(self) -> None:
        try:
            while True:
                event = await self._queue.get()
                try:
                    if event.kind == _STOP:
                        break
                    await self._process(event)
                finally:
                    self._settle(event)
                    self._queue.task_done()
        finally:
            self._release_pending()

    async def _process(self, event: _Event) -> None:
        if self._closed:
            return
        handler = self._handlers[event.kind]
        try:
            result = await handler(event.payload)
        except NegotiationError as exc:
            self._report(exc)
            self._settle(event, error=exc)
        except Exception as exc:
            self.logger.exception("Unhandled error while handling %s", event.kind)
            self._report(exc)
            self._settle(event, error=exc)
        else:
            self._settle(event, result=result)

    @staticmethod
    def _settle(event: _Event, *, result: Any = None, error: Optional[BaseException] = None) -> None:
        future = event.future
        if future is None or future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _release_pending(self) -> None:
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._settle(event)
            self._queue.task_done()

    # ------------------------------------------------------------------
    # Handlers, run on the worker only
    async def _handle_joined(self, remote_id: str) -> None:
        if self.state is not ConnectionState.NEW:
            raise InvalidTransition(f"session-joined received while {self.state.value}")
        if self.session.local_id is None:
            raise NotReady("local id has not been obtained yet")
        remote_id = str(remote_id or "").strip()
        if not remote_id:
            raise InvalidTransition("session-joined without a remote id")

        self.session.remote_id = remote_id
        self._set_state(ConnectionState.NEGOTIATING, remoteId=remote_id)
        self._arm_timeout()

        try:
            ice_servers = await self._channel.get_ice_servers()
        except Exception as exc:
            if self._closed:
                return
            error = await self._fail("ice-servers", f"ICE servers unavailable: {exc}")
            raise error from exc
        if self._closed:
            return

        try:
            handle = self._factory.create(ice_servers)
        except Exception as exc:
            error = await self._fail("peer-connection", f"peer connection could not be created: {exc}")
            raise error from exc
        self._attach(handle)

        try:
            self._bridge = self._open_data_channel(handle)
            offer = await handle.create_offer()
            if not self._is_live(handle):
                return
            committed = await handle.set_local_description(offer)
        except Exception as exc:
            if not self._is_live(handle):
                return
            error = await self._fail("offer", f"offer could not be committed: {exc}")
            raise error from exc
        if not self._is_live(handle):
            return

        message = OfferMessage(
            to=remote_id,
            from_=self.session.local_id,
            offer=DescriptionModel.from_description(committed),
        )
        self._emit(EVENT_OFFER, message.to_wire())

    async def _handle_answer(self, payload: Any) -> None:
        description, sender = payload
        handle = self._handle
        if handle is None:
            raise InvalidTransition("answer received before a peer connection exists")
        if not self._from_remote(sender):
            self._drop(EVENT_ANSWER, sender)
            return
        if self._remote_applied:
            raise InvalidTransition("answer received after the remote description was applied")

        try:
            await handle.set_remote_description(description)
        except Exception as exc:
            if not self._is_live(handle):
                return
            error = await self._fail("answer", f"remote description rejected: {exc}")
            raise error from exc
        if not self._is_live(handle):
            return
        self._remote_applied = True

        try:
            applied = await self._buffer.drain_into(handle)
        except CandidateApplicationFailed:
            if not self._is_live(handle):
                return
            raise
        if self._is_live(handle):
            self.diagnostics.publish(DiagnosticKind.CANDIDATES_DRAINED, applied=applied)

    async def _handle_candidate(self, payload: Any) -> None:
        candidate, sender = payload
        if not self._from_remote(sender):
            self._drop(EVENT_ICE_CANDIDATE, sender)
            return
        handle = self._handle
        if handle is None or not self._remote_applied:
            self._buffer.append(candidate)
            self.diagnostics.publish(DiagnosticKind.CANDIDATE_BUFFERED, pending=len(self._buffer))
            return
        try:
            await handle.add_ice_candidate(candidate)
        except Exception as exc:
            if not self._is_live(handle):
                return
            raise CandidateApplicationFailed(candidate) from exc
        if self._is_live(handle):
            self.diagnostics.publish(DiagnosticKind.CANDIDATE_APPLIED, candidate=candidate.candidate)

    async def _handle_local_candidate(self, payload: Any) -> None:
        handle, candidate = payload
        if handle is not None and handle is not self._handle:
            return
        remote_id = self.session.remote_id
        if remote_id is None:
            self.logger.warning("Local candidate gathered before the remote id is known; dropping it")
            self.diagnostics.publish(
                DiagnosticKind.DROPPED,
                event=EVENT_ICE_CANDIDATE,
                reason="remote id unknown",
            )
            return
        message = IceCandidateMessage(
            to=remote_id,
            from_=self.session.local_id,
            candidate=CandidateModel.from_candidate(candidate),
        )
        self._emit(EVENT_ICE_CANDIDATE, message.to_wire())

    async def _handle_connectivity(self, payload: Any) -> None:
        handle, state = payload
        if handle is None or handle is not self._handle:
            return
        value = str(state or "").strip().lower()
        if value not in CONNECTIVITY_STATES:
            self.diagnostics.publish(DiagnosticKind.DROPPED, reason="unknown connectivity state", state=value)
            return
        self.diagnostics.publish(DiagnosticKind.CONNECTIVITY, state=value)

        if value in _CONNECTED_STATES:
            self._cancel_timeout()
            self._restarts = 0
            self._set_state(ConnectionState.CONNECTED)
            return
        if value == "closed":
            await self._close("peer connection closed")
            return
        if value != "failed":
            return

        self._set_state(ConnectionState.FAILED, reason="connectivity failed")
        if self._restarts >= self._max_restarts:
            raise await self._fail("connectivity", "connectivity failed and could not be restored")
        self._restarts += 1
        self.diagnostics.publish(DiagnosticKind.RESTART, attempt=self._restarts)
        try:
            await handle.restart_connectivity()
        except Exception as exc:
            if not self._is_live(handle):
                return
            error = await self._fail("restart", f"connectivity restart failed: {exc}")
            raise error from exc
        if self._is_live(handle):
            self._arm_timeout()

    async def _handle_channel(self, payload: Any) -> None:
        handle, kind, text = payload
        if handle is not self._handle:
            return
        if kind == "message":
            self.last_received_message.set(text, force=True)
            self.diagnostics.publish(DiagnosticKind.MESSAGE, direction="received", text=text)
            return
        label = self._bridge.label if self._bridge is not None else self._channel_label
        self.diagnostics.publish(DiagnosticKind.CHANNEL, label=label, state=kind)

    async def _handle_session_error(self, message: str) -> None:
        error = SessionError(message or "session error")
        self.last_session_error = error
        self._report(error)
        if self._session_error_policy is SessionErrorPolicy.FATAL:
            failure = await self._fail("session-error", f"session error: {error.message}")
            raise failure from error

    async def _handle_timeout(self, generation: int) -> None:
        if generation != self._timeout_generation:
            return
        self._timeout = None
        if self.state is ConnectionState.NEGOTIATING:
            raise await self._fail("timeout", f"negotiation timed out after {self._negotiation_timeout:g}s")
        if self.state is ConnectionState.FAILED:
            raise await self._fail(
                "restart-timeout",
                f"connectivity not restored within {self._negotiation_timeout:g}s of restarting",
            )

    # ------------------------------------------------------------------
    # Helpers
    def _attach(self, handle: PeerConnectionHandle) -> None:
        self._handle = handle
        handle.on_local_candidate(lambda candidate: self._post(_LOCAL_CANDIDATE, (handle, candidate)))
        handle.on_connectivity_state_change(lambda state: self._post(_CONNECTIVITY, (handle, state)))

    def _open_data_channel(self, handle: PeerConnectionHandle) -> DataChannelBridge:
        bridge = DataChannelBridge(handle.create_data_channel(self._channel_label))
        bridge.opened.subscribe(lambda: self._post(_CHANNEL, (handle, "open", None)))
        bridge.message_received.subscribe(lambda text: self._post(_CHANNEL, (handle, "message", text)))
        bridge.closed.subscribe(lambda: self._post(_CHANNEL, (handle, "close", None)))
        return bridge

    def _is_live(self, handle: PeerConnectionHandle) -> bool:
        return not self._closed and self._handle is handle

    def _from_remote(self, sender: Optional[str]) -> bool:
        remote_id = self.session.remote_id
        return sender is None or remote_id is None or sender == remote_id

    def _drop(self, event: str, sender: Optional[str]) -> None:
        self.diagnostics.publish(
            DiagnosticKind.DROPPED,
            event=event,
            reason="unexpected sender",
            sender=sender,
        )

    def _report(self, error: BaseException) -> None:
        payload: Dict[str, Any] = {
            "error": type(error).__name__,
            "message": str(error),
            "state": self.state.value,
        }
        if error.__cause__ is not None:
            payload["cause"] = repr(error.__cause__)
        self.diagnostics.publish(DiagnosticKind.ERROR, **payload)

    def _set_state(self, state: ConnectionState, **detail: Any) -> None:
        previous = self.connection_state.value
        if previous is state:
            return
        self.connection_state.set(state)
        self.diagnostics.publish(
            DiagnosticKind.TRANSITION,
            **{"from": previous.value, "to": state.value},
            **detail,
        )

    def _arm_timeout(self) -> None:
        self._cancel_timeout()
        if not self._negotiation_timeout or self._negotiation_timeout <= 0:
            return
        loop = asyncio.get_running_loop()
        self._timeout = loop.call_later(self._negotiation_timeout, self._post, _TIMEOUT, self._timeout_generation)

    def _cancel_timeout(self) -> None:
        self._timeout_generation += 1
        if self._timeout is not None:
            self._timeout.cancel()
            self._timeout = None

    async def _fail(self, phase: str, message: str) -> NegotiationFailed:
        self._set_state(ConnectionState.FAILED, phase=phase)
        error = NegotiationFailed(message, phase=phase)
        self.failure = error
        await self._close(message)
        return error

    async def _close(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_timeout()
        for token in self._subscriptions:
            self._channel.off(token)
        self._subscriptions.clear()

        handle, bridge = self._handle, self._bridge
        self._handle = None
        self._bridge = None
        self._buffer.clear()
        if bridge is not None:
            bridge.detach()
        self._set_state(ConnectionState.CLOSED, reason=reason)

        worker = self._worker
        if worker is not None and not worker.done():
            if worker is asyncio.current_task():
                self._queue.put_nowait(_Event(_STOP))
            else:
                worker.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await worker

        if handle is not None:
            try:
                await handle.close()
            except Exception:
                self.logger.warning("Peer connection did not close cleanly", exc_info=True)


__all__ = [
    "ConnectionState",
    "DEFAULT_CHANNEL_LABEL",
    "DEFAULT_NEGOTIATION_TIMEOUT",
    "NegotiationStateMachine",
    "Role",
    "Session",
    "SessionErrorPolicy",
]
