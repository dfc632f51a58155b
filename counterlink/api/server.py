"""
FastAPI application exposing a single negotiation session.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from ..errors import ChannelNotOpen, InvalidTransition, NotReady
from ..negotiation.diagnostics import DiagnosticEvent
from ..negotiation.state_machine import NegotiationStateMachine
from ..settings import CounterSettings, read_profiles
from . import schemas

LOG = logging.getLogger(__name__)

STREAM_QUEUE_SIZE = 256


def create_app(
    *,
    session: NegotiationStateMachine,
    settings: Optional[CounterSettings] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    counter_settings = settings or CounterSettings()

    app = FastAPI(title="Counterlink Control API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    async def healthz() -> dict:
        return {
            "status": "ok",
            "sessionKey": counter_settings.session_key,
            "connectionState": session.state.value,
        }

    @app.get("/profiles")
    async def list_profiles() -> dict:
        return {"profiles": read_profiles()}

    @app.get("/session", response_model=schemas.SessionSnapshotModel, response_model_by_alias=True)
    async def get_session() -> schemas.SessionSnapshotModel:
        return schemas.SessionSnapshotModel.model_validate(session.snapshot())

    @app.post("/session/start")
    async def start_session(payload: Optional[schemas.StartSessionRequest] = None) -> dict:
        session_key = (payload.session_key if payload is not None else None) or counter_settings.session_key
        try:
            await session.start(session_key)
        except (NotReady, InvalidTransition) as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"started": True, "sessionKey": session.session.session_key}

    @app.post("/messages", status_code=202)
    async def send_message(payload: schemas.MessageRequest) -> dict:
        try:
            session.send_message(payload.text)
        except ChannelNotOpen as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"accepted": True}

    @app.get("/diagnostics", response_model=schemas.DiagnosticCollection)
    async def list_diagnostics(limit: Optional[int] = Query(default=None, ge=0)) -> schemas.DiagnosticCollection:
        events = [event.to_dict() for event in session.diagnostics.recent(limit)]
        return schemas.DiagnosticCollection.model_validate({"events": events})

    @app.websocket("/diagnostics/stream")
    async def diagnostics_stream(websocket: WebSocket) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)

        def _enqueue(payload: Dict[str, Any]) -> None:
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                LOG.warning("Dropping diagnostic for slow stream client")

        def _forward(event: DiagnosticEvent) -> None:
            if loop.is_closed():
                return
            try:
                loop.call_soon_threadsafe(_enqueue, event.to_dict())
            except RuntimeError:
                LOG.debug("Diagnostic forwarding failed; loop is shutting down.", exc_info=True)

        async def _pump() -> None:
            while True:
                payload = await queue.get()
                try:
                    await websocket.send_json(payload)
                except (WebSocketDisconnect, RuntimeError):
                    return

        token = session.diagnostics.subscribe(_forward)
        pump: Optional[asyncio.Task] = None
        try:
            await websocket.accept()
            pump = asyncio.create_task(_pump())
            while True:
                message = await websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            session.diagnostics.unsubscribe(token)
            if pump is not None:
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
            LOG.debug("Diagnostic stream client disconnected")

    return app


__all__ = ["create_app"]
