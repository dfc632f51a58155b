"""
WebSocket signaling client.

Frames are JSON objects ``{"event": <name>, "data": <payload>}``.  Right after
the socket opens, the relay announces the identifier it assigned to this
connection with a ``connected`` frame (``{"id": ...}``); that identifier is
the local id used in every ``from`` field.

Reconnection is left to the caller: a dropped socket stops both
loops and :attr:`WebSocketSignalingChannel.is_closed` turns true.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from ..rtc.ice_servers import IceServerConfig, default_ice_servers, fetch_ice_servers
from .channel import SignalingChannel

LOG = logging.getLogger(__name__)

EVENT_CONNECTED = "connected"


def encode_frame(event: str, payload: Dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": payload}, separators=(",", ":"))


def decode_frame(raw: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(frame, dict):
        return None
    event = frame.get("event")
    if not isinstance(event, str) or not event:
        return None
    data = frame.get("data")
    return event, data if isinstance(data, dict) else {}


class WebSocketSignalingChannel(SignalingChannel):
    def __init__(
        self,
        url: str,
        *,
        ice_servers_url: Optional[str] = None,
        ice_servers: Optional[Sequence[IceServerConfig]] = None,
        queue_size: int = 256,
        id_timeout: float = 10.0,
    ) -> None:
        super().__init__()
        self.url = url
        self.ice_servers_url = ice_servers_url
        self._static_ice_servers = list(ice_servers) if ice_servers is not None else default_ice_servers()
        self._queue_size = max(1, int(queue_size))
        self._id_timeout = max(0.1, float(id_timeout))
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._send_queue: Optional[asyncio.Queue] = None
        self._local_id: Optional[asyncio.Future] = None
        self._tasks: List[asyncio.Task] = []
        self._closing = False

    @property
    def is_closed(self) -> bool:
        return self._ws is None or self._ws.closed

    async def connect(self) -> None:
        if self._ws is not None:
            return
        loop = asyncio.get_running_loop()
        self._local_id = loop.create_future()
        self._send_queue = asyncio.Queue(maxsize=self._queue_size)
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url, heartbeat=30.0)
        except aiohttp.ClientError:
            await self._session.close()
            self._session = None
            raise
        LOG.info("Connected to signaling relay %s", self.url)
        self._tasks = [
            loop.create_task(self._recv_loop()),
            loop.create_task(self._send_loop()),
        ]

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        if self._ws is not None:
            await self._ws.close()
        if self._session is not None:
            await self._session.close()
        if self._local_id is not None and not self._local_id.done():
            self._local_id.cancel()
        LOG.info("Signaling connection to %s closed", self.url)

    async def get_local_id(self) -> str:
        if self._local_id is None:
            raise RuntimeError("signaling channel is not connected")
        return await asyncio.wait_for(asyncio.shield(self._local_id), timeout=self._id_timeout)

    async def get_ice_servers(self) -> List[IceServerConfig]:
        if not self.ice_servers_url:
            return list(self._static_ice_servers)
        return await fetch_ice_servers(self.ice_servers_url)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self._send_queue is None or self._closing:
            LOG.warning("Dropping '%s': signaling channel is not connected", event)
            return
        try:
            self._send_queue.put_nowait(encode_frame(event, payload))
        except asyncio.QueueFull:
            LOG.warning("Dropping '%s' due to backpressure", event)

    async def _recv_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    decoded = decode_frame(msg.data)
                    if decoded is None:
                        LOG.warning("Ignoring malformed signaling frame: %s", msg.data[:120])
                        continue
                    event, data = decoded
                    if event == EVENT_CONNECTED:
                        self._handle_connected(data)
                        continue
                    self.dispatch(event, data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    LOG.warning("Signaling socket error: %s", self._ws.exception())
                    break
        finally:
            LOG.debug("Signaling receive loop finished")

    def _handle_connected(self, data: Dict[str, Any]) -> None:
        local_id = data.get("id")
        if not isinstance(local_id, str) or not local_id:
            LOG.warning("Relay announced an invalid local id: %r", local_id)
            return
        if self._local_id is not None and not self._local_id.done():
            self._local_id.set_result(local_id)
            LOG.info("Signaling relay assigned local id %s", local_id)

    async def _send_loop(self) -> None:
        assert self._ws is not None and self._send_queue is not None
        while True:
            frame = await self._send_queue.get()
            try:
                await self._ws.send_str(frame)
            except (aiohttp.ClientError, ConnectionResetError):
                LOG.exception("Failed to send signaling frame")
                break
            finally:
                self._send_queue.task_done()


__all__ = ["EVENT_CONNECTED", "WebSocketSignalingChannel", "decode_frame", "encode_frame"]
