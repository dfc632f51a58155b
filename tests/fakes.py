"""Fake peer-connection collaborators shared by the negotiation tests."""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Sequence

from counterlink.rtc.adapter import (
    ChannelMessage,
    DataChannel,
    PeerConnectionFactory,
    PeerConnectionHandle,
    RestartUnsupported,
)
from counterlink.rtc.ice_servers import IceServerConfig
from counterlink.rtc.webrtc import IceCandidate, SessionDescription

OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=offer\r\n"
ANSWER_SDP = "v=0\r\no=- 2 2 IN IP4 0.0.0.0\r\ns=answer\r\n"


def candidate(index: int) -> IceCandidate:
    return IceCandidate(
        candidate=f"candidate:{index} 1 udp 2122260223 192.0.2.{index} 5000{index} typ host",
        sdp_mid="0",
        sdp_mline_index=0,
    )


class FakeDataChannel(DataChannel):
    def __init__(self, label: str) -> None:
        self._label = label
        self.state = "connecting"
        self.sent: List[str] = []
        self._open: List[Callable[[], None]] = []
        self._message: List[Callable[[ChannelMessage], None]] = []
        self._close: List[Callable[[], None]] = []

    @property
    def label(self) -> str:
        return self._label

    @property
    def ready_state(self) -> str:
        return self.state

    def send(self, data: str) -> None:
        self.sent.append(data)

    def on_open(self, callback: Callable[[], None]) -> None:
        self._open.append(callback)

    def on_message(self, callback: Callable[[ChannelMessage], None]) -> None:
        self._message.append(callback)

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close.append(callback)

    def fire_open(self) -> None:
        self.state = "open"
        for callback in list(self._open):
            callback()

    def fire_message(self, message: ChannelMessage) -> None:
        for callback in list(self._message):
            callback(message)

    def fire_close(self) -> None:
        self.state = "closed"
        for callback in list(self._close):
            callback()


class FakeHandle(PeerConnectionHandle):
    """
    Records every call.  ``*_gate`` events, when set to an unset
    :class:`asyncio.Event`, hold the matching coroutine until released.
    """

    def __init__(self, ice_servers: Sequence[IceServerConfig] = ()) -> None:
        self.ice_servers = list(ice_servers)
        self.calls: List[str] = []
        self.applied: List[IceCandidate] = []
        self.local_description: Optional[SessionDescription] = None
        self.remote_description: Optional[SessionDescription] = None
        self.channels: List[FakeDataChannel] = []
        self.state = "new"
        self.closed = False
        self.restarts = 0

        self.fail_offer: Optional[Exception] = None
        self.fail_local: Optional[Exception] = None
        self.fail_remote: Optional[Exception] = None
        self.fail_restart: Optional[Exception] = None
        self.reject_candidates: List[str] = []
        self.committed_suffix = "a=committed\r\n"

        self.offer_gate: Optional[asyncio.Event] = None
        self.remote_gate: Optional[asyncio.Event] = None

        self._candidate_callbacks: List[Callable[[IceCandidate], None]] = []
        self._state_callbacks: List[Callable[[str], None]] = []

    @property
    def channel(self) -> FakeDataChannel:
        return self.channels[-1]

    def create_data_channel(self, label: str) -> DataChannel:
        self.calls.append(f"create_data_channel:{label}")
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    async def create_offer(self) -> SessionDescription:
        self.calls.append("create_offer")
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        if self.fail_offer is not None:
            raise self.fail_offer
        return SessionDescription(type="offer", sdp=OFFER_SDP)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        self.calls.append("set_local_description")
        if self.fail_local is not None:
            raise self.fail_local
        self.local_description = SessionDescription(type=description.type, sdp=description.sdp + self.committed_suffix)
        return self.local_description

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.calls.append("set_remote_description")
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        if self.fail_remote is not None:
            raise self.fail_remote
        self.remote_description = description

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        self.calls.append("add_ice_candidate")
        if candidate.candidate in self.reject_candidates:
            raise ValueError("malformed candidate")
        self.applied.append(candidate)

    @property
    def connectivity_state(self) -> str:
        return self.state

    async def restart_connectivity(self) -> None:
        self.calls.append("restart_connectivity")
        self.restarts += 1
        if self.fail_restart is not None:
            raise self.fail_restart

    def on_local_candidate(self, callback: Callable[[IceCandidate], None]) -> None:
        self._candidate_callbacks.append(callback)

    def on_connectivity_state_change(self, callback: Callable[[str], None]) -> None:
        self._state_callbacks.append(callback)

    async def close(self) -> None:
        self.calls.append("close")
        self.closed = True

    def gather(self, gathered: IceCandidate) -> None:
        for callback in list(self._candidate_callbacks):
            callback(gathered)

    def report(self, state: str) -> None:
        self.state = state
        for callback in list(self._state_callbacks):
            callback(state)


class FakeFactory(PeerConnectionFactory):
    def __init__(self, configure: Optional[Callable[[FakeHandle], None]] = None) -> None:
        self.handles: List[FakeHandle] = []
        self.configure = configure

    @property
    def handle(self) -> FakeHandle:
        return self.handles[-1]

    def create(self, ice_servers: Sequence[IceServerConfig]) -> PeerConnectionHandle:
        handle = FakeHandle(ice_servers)
        if self.configure is not None:
            self.configure(handle)
        self.handles.append(handle)
        return handle


__all__ = [
    "ANSWER_SDP",
    "FakeDataChannel",
    "FakeFactory",
    "FakeHandle",
    "OFFER_SDP",
    "RestartUnsupported",
    "candidate",
]
