"""
aiortc-backed implementation of the peer-connection contracts.

aiortc gathers all local candidates while ``setLocalDescription`` runs and
embeds them in the committed SDP, so ``on_local_candidate`` callbacks never
fire for this stack.  aiortc also has no ICE restart; ``restart_connectivity``
raises :class:`~counterlink.rtc.adapter.RestartUnsupported`.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .adapter import (
    ChannelMessage,
    DataChannel,
    PeerConnectionFactory,
    PeerConnectionHandle,
    RestartUnsupported,
)
from .ice_servers import IceServerConfig
from .webrtc import IceCandidate, SessionDescription

LOG = logging.getLogger(__name__)

CANDIDATE_PREFIX = "candidate:"


def candidate_to_aiortc(candidate: IceCandidate) -> Optional[RTCIceCandidate]:
    """
    Convert a browser-style candidate into an aiortc candidate.

    Returns ``None`` for the end-of-candidates marker, which is what
    ``RTCPeerConnection.addIceCandidate`` expects for it.
    """

    if candidate.is_end_of_candidates:
        return None
    sdp = candidate.candidate.strip()
    if sdp.startswith(CANDIDATE_PREFIX):
        sdp = sdp[len(CANDIDATE_PREFIX):]
    parsed = candidate_from_sdp(sdp)
    parsed.sdpMid = candidate.sdp_mid
    parsed.sdpMLineIndex = candidate.sdp_mline_index
    return parsed


def candidate_from_aiortc(candidate: RTCIceCandidate) -> IceCandidate:
    return IceCandidate(
        candidate=CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        sdp_mid=candidate.sdpMid,
        sdp_mline_index=candidate.sdpMLineIndex,
    )


def build_configuration(ice_servers: Sequence[IceServerConfig]) -> RTCConfiguration:
    return RTCConfiguration(
        iceServers=[
            RTCIceServer(urls=list(server.urls), username=server.username, credential=server.credential)
            for server in ice_servers
        ]
    )


class AiortcDataChannel(DataChannel):
    def __init__(self, channel: RTCDataChannel) -> None:
        self._channel = channel

    @property
    def label(self) -> str:
        return self._channel.label

    @property
    def ready_state(self) -> str:
        return self._channel.readyState

    def send(self, data: str) -> None:
        self._channel.send(data)

    def on_open(self, callback: Callable[[], None]) -> None:
        self._channel.on("open", callback)

    def on_message(self, callback: Callable[[ChannelMessage], None]) -> None:
        self._channel.on("message", callback)

    def on_close(self, callback: Callable[[], None]) -> None:
        self._channel.on("close", callback)


class AiortcPeerConnection(PeerConnectionHandle):
    def __init__(self, pc: RTCPeerConnection) -> None:
        self._pc = pc
        self._state_callbacks: List[Callable[[str], None]] = []
        self._candidate_callbacks: List[Callable[[IceCandidate], None]] = []
        self._pc.on("iceconnectionstatechange", self._handle_ice_state_change)

    @property
    def peer_connection(self) -> RTCPeerConnection:
        return self._pc

    def _handle_ice_state_change(self) -> None:
        state = self._pc.iceConnectionState
        LOG.debug("aiortc ICE connection state -> %s", state)
        for callback in list(self._state_callbacks):
            callback(state)

    def create_data_channel(self, label: str) -> DataChannel:
        return AiortcDataChannel(self._pc.createDataChannel(label))

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))
        committed = self._pc.localDescription
        return SessionDescription(type=committed.type, sdp=committed.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        await self._pc.addIceCandidate(candidate_to_aiortc(candidate))

    @property
    def connectivity_state(self) -> str:
        return self._pc.iceConnectionState

    async def restart_connectivity(self) -> None:
        raise RestartUnsupported("aiortc cannot restart ICE on a live peer connection")

    def on_local_candidate(self, callback: Callable[[IceCandidate], None]) -> None:
        self._candidate_callbacks.append(callback)

    def on_connectivity_state_change(self, callback: Callable[[str], None]) -> None:
        self._state_callbacks.append(callback)

    async def close(self) -> None:
        self._state_callbacks.clear()
        self._candidate_callbacks.clear()
        await self._pc.close()


class AiortcPeerConnectionFactory(PeerConnectionFactory):
    def create(self, ice_servers: Sequence[IceServerConfig]) -> PeerConnectionHandle:
        return AiortcPeerConnection(RTCPeerConnection(configuration=build_configuration(ice_servers)))


__all__ = [
    "AiortcDataChannel",
    "AiortcPeerConnection",
    "AiortcPeerConnectionFactory",
    "build_configuration",
    "candidate_from_aiortc",
    "candidate_to_aiortc",
]
