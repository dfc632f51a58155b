"""
Contracts for the local peer-connection capability.

The negotiation core never talks to a WebRTC stack directly.  It drives a
:class:`PeerConnectionHandle` created by a :class:`PeerConnectionFactory`, and
the data channel through the :class:`DataChannel` contract.  See
:mod:`counterlink.rtc.aiortc_adapter` for the aiortc-backed implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Sequence, Union

from .ice_servers import IceServerConfig
from .webrtc import IceCandidate, SessionDescription

# Values a handle may report through ``on_connectivity_state_change``.
CONNECTIVITY_STATES = frozenset(
    {"new", "checking", "connecting", "connected", "completed", "disconnected", "failed", "closed"}
)

ChannelMessage = Union[str, bytes]


class RestartUnsupported(RuntimeError):
    """Raised by handles whose stack cannot restart connectivity in place."""


class DataChannel(ABC):
    """A bidirectional message channel owned by a peer connection."""

    @property
    @abstractmethod
    def label(self) -> str:
        raise NotImplementedError

    @property
    @abstractmethod
    def ready_state(self) -> str:
        """One of ``connecting``, ``open``, ``closing``, ``closed``."""
        raise NotImplementedError

    @abstractmethod
    def send(self, data: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_open(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_message(self, callback: Callable[[ChannelMessage], None]) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_close(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError


class PeerConnectionHandle(ABC):
    """One live peer connection."""

    @abstractmethod
    def create_data_channel(self, label: str) -> DataChannel:
        raise NotImplementedError

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        raise NotImplementedError

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """
        Commit ``description`` locally and return what was committed.

        Stacks that gather candidates during this call (aiortc) return the
        description with the gathered candidates embedded.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        raise NotImplementedError

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        raise NotImplementedError

    @property
    @abstractmethod
    def connectivity_state(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def restart_connectivity(self) -> None:
        """Best-effort path renegotiation; raise :class:`RestartUnsupported` if impossible."""
        raise NotImplementedError

    @abstractmethod
    def on_local_candidate(self, callback: Callable[[IceCandidate], None]) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_connectivity_state_change(self, callback: Callable[[str], None]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class PeerConnectionFactory(ABC):
    @abstractmethod
    def create(self, ice_servers: Sequence[IceServerConfig]) -> PeerConnectionHandle:
        raise NotImplementedError


__all__ = [
    "CONNECTIVITY_STATES",
    "ChannelMessage",
    "DataChannel",
    "PeerConnectionFactory",
    "PeerConnectionHandle",
    "RestartUnsupported",
]
