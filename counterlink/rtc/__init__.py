"""
WebRTC helpers.
"""

from __future__ import annotations

from .adapter import DataChannel, PeerConnectionFactory, PeerConnectionHandle, RestartUnsupported
from .data_channel import DataChannelBridge
from .ice_servers import IceServerConfig
from .webrtc import IceCandidate, SessionDescription

__all__ = [
    "DataChannel",
    "DataChannelBridge",
    "IceCandidate",
    "IceServerConfig",
    "PeerConnectionFactory",
    "PeerConnectionHandle",
    "RestartUnsupported",
    "SessionDescription",
]
