"""
Signaling channel contract, wire schemas and transports.
"""

from __future__ import annotations

from .channel import LoopbackSignalingChannel, SignalingChannel
from .websocket import WebSocketSignalingChannel

__all__ = ["LoopbackSignalingChannel", "SignalingChannel", "WebSocketSignalingChannel"]
