"""
Caller-facing view of the data channel.
"""

from __future__ import annotations

import logging

from ..errors import ChannelNotOpen
from ..observable import EventHook
from .adapter import ChannelMessage, DataChannel

LOG = logging.getLogger(__name__)


class DataChannelBridge:
    """
    Pass-through exposing ``opened``, ``message_received`` and ``closed``.

    Sending is fire-and-forget: no acknowledgement or retry is attempted.
    Once :meth:`detach` is called, late callbacks from the underlying channel
    are ignored.
    """

    def __init__(self, channel: DataChannel) -> None:
        self._channel = channel
        self._detached = False
        self.opened = EventHook("data-channel.opened")
        self.message_received = EventHook("data-channel.message")
        self.closed = EventHook("data-channel.closed")

        channel.on_open(self._handle_open)
        channel.on_message(self._handle_message)
        channel.on_close(self._handle_close)

    @property
    def label(self) -> str:
        return self._channel.label

    @property
    def is_open(self) -> bool:
        return not self._detached and self._channel.ready_state == "open"

    def send(self, text: str) -> None:
        if not self.is_open:
            raise ChannelNotOpen(f"data channel '{self.label}' is {self._channel.ready_state}")
        self._channel.send(text)

    def detach(self) -> None:
        self._detached = True
        self.opened.clear()
        self.message_received.clear()
        self.closed.clear()

    def _handle_open(self) -> None:
        if self._detached:
            return
        LOG.debug("Data channel '%s' open", self.label)
        self.opened.emit()

    def _handle_message(self, message: ChannelMessage) -> None:
        if self._detached:
            return
        if isinstance(message, bytes):
            text = message.decode("utf-8", errors="replace")
        else:
            text = str(message)
        self.message_received.emit(text)

    def _handle_close(self) -> None:
        if self._detached:
            return
        LOG.debug("Data channel '%s' closed", self.label)
        self.closed.emit()


__all__ = ["DataChannelBridge"]
