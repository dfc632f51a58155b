"""Negotiate a real aiortc data channel against an in-process kiosk.

The counter session runs unchanged; the signaling relay is replaced by a
:class:`~counterlink.signaling.LoopbackSignalingChannel` whose outbound events
drive a scripted kiosk built directly on aiortc.  The kiosk answers the offer
and echoes every data-channel message back, which is enough to watch the
whole handshake and a message round trip in the log.

Examples
--------
Run with the defaults::

    python scripts/demo_loopback.py

Send a custom message and enable debug logging::

    python scripts/demo_loopback.py --message "hello kiosk" --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any, Dict, Optional, Set

from aiortc import RTCPeerConnection, RTCSessionDescription

from counterlink.errors import ChannelNotOpen
from counterlink.negotiation import ConnectionState, NegotiationStateMachine
from counterlink.rtc.aiortc_adapter import AiortcPeerConnectionFactory
from counterlink.signaling import LoopbackSignalingChannel
from counterlink.signaling.schemas import EVENT_ANSWER, EVENT_JOIN_SESSION, EVENT_OFFER, EVENT_SESSION_JOINED
from counterlink.utils.logging import configure_logging

LOG = logging.getLogger("demo_loopback")

KIOSK_ID = "kiosk-1"


class ScriptedKiosk:
    """Answers offers emitted on a loopback channel with a real aiortc peer."""

    def __init__(self, channel: LoopbackSignalingChannel) -> None:
        self.channel = channel
        self.pc: Optional[RTCPeerConnection] = None
        self._tasks: Set[asyncio.Task] = set()

    def handle_emit(self, event: str, payload: Dict[str, Any]) -> None:
        if event == EVENT_JOIN_SESSION:
            LOG.info("Kiosk joining session %s", payload.get("sessionKey"))
            self.channel.deliver(EVENT_SESSION_JOINED, {"kioskId": KIOSK_ID})
        elif event == EVENT_OFFER:
            task = asyncio.ensure_future(self._answer(payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _answer(self, payload: Dict[str, Any]) -> None:
        self.pc = RTCPeerConnection()

        @self.pc.on("datachannel")
        def _on_datachannel(data_channel) -> None:
            @data_channel.on("message")
            def _on_message(message) -> None:
                data_channel.send(f"echo: {message}")

        offer = payload["offer"]
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=offer["sdp"], type=offer["type"]))
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        self.channel.deliver(
            EVENT_ANSWER,
            {
                "to": payload.get("from"),
                "from": KIOSK_ID,
                "answer": {"type": self.pc.localDescription.type, "sdp": self.pc.localDescription.sdp},
            },
        )

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self.pc is not None:
            await self.pc.close()


async def run_demo(message: str, session_key: str, timeout: float) -> bool:
    channel = LoopbackSignalingChannel("counter-1")
    kiosk = ScriptedKiosk(channel)
    channel.on_emit = kiosk.handle_emit

    session = NegotiationStateMachine(channel, AiortcPeerConnectionFactory(), negotiation_timeout=timeout)
    connected = asyncio.Event()
    replied = asyncio.Event()
    session.connection_state.subscribe(
        lambda state: connected.set() if state is ConnectionState.CONNECTED else None
    )
    session.last_received_message.subscribe(lambda text: replied.set() if text else None)

    try:
        await session.initialise()
        await session.start(session_key)
        await asyncio.wait_for(connected.wait(), timeout=timeout)

        for _ in range(int(timeout * 10)):
            bridge = session.bridge
            if bridge is not None and bridge.is_open:
                break
            await asyncio.sleep(0.1)
        session.send_message(message)
        await asyncio.wait_for(replied.wait(), timeout=timeout)
        LOG.info("Round trip complete: %s", session.last_received_message.value)
        return True
    except (asyncio.TimeoutError, ChannelNotOpen) as exc:
        LOG.error("Demo stopped in state %s: %r", session.state.value, exc)
        return False
    finally:
        await session.close()
        await kiosk.close()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--message", default="hello from the counter", help="text sent over the data channel")
    parser.add_argument("--session-key", default="KIOSK-ABC123", help="session key announced on join")
    parser.add_argument("--timeout", type=float, default=15.0, help="seconds to wait for each step")
    parser.add_argument("--log-level", default="INFO", help="root log level")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging(args.log_level)
    ok = asyncio.run(run_demo(args.message, args.session_key, args.timeout))
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
