"""
Counter process entrypoint.

Connects to the signaling relay, negotiates a data channel with the kiosk that
joins the configured session key and, unless ``--no-api`` is given, serves the
local control API until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from .negotiation.diagnostics import DiagnosticStream
from .negotiation.state_machine import ConnectionState, NegotiationStateMachine
from .rtc.aiortc_adapter import AiortcPeerConnectionFactory
from .settings import DEFAULT_PROFILE, CounterSettings, load_settings
from .signaling.websocket import WebSocketSignalingChannel
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


def build_session(settings: CounterSettings, channel: WebSocketSignalingChannel) -> NegotiationStateMachine:
    return NegotiationStateMachine(
        channel,
        AiortcPeerConnectionFactory(),
        channel_label=settings.channel_label,
        negotiation_timeout=settings.negotiation_timeout,
        max_restarts=settings.max_restarts,
        session_error_policy=settings.session_error_policy,
        diagnostics=DiagnosticStream(history=settings.diagnostics_history),
    )


async def serve(
    settings: CounterSettings,
    host: str = "127.0.0.1",
    port: int = 8090,
    enable_api: bool = True,
) -> None:
    """
    Run one counter session until interrupted.

    Parameters
    ----------
    settings:
        Resolved counter settings.
    host, port:
        Bind address for the FastAPI/uvicorn control server.
    enable_api:
        When false, only the negotiation runs.
    """

    channel = WebSocketSignalingChannel(
        settings.signaling_url,
        ice_servers_url=settings.ice_servers_url,
        ice_servers=settings.ice_server_configs(),
    )
    await channel.connect()
    session = build_session(settings, channel)

    stop_event = asyncio.Event()

    def _log_state(state: ConnectionState) -> None:
        LOG.info("Connection state: %s", state.value)
        if state is ConnectionState.CLOSED:
            stop_event.set()

    def _log_message(text: Optional[str]) -> None:
        if text is not None:
            LOG.info("Kiosk says: %s", text)

    session.connection_state.subscribe(_log_state)
    session.last_received_message.subscribe(_log_message)

    server = None
    server_task: Optional[asyncio.Task] = None
    stop_waiter: Optional[asyncio.Future] = None
    loop = asyncio.get_running_loop()
    installed_signals = []

    def _handle_signal() -> None:
        LOG.info("Received shutdown signal, closing session...")
        stop_event.set()

    try:
        await session.initialise()
        if enable_api:
            import uvicorn

            from .api.server import create_app

            app = create_app(session=session, settings=settings)
            server = uvicorn.Server(
                uvicorn.Config(app=app, host=host, port=port, log_config=None, log_level="info", reload=False)
            )
            # uvicorn handles SIGINT/SIGTERM itself; serve() returns once it exits.
            server_task = asyncio.create_task(server.serve())
        else:
            for signame in ("SIGINT", "SIGTERM"):
                signum = getattr(signal, signame)
                loop.add_signal_handler(signum, _handle_signal)
                installed_signals.append(signum)

        await session.start(settings.session_key)
        LOG.info("Waiting for a kiosk to join session %s", settings.session_key)
        stop_waiter = asyncio.ensure_future(stop_event.wait())
        waiters = {stop_waiter}
        if server_task is not None:
            waiters.add(server_task)
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if stop_waiter is not None:
            stop_waiter.cancel()
        await session.close()
        if server_task is not None and not server_task.done():
            server.should_exit = True
            await server_task
        await channel.close()
        for signum in installed_signals:
            loop.remove_signal_handler(signum)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Counterlink counter endpoint")
    parser.add_argument("--profile", default=DEFAULT_PROFILE, help="settings profile to load")
    parser.add_argument("--config", type=Path, default=None, help="alternative profiles.yaml")
    parser.add_argument("--session-key", default=None, help="session key to join")
    parser.add_argument("--signaling-url", default=None, help="WebSocket URL of the signaling relay")
    parser.add_argument("--host", default="127.0.0.1", help="bind host for the control API")
    parser.add_argument("--port", type=int, default=8090, help="bind port for the control API")
    parser.add_argument("--no-api", action="store_true", help="do not serve the control API")
    parser.add_argument("--log-level", default="INFO", help="root log level")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    settings = load_settings(
        args.profile,
        path=args.config,
        overrides={"sessionKey": args.session_key, "signalingUrl": args.signaling_url},
    )

    try:
        asyncio.run(serve(settings, host=args.host, port=args.port, enable_api=not args.no_api))
    except KeyboardInterrupt:
        LOG.info("Counter interrupted by user.")


if __name__ == "__main__":
    run()
