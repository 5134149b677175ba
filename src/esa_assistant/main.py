"""Process entry point: wires Slack, esa, the model backend and the HTTP app.

Runs everything on one event loop: the Socket Mode connection, the uvicorn
server for the health endpoints and the connection monitor.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import Iterator

import uvicorn
from loguru import logger
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_sdk.web.async_client import AsyncWebClient

from esa_assistant.application.discovery import DocumentFinder
from esa_assistant.application.mention import MentionHandler
from esa_assistant.application.reaction import ReactionHandler
from esa_assistant.config import Settings, get_settings
from esa_assistant.logging_config import setup_logging
from esa_assistant.presentation.http_app import build_http_app
from esa_assistant.presentation.slack_app import SlackChatTransport, build_slack_app
from esa_assistant.services.connection_monitor import (
    SocketState,
    mark_connected,
    mark_disconnected,
    start_connection_monitor,
)
from esa_assistant.services.esa_client import EsaClient
from esa_assistant.services.esa_service import EsaService
from esa_assistant.services.generation_service import AgentGenerationService


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the caller."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


async def serve(settings: Settings) -> None:
    """Run the assistant until SIGINT/SIGTERM."""
    state = SocketState()

    slack_client = AsyncWebClient(token=settings.slack_bot_token, timeout=settings.slack_api_timeout_s)
    transport = SlackChatTransport(slack_client)
    esa_client = EsaClient(
        settings.esa_api_key,
        settings.esa_team_name,
        base_url=settings.esa_base_url,
        archive_marker=settings.esa_archive_marker,
    )
    esa_service = EsaService(esa_client)
    generation = AgentGenerationService.from_settings(settings)
    finder = DocumentFinder(esa_service, generation)

    mention_handler = MentionHandler(transport, finder, generation, timezone=settings.display_timezone)
    reaction_handler = ReactionHandler(
        transport,
        finder,
        generation,
        esa_service,
        target_reaction=settings.esa_autogen_trigger_reaction,
        create_as_wip=settings.esa_create_as_wip,
        timezone=settings.display_timezone,
    )
    slack_app = build_slack_app(settings.slack_bot_token, mention_handler, reaction_handler, client=slack_client)
    socket_handler = AsyncSocketModeHandler(slack_app, settings.slack_app_token)

    http_server = _EmbeddedServer(
        uvicorn.Config(
            build_http_app(state, settings.readiness_grace_ms),
            host=settings.host,
            port=settings.port,
            log_config=None,
        )
    )
    logger.info("HTTP server starting | host={} port={}", settings.host, settings.port)
    http_task = asyncio.create_task(http_server.serve(), name="http-server")

    try:
        await socket_handler.connect_async()
        mark_connected(state)
        logger.info("Running in Socket Mode")
    except Exception:
        mark_disconnected(state)
        logger.exception("Unable to start Socket Mode")

    monitor = start_connection_monitor(slack_client.auth_test, state, settings.slack_ping_interval_ms)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await stop.wait()
    logger.info("Shutting down")
    monitor.stop()
    try:
        await socket_handler.close_async()
    finally:
        http_server.should_exit = True
        await http_task
        await esa_client.aclose()
        logger.info("Shutdown complete")


def run() -> None:
    settings = get_settings()
    setup_logging(level=settings.log_level, json=settings.log_format == "json")
    settings.validate_runtime()
    asyncio.run(serve(settings))


if __name__ == "__main__":
    run()
