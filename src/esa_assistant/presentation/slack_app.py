"""Slack wiring: Web API transport, Bolt listeners and request logging."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from slack_bolt.async_app import AsyncApp
from slack_bolt.context.async_context import AsyncBoltContext
from slack_sdk.web.async_client import AsyncWebClient

from esa_assistant.application.mention import MentionHandler
from esa_assistant.application.reaction import ReactionHandler
from esa_assistant.domain.models import (
    ChannelInfo,
    MentionEvent,
    ReactionEvent,
    ThreadMessage,
    UserProfile,
)

REPLIES_PAGE_SIZE = 200

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class SlackChatTransport:
    """Implements ``IChatTransport`` with the Slack Web API."""

    def __init__(self, client: AsyncWebClient) -> None:
        self.client = client

    async def post_message(self, channel: str, thread_ts: str | None, text: str) -> str:
        response = await self.client.chat_postMessage(channel=channel, thread_ts=thread_ts, text=text)
        return response["ts"]

    async def update_message(self, channel: str, ts: str, text: str, *, markdown: bool = False) -> None:
        if markdown:
            await self.client.chat_update(channel=channel, ts=ts, markdown_text=text)
        else:
            await self.client.chat_update(channel=channel, ts=ts, text=text)

    async def fetch_thread_replies(self, channel: str, thread_ts: str) -> list[ThreadMessage]:
        """All messages of a thread, root first, following pagination cursors."""
        replies: list[ThreadMessage] = []
        cursor: str | None = None
        while True:
            response = await self.client.conversations_replies(
                channel=channel, ts=thread_ts, cursor=cursor, limit=REPLIES_PAGE_SIZE
            )
            replies.extend(ThreadMessage.from_slack(m) for m in response.get("messages") or [])
            cursor = (response.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return replies

    async def lookup_user(self, user_id: str) -> UserProfile:
        response = await self.client.users_info(user=user_id)
        return UserProfile.from_slack(response.get("user") or {"id": user_id})

    async def lookup_channel(self, channel_id: str) -> ChannelInfo:
        response = await self.client.conversations_info(channel=channel_id)
        return ChannelInfo.from_slack(response.get("channel") or {"id": channel_id})


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def describe_trigger(body: dict[str, Any]) -> tuple[str, str | None]:
    """Return (trigger, channel) for a Bolt request body."""
    if "event" in body:
        event = body["event"] or {}
        channel = event.get("channel") or (event.get("item") or {}).get("channel")
        return f"event,{event.get('type', 'unknown')}", channel
    for kind in ("action", "command", "shortcut", "view"):
        if kind in body:
            return f"{kind},{body.get('type', 'unknown')}", None
    return "unknown", None


async def log_request(body: dict[str, Any], context: AsyncBoltContext, next: Callable[[], Awaitable[Any]]) -> None:
    """Log every handled request with its duration."""
    t0 = time.perf_counter()
    try:
        await next()
    finally:
        trigger, channel = describe_trigger(body)
        logger.info(
            "Handled request | trigger={} channel={} user={} duration={}ms",
            trigger,
            channel,
            context.user_id,
            int((time.perf_counter() - t0) * 1000),
        )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def register_listeners(
    app: AsyncApp,
    mention_handler: MentionHandler,
    reaction_handler: ReactionHandler,
) -> None:
    @app.event("app_mention")
    async def on_app_mention(event: dict[str, Any]) -> None:
        await mention_handler.handle(MentionEvent.from_slack(event))

    @app.event("reaction_added")
    async def on_reaction_added(event: dict[str, Any], context: AsyncBoltContext) -> None:
        await reaction_handler.handle(ReactionEvent.from_slack(event, bot_id=context.bot_id))


def build_slack_app(
    bot_token: str,
    mention_handler: MentionHandler,
    reaction_handler: ReactionHandler,
    *,
    client: AsyncWebClient | None = None,
) -> AsyncApp:
    """Create the Bolt app with the request logger and both listeners."""
    app = AsyncApp(token=bot_token, client=client)
    app.use(log_request)
    register_listeners(app, mention_handler, reaction_handler)
    return app
