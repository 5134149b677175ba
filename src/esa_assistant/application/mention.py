"""Mention workflow: answer an @mention from esa articles, streamed into Slack.

Guard -> placeholder (+ thread history) -> document discovery -> streamed
answer rendered into the placeholder -> completion log. This class is the
failure boundary: nothing raised inside ``handle`` reaches the caller.
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import Callable
from datetime import datetime

from loguru import logger

from esa_assistant.application import messages
from esa_assistant.application.conversation import authored_by_any_bot, to_chat_history
from esa_assistant.application.discovery import DocumentFinder
from esa_assistant.domain.models import ChatHistory, MentionEvent
from esa_assistant.domain.protocols import IChatTransport, IGenerationService
from esa_assistant.utils.dates import DEFAULT_TIMEZONE, utcnow


class MentionHandler:
    """Answers questions addressed to the bot.

    Parameters
    ----------
    transport:
        Chat API used for posts, edits and lookups.
    finder:
        Document discovery pipeline.
    generation_service:
        Backend producing the streamed answer.
    """

    def __init__(
        self,
        transport: IChatTransport,
        finder: DocumentFinder,
        generation_service: IGenerationService,
        *,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.transport = transport
        self.finder = finder
        self.generation_service = generation_service
        self.timezone = timezone
        self.clock = clock

    async def handle(self, event: MentionEvent) -> None:
        log = logger.bind(handler="MentionHandler", channel=event.channel, user=event.user)
        log.info("Start handle | thread={}", event.thread_ts)

        t0 = time.perf_counter()
        total_tokens: int | None = None
        try:
            if await self._rejected(event):
                return
            total_tokens = await self._respond(event)
        except Exception as exc:
            log.exception("Failed to answer mention")
            await self._post_error(event, exc)
        finally:
            latency = int((time.perf_counter() - t0) * 1000)
            log.info("End handle | latency={}ms total_tokens={}", latency, total_tokens)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _rejected(self, event: MentionEvent) -> bool:
        profile = event.user_profile or await self.transport.lookup_user(event.user)
        if profile.is_guest:
            logger.info("Ignoring mention from restricted user | user={}", event.user)
            await self.transport.post_message(event.channel, event.reply_thread_ts, messages.GUEST_NOT_ALLOWED)
            return True

        channel = await self.transport.lookup_channel(event.channel)
        if channel.is_externally_shared:
            logger.info("Ignoring mention in externally shared channel | channel={}", event.channel)
            await self.transport.post_message(
                event.channel, event.reply_thread_ts, messages.SHARED_CHANNEL_NOT_ALLOWED
            )
            return True
        return False

    async def _respond(self, event: MentionEvent) -> int | None:
        """Run the answer pipeline and return the total token count, if reported."""
        now = self.clock()
        placeholder_ts = await self.transport.post_message(
            event.channel, event.reply_thread_ts, messages.PLACEHOLDER
        )

        history: list[ChatHistory] | None = None
        if event.thread_ts:
            replies = await self.transport.fetch_thread_replies(event.channel, event.thread_ts)
            history = to_chat_history(replies, authored_by_any_bot, self.timezone)

        discovery = await self.finder.discover(event.text, history, now)

        stream = await self.generation_service.answer_question(
            discovery.documents, event.text, history=history, now=now
        )
        answer = ""
        total_tokens: int | None = None
        async with contextlib.aclosing(stream):
            async for chunk in stream:
                if chunk.is_terminal:
                    total_tokens = chunk.total_token_count
                    continue
                answer += chunk.text_delta
                await self.transport.update_message(event.channel, placeholder_ts, answer, markdown=True)
        return total_tokens

    async def _post_error(self, event: MentionEvent, exc: Exception) -> None:
        try:
            await self.transport.post_message(
                event.channel,
                event.reply_thread_ts,
                messages.ANSWER_FAILED.format(error=exc),
            )
        except Exception:
            logger.exception("Failed to post error message | channel={}", event.channel)
