"""Reaction workflow: turn a Slack thread into an esa article.

Triggered by the configured reaction on a message. Guards skip silently
(a reaction gives no safe place to reply yet); once the thread is known,
failures are reported into it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from loguru import logger

from esa_assistant.application import messages
from esa_assistant.application.conversation import authored_by, summarize, to_chat_history
from esa_assistant.application.discovery import DocumentFinder
from esa_assistant.domain.models import DuplicateCheckResult, ReactionEvent
from esa_assistant.domain.protocols import IChatTransport, IDocumentSource, IGenerationService
from esa_assistant.utils.dates import DEFAULT_TIMEZONE, utcnow

CHANGE_NOTE = "Created from Slack conversation by esa-slack-assistant"


class ReactionHandler:
    """Drafts an article from a thread unless an existing one already covers it."""

    def __init__(
        self,
        transport: IChatTransport,
        finder: DocumentFinder,
        generation_service: IGenerationService,
        document_source: IDocumentSource,
        *,
        target_reaction: str = "esa",
        bot_id: str | None = None,
        create_as_wip: bool = True,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.transport = transport
        self.finder = finder
        self.generation_service = generation_service
        self.document_source = document_source
        self.target_reaction = target_reaction
        self.bot_id = bot_id
        self.create_as_wip = create_as_wip
        self.timezone = timezone
        self.clock = clock

    async def handle(self, event: ReactionEvent) -> None:
        if event.reaction != self.target_reaction or event.item_type != "message":
            return
        if not event.item_channel or not event.item_ts:
            return

        channel = event.item_channel
        log = logger.bind(handler="ReactionHandler", channel=channel, user=event.user)
        thread_ts: str | None = None
        try:
            if not await self._allowed(event):
                return

            log.info("Reaction detected | message={}", event.item_ts)
            thread_ts = await self._resolve_thread(channel, event.item_ts)
            if thread_ts is None:
                log.info("Could not determine thread | message={}", event.item_ts)
                return

            await self._draft(event, channel, thread_ts)
        except Exception as exc:
            log.exception("Failed to handle reaction")
            if thread_ts is not None:
                await self._post_error(channel, thread_ts, exc)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _allowed(self, event: ReactionEvent) -> bool:
        try:
            profile = await self.transport.lookup_user(event.user)
        except Exception as exc:
            logger.warning("Failed to fetch user info; skipping reaction | user={} error={!r}", event.user, exc)
            return False
        if profile.is_guest:
            logger.info("Ignoring reaction from restricted user | user={}", event.user)
            return False

        channel = await self.transport.lookup_channel(event.item_channel or "")
        if channel.is_externally_shared:
            logger.info("Ignoring reaction in externally shared channel | channel={}", event.item_channel)
            return False
        return True

    async def _resolve_thread(self, channel: str, message_ts: str) -> str | None:
        """The thread root: the message's ``thread_ts`` if it is a reply, else its own ``ts``."""
        replies = await self.transport.fetch_thread_replies(channel, message_ts)
        if not replies:
            return None
        return replies[0].thread_ts or replies[0].ts

    async def _draft(self, event: ReactionEvent, channel: str, thread_ts: str) -> None:
        now = self.clock()
        placeholder_ts = await self.transport.post_message(channel, thread_ts, messages.DRAFTING_PLACEHOLDER)

        thread = await self.transport.fetch_thread_replies(channel, thread_ts)
        conversation = to_chat_history(thread, authored_by(self.bot_id or event.bot_id), self.timezone)
        summary = summarize(conversation)

        discovery = await self.finder.discover(summary, now=now)
        result = await self.generation_service.check_duplicate(discovery.documents, summary, now=now)

        if result.is_duplicate and result.primary_match is not None:
            await self.transport.update_message(channel, placeholder_ts, self.format_duplicate(result))
            logger.info("Duplicate found | post={}", result.primary_match.number)
            return

        category = discovery.categories[0] if discovery.categories else None
        article = await self.generation_service.generate_article(conversation, category, now=now)
        logger.info("Article generated | title={} tags={}", article.title, article.tags)

        created = await self.document_source.create_document(
            title=article.title,
            body=article.body,
            tags=article.tags,
            category=category,
            wip=self.create_as_wip,
            message=CHANGE_NOTE,
        )
        template = messages.DRAFT_CREATED if created.wip else messages.ARTICLE_CREATED
        await self.transport.update_message(channel, placeholder_ts, template.format(url=created.url))
        logger.info("Article created | post={} url={}", created.number, created.url)

    @staticmethod
    def format_duplicate(result: DuplicateCheckResult) -> str:
        match = result.primary_match
        text = messages.DUPLICATE_FOUND.format(url=match.url if match else "")
        if result.additional_info:
            bullets = "\n".join(f"- {info}" for info in result.additional_info)
            text += messages.DUPLICATE_ADDITIONAL_INFO.format(bullets=bullets)
        return text

    async def _post_error(self, channel: str, thread_ts: str, exc: Exception) -> None:
        try:
            await self.transport.post_message(channel, thread_ts, messages.ARTICLE_FAILED.format(error=exc))
        except Exception:
            logger.exception("Failed to post error message | channel={}", channel)
