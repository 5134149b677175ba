"""Domain service interfaces (ports).

These protocols define the contracts that infrastructure implementations
must satisfy. The handlers depend on these abstractions, not on the esa,
Slack or model-provider classes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from esa_assistant.domain.models import (
    Category,
    ChannelInfo,
    ChatHistory,
    Document,
    DuplicateCheckResult,
    GeneratedArticle,
    StreamChunk,
    ThreadMessage,
    UserProfile,
)

# ---------------------------------------------------------------------------
# Document source
# ---------------------------------------------------------------------------


@runtime_checkable
class IDocumentSource(Protocol):
    """Interface for the knowledge base the bot reads from and writes to.

    Implementations: EsaService.
    """

    async def list_categories(self, exclude_archive: bool = True) -> list[Category]: ...

    async def collect_posts_by_categories(self, categories: Sequence[str]) -> list[Document]: ...

    async def search_posts_by_keywords(self, keywords: Sequence[str]) -> list[Document]: ...

    async def create_document(
        self,
        title: str,
        body: str,
        tags: Sequence[str] = (),
        category: str | None = None,
        wip: bool = True,
        message: str | None = None,
    ) -> Document: ...


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@runtime_checkable
class IGenerationService(Protocol):
    """Interface for the generative-language backend.

    Implementations: AgentGenerationService (pydantic-ai).
    """

    async def select_category(
        self,
        categories: Sequence[str],
        user_question: str,
        history: Sequence[ChatHistory] | None = None,
        now: datetime | None = None,
    ) -> list[str]: ...

    async def generate_keywords(
        self,
        categories: Sequence[str],
        user_question: str,
        history: Sequence[ChatHistory] | None = None,
        now: datetime | None = None,
    ) -> list[str]: ...

    async def answer_question(
        self,
        documents: Sequence[Document],
        question: str,
        history: Sequence[ChatHistory] | None = None,
        now: datetime | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Open an answer stream.

        Awaiting establishes the stream; iterating yields text deltas in
        arrival order followed by a single terminal usage chunk. Consumers that
        stop early should ``aclose()`` the generator to release the stream.
        """
        ...

    async def check_duplicate(
        self,
        documents: Sequence[Document],
        conversation_summary: str,
        now: datetime | None = None,
    ) -> DuplicateCheckResult: ...

    async def generate_article(
        self,
        conversation: Sequence[ChatHistory],
        category: str | None = None,
        now: datetime | None = None,
    ) -> GeneratedArticle: ...


# ---------------------------------------------------------------------------
# Chat transport
# ---------------------------------------------------------------------------


@runtime_checkable
class IChatTransport(Protocol):
    """Interface for the chat workspace API.

    Implementations: SlackChatTransport.
    """

    async def post_message(self, channel: str, thread_ts: str | None, text: str) -> str:
        """Post a message and return its ``ts``."""
        ...

    async def update_message(
        self, channel: str, ts: str, text: str, *, markdown: bool = False
    ) -> None: ...

    async def fetch_thread_replies(self, channel: str, thread_ts: str) -> list[ThreadMessage]: ...

    async def lookup_user(self, user_id: str) -> UserProfile: ...

    async def lookup_channel(self, channel_id: str) -> ChannelInfo: ...
