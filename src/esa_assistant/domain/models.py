"""Domain entities and value objects.

These are the core data structures of the assistant, independent of Slack,
esa or any model provider. Request-scoped objects are frozen so they can be
shared read-only between concurrently running branches of a request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]

# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Document:
    """A published (or draft) esa article. ``number`` is unique per team."""

    number: int
    name: str
    full_name: str
    body_md: str
    category: str | None
    tags: tuple[str, ...]
    created_at: str
    updated_at: str
    url: str
    wip: bool = False


@dataclass(frozen=True)
class Category:
    path: str
    post_count: int


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatHistory:
    """One turn of conversation context, in chronological order."""

    role: Role
    text: str = ""


@dataclass(frozen=True)
class StreamChunk:
    """One increment of a streamed answer.

    Carries either ``text_delta`` or, as the last chunk of a stream, the
    ``total_token_count`` of the whole generation.
    """

    text_delta: str | None = None
    total_token_count: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.text_delta is None


# ---------------------------------------------------------------------------
# Article drafting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DuplicateCheckResult:
    """Outcome of comparing a conversation with existing documents."""

    is_duplicate: bool
    matched_documents: tuple[Document, ...] = ()
    additional_info: tuple[str, ...] = ()
    reason: str = ""

    def __post_init__(self) -> None:
        if not self.is_duplicate and self.matched_documents:
            object.__setattr__(self, "matched_documents", ())

    @property
    def primary_match(self) -> Document | None:
        return self.matched_documents[0] if self.matched_documents else None


class GeneratedArticle(BaseModel):
    """An article drafted from a conversation. No field is optional."""

    title: str = Field(description="Concise title describing the article")
    body: str = Field(description="Article body in Markdown")
    tags: list[str] = Field(description="Tags to attach to the article")


# ---------------------------------------------------------------------------
# Chat workspace views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserProfile:
    id: str
    is_restricted: bool = False
    is_ultra_restricted: bool = False

    @property
    def is_guest(self) -> bool:
        return self.is_restricted or self.is_ultra_restricted

    @classmethod
    def from_slack(cls, payload: dict[str, Any]) -> UserProfile:
        return cls(
            id=payload.get("id", ""),
            is_restricted=bool(payload.get("is_restricted")),
            is_ultra_restricted=bool(payload.get("is_ultra_restricted")),
        )


@dataclass(frozen=True)
class ChannelInfo:
    id: str
    is_shared: bool = False
    is_ext_shared: bool = False

    @property
    def is_externally_shared(self) -> bool:
        return self.is_shared or self.is_ext_shared

    @classmethod
    def from_slack(cls, payload: dict[str, Any]) -> ChannelInfo:
        return cls(
            id=payload.get("id", ""),
            is_shared=bool(payload.get("is_shared")),
            is_ext_shared=bool(payload.get("is_ext_shared")),
        )


@dataclass(frozen=True)
class ThreadMessage:
    """A message as returned by a thread-replies lookup."""

    ts: str | None
    text: str = ""
    user: str | None = None
    bot_id: str | None = None
    thread_ts: str | None = None

    @classmethod
    def from_slack(cls, payload: dict[str, Any]) -> ThreadMessage:
        return cls(
            ts=payload.get("ts"),
            text=payload.get("text") or "",
            user=payload.get("user"),
            bot_id=payload.get("bot_id"),
            thread_ts=payload.get("thread_ts"),
        )


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MentionEvent:
    channel: str
    user: str
    ts: str
    text: str
    thread_ts: str | None = None
    user_profile: UserProfile | None = None

    @property
    def reply_thread_ts(self) -> str:
        """Thread every response to this mention is posted into."""
        return self.thread_ts or self.ts

    @classmethod
    def from_slack(cls, event: dict[str, Any]) -> MentionEvent:
        profile = event.get("user_profile")
        return cls(
            channel=event["channel"],
            user=event.get("user", ""),
            ts=event["ts"],
            text=event.get("text") or "",
            thread_ts=event.get("thread_ts"),
            user_profile=(
                UserProfile.from_slack({"id": event.get("user", ""), **profile}) if profile else None
            ),
        )


@dataclass(frozen=True)
class ReactionEvent:
    reaction: str
    user: str
    item_type: str
    item_channel: str | None = None
    item_ts: str | None = None
    bot_id: str | None = field(default=None, compare=False)

    @classmethod
    def from_slack(cls, event: dict[str, Any], bot_id: str | None = None) -> ReactionEvent:
        item = event.get("item") or {}
        return cls(
            reaction=event.get("reaction", ""),
            user=event.get("user", ""),
            item_type=item.get("type", ""),
            item_channel=item.get("channel"),
            item_ts=item.get("ts"),
            bot_id=bot_id,
        )
