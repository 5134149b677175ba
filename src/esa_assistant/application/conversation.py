"""Conversion of Slack thread messages into model conversation turns."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from esa_assistant.domain.models import ChatHistory, ThreadMessage
from esa_assistant.services.prompts import render_conversation
from esa_assistant.utils.dates import DEFAULT_TIMEZONE, format_local, from_slack_ts


def authored_by_any_bot(message: ThreadMessage) -> bool:
    return bool(message.bot_id)


def authored_by(bot_id: str | None) -> Callable[[ThreadMessage], bool]:
    """Assistant test for a specific bot; falls back to any bot when the id is unknown."""
    if not bot_id:
        return authored_by_any_bot
    return lambda message: message.bot_id == bot_id


def to_chat_history(
    messages: Sequence[ThreadMessage],
    is_assistant: Callable[[ThreadMessage], bool] = authored_by_any_bot,
    tz: str = DEFAULT_TIMEZONE,
) -> list[ChatHistory]:
    """Map thread messages to chat turns, annotating each with author and time.

    Empty messages stay empty strings so the turn order is preserved.
    """
    history: list[ChatHistory] = []
    for message in messages:
        role = "assistant" if is_assistant(message) else "user"
        if not message.text:
            history.append(ChatHistory(role=role, text=""))
            continue
        timestamp = format_local(from_slack_ts(message.ts), tz) if message.ts else "unknown time"
        author = message.user or message.bot_id or "unknown"
        history.append(ChatHistory(role=role, text=f"{message.text}\nfrom {author} at {timestamp}"))
    return history


def summarize(conversation: Sequence[ChatHistory]) -> str:
    """Flatten turns into ``[role]: text`` lines for use as a query."""
    return render_conversation(conversation, separator="\n")
