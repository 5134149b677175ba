"""Shared fixtures for the assistant tests."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from loguru import logger

from esa_assistant.domain.models import Category, ChannelInfo, UserProfile
from tests.factories import make_documents, stream_of


def pytest_configure(config):
    """Set pytest-asyncio mode to auto so async test functions work without markers."""
    config.option.asyncio_mode = "auto"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@pytest.fixture()
def transport() -> AsyncMock:
    """A chat transport whose posts return ts ``200.200`` and whose users are members."""
    fake = AsyncMock()
    fake.post_message.return_value = "200.200"
    fake.update_message.return_value = None
    fake.fetch_thread_replies.return_value = []
    fake.lookup_user.return_value = UserProfile(id="U123")
    fake.lookup_channel.return_value = ChannelInfo(id="C123")
    return fake


@pytest.fixture()
def document_source() -> AsyncMock:
    fake = AsyncMock()
    fake.list_categories.return_value = [
        Category(path="Category1", post_count=10),
        Category(path="Category2", post_count=5),
    ]
    fake.collect_posts_by_categories.return_value = make_documents([1, 2])
    fake.search_posts_by_keywords.return_value = make_documents([2, 3])
    return fake


@pytest.fixture()
def generation_service() -> AsyncMock:
    fake = AsyncMock()
    fake.select_category.return_value = ["Category1"]
    fake.generate_keywords.return_value = ["kw1", "kw2"]
    fake.answer_question.return_value = stream_of(["A", "B"], total_tokens=12)
    return fake


@pytest.fixture()
def log_records() -> Iterator[list[dict]]:
    """Collect loguru records emitted during a test."""
    records: list[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)
