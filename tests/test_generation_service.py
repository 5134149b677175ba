"""Tests for AgentGenerationService using PydanticAI's FunctionModel."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    ToolCallPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from esa_assistant.application.exceptions import GenerationError
from esa_assistant.config import Settings
from esa_assistant.domain.models import ChatHistory, GeneratedArticle, StreamChunk
from esa_assistant.services.generation_service import AgentGenerationService, create_model
from tests.factories import make_documents

NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def structured(payload: dict, seen: list[list[ModelMessage]] | None = None) -> FunctionModel:
    """A model that answers every request by calling the output tool with *payload*."""

    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        if seen is not None:
            seen.append(list(messages))
        return ModelResponse(parts=[ToolCallPart(info.output_tools[0].name, payload)])

    return FunctionModel(respond)


def streaming(parts: list[str], seen: list[list[ModelMessage]] | None = None) -> FunctionModel:
    async def stream(messages: list[ModelMessage], info: AgentInfo) -> AsyncIterator[str]:
        if seen is not None:
            seen.append(list(messages))
        for part in parts:
            yield part

    return FunctionModel(stream_function=stream)


def instructions_of(messages: list[ModelMessage]) -> str:
    return "\n".join(m.instructions or "" for m in messages if isinstance(m, ModelRequest))


def user_prompt_of(messages: list[ModelMessage]) -> str:
    request = messages[-1]
    assert isinstance(request, ModelRequest)
    return next(p.content for p in request.parts if isinstance(p, UserPromptPart))


class FakeRun:
    def __init__(self, deltas: list[str], finish_reason: str | None = "stop", total_tokens: int = 30):
        self.deltas = deltas
        self.finish_reason = finish_reason
        self.total_tokens = total_tokens

    async def stream_text(self, *, delta: bool, debounce_by: float | None) -> AsyncIterator[str]:
        for part in self.deltas:
            yield part

    def all_messages(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(finish_reason=self.finish_reason)]

    @property
    def usage(self) -> SimpleNamespace:
        return SimpleNamespace(total_tokens=self.total_tokens)


class LegacyUsageRun(FakeRun):
    """A streamed run exposing ``usage()`` as a method, as pydantic-ai 1.x does."""

    def usage(self) -> SimpleNamespace:  # type: ignore[override]
        return SimpleNamespace(total_tokens=self.total_tokens)


class FakeStreamContext:
    def __init__(self, run: FakeRun | None = None, error: Exception | None = None):
        self.run = run
        self.error = error
        self.closed = False

    async def __aenter__(self) -> FakeRun | None:
        if self.error is not None:
            raise self.error
        return self.run

    async def __aexit__(self, *exc_info: object) -> bool:
        self.closed = True
        return False


async def collect(stream: AsyncIterator[StreamChunk]) -> list[StreamChunk]:
    return [chunk async for chunk in stream]


def _http_error(status: int) -> ModelHTTPError:
    return ModelHTTPError(status_code=status, model_name="test", body={"message": "error"})


# ---------------------------------------------------------------------------
# Structured tasks
# ---------------------------------------------------------------------------


class TestSelectCategory:
    async def test_caps_and_strips(self):
        seen: list[list[ModelMessage]] = []
        service = AgentGenerationService(
            structured({"categories": ["Dev", " Ops ", "", "HR", "Sales"]}, seen), max_categories=3
        )

        selected = await service.select_category(["Dev 3", "Ops 2"], "How do I deploy?", now=NOW)

        assert selected == ["Dev", "Ops", "HR"]
        instructions = instructions_of(seen[0])
        assert "Dev 3\nOps 2" in instructions
        assert "2025/01/02 12:04:05" in instructions
        assert user_prompt_of(seen[0]) == "How do I deploy?"

    async def test_history_becomes_message_history(self):
        seen: list[list[ModelMessage]] = []
        service = AgentGenerationService(structured({"categories": ["Dev"]}, seen))
        history = [
            ChatHistory(role="user", text="first question"),
            ChatHistory(role="assistant", text="first answer"),
        ]

        await service.select_category(["Dev 1"], "follow-up", history=history, now=NOW)

        messages = seen[0]
        assert isinstance(messages[0], ModelRequest)
        assert messages[0].parts[0].content == "first question"
        assert isinstance(messages[1], ModelResponse)
        assert messages[1].parts[0].content == "first answer"
        assert user_prompt_of(messages) == "follow-up"
        assert "Category list" in instructions_of(messages)


class TestGenerateKeywords:
    async def test_filters_dedupes_and_caps(self):
        service = AgentGenerationService(
            structured({"keywords": [" deploy ", "a", "deploy", "CI", "GitHub"]}),
            keyword_count=2,
            keyword_min_length=2,
        )

        keywords = await service.generate_keywords(["Dev"], "How do I deploy?", now=NOW)

        assert keywords == ["deploy", "CI"]

    async def test_instruction_mentions_bounds(self):
        seen: list[list[ModelMessage]] = []
        service = AgentGenerationService(structured({"keywords": ["x1"]}, seen), keyword_count=5, keyword_min_length=3)

        await service.generate_keywords(["Dev", "Ops"], "question text", now=NOW)

        instructions = instructions_of(seen[0])
        assert "exactly 5 keywords" in instructions
        assert "at least 3 characters" in instructions
        assert "question text" in instructions


class TestCheckDuplicate:
    async def test_ids_resolved_against_documents(self):
        seen: list[list[ModelMessage]] = []
        service = AgentGenerationService(
            structured(
                {
                    "is_duplicate": True,
                    "matched_post_ids": [3, 99],
                    "additional_info": ["rotation period"],
                    "reason": "covered",
                },
                seen,
            )
        )

        result = await service.check_duplicate(make_documents([1, 2, 3]), "[user]: keys", now=NOW)

        assert result.is_duplicate
        assert [d.number for d in result.matched_documents] == [3]
        assert result.additional_info == ("rotation period",)
        assert "[user]: keys" in user_prompt_of(seen[0])
        assert "id: 3" in instructions_of(seen[0])

    async def test_not_duplicate_has_no_matches(self):
        service = AgentGenerationService(
            structured({"is_duplicate": False, "matched_post_ids": [1], "additional_info": [], "reason": "new"})
        )

        result = await service.check_duplicate(make_documents([1]), "summary", now=NOW)

        assert not result.is_duplicate
        assert result.matched_documents == ()
        assert result.primary_match is None


class TestGenerateArticle:
    async def test_returns_article_and_renders_conversation(self):
        seen: list[list[ModelMessage]] = []
        service = AgentGenerationService(
            structured({"title": "Key rotation", "body": "# Steps", "tags": ["security"]}, seen)
        )
        conversation = [
            ChatHistory(role="user", text="How do we rotate keys?"),
            ChatHistory(role="assistant", text="Use the vault CLI."),
        ]

        article = await service.generate_article(conversation, "Dev/Security", now=NOW)

        assert article == GeneratedArticle(title="Key rotation", body="# Steps", tags=["security"])
        prompt = user_prompt_of(seen[0])
        assert "[user]: How do we rotate keys?\n\n[assistant]: Use the vault CLI." in prompt
        assert '"Dev/Security"' in instructions_of(seen[0])


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestAnswerQuestion:
    async def test_streams_deltas_then_usage(self):
        seen: list[list[ModelMessage]] = []
        service = AgentGenerationService(streaming(["Deploy ", "with CI."], seen))

        stream = await service.answer_question(make_documents([1]), "How do I deploy?", now=NOW)
        chunks = await collect(stream)

        deltas = [c.text_delta for c in chunks if not c.is_terminal]
        assert "".join(deltas) == "Deploy with CI."
        assert chunks[-1].is_terminal
        assert isinstance(chunks[-1].total_token_count, int)
        assert sum(c.is_terminal for c in chunks) == 1
        assert "url: https://example.esa.io/posts/1" in instructions_of(seen[0])

    async def test_question_repeated_in_history_sent_once(self):
        seen: list[list[ModelMessage]] = []
        service = AgentGenerationService(streaming(["ok"], seen))
        history = [
            ChatHistory(role="assistant", text="earlier answer"),
            ChatHistory(role="user", text="How do I deploy?"),
        ]

        stream = await service.answer_question([], "How do I deploy?", history=history, now=NOW)
        await collect(stream)

        prompts = [
            p.content
            for m in seen[0]
            if isinstance(m, ModelRequest)
            for p in m.parts
            if isinstance(p, UserPromptPart)
        ]
        assert prompts == ["How do I deploy?"]

    async def test_stream_setup_is_retried(self, monkeypatch: pytest.MonkeyPatch):
        service = AgentGenerationService(streaming([]), max_retries=2, initial_delay_ms=0)
        failing = FakeStreamContext(error=_http_error(503))
        working = FakeStreamContext(run=FakeRun(["a", "b"], total_tokens=9))
        run_stream = MagicMock(side_effect=[failing, working])
        monkeypatch.setattr(service._answer_agent, "run_stream", run_stream)

        stream = await service.answer_question([], "q", now=NOW)
        chunks = await collect(stream)

        assert run_stream.call_count == 2
        assert chunks == [
            StreamChunk(text_delta="a"),
            StreamChunk(text_delta="b"),
            StreamChunk(total_token_count=9),
        ]
        assert working.closed

    async def test_client_error_is_not_retried(self, monkeypatch: pytest.MonkeyPatch):
        service = AgentGenerationService(streaming([]), max_retries=3, initial_delay_ms=0)
        run_stream = MagicMock(return_value=FakeStreamContext(error=_http_error(400)))
        monkeypatch.setattr(service._answer_agent, "run_stream", run_stream)

        with pytest.raises(ModelHTTPError):
            await service.answer_question([], "q", now=NOW)
        assert run_stream.call_count == 1

    async def test_abnormal_finish_withholds_final_delta(self):
        context = FakeStreamContext()
        stack = AsyncExitStack()
        await stack.enter_async_context(context)
        chunks: list[StreamChunk] = []

        with pytest.raises(GenerationError, match="length"):
            async for chunk in AgentGenerationService._iterate_stream(
                stack, FakeRun(["partial", " cut off"], "length")
            ):
                chunks.append(chunk)

        assert chunks == [StreamChunk(text_delta="partial")]
        assert context.closed

    async def test_abnormal_finish_on_single_delta_yields_nothing(self):
        with pytest.raises(GenerationError):
            await collect(AgentGenerationService._iterate_stream(AsyncExitStack(), FakeRun(["only"], "content_filter")))

    async def test_usage_read_from_property(self):
        chunks = await collect(AgentGenerationService._iterate_stream(AsyncExitStack(), FakeRun(["x"], total_tokens=5)))
        assert chunks[-1] == StreamChunk(total_token_count=5)

    async def test_usage_read_from_method(self):
        chunks = await collect(
            AgentGenerationService._iterate_stream(AsyncExitStack(), LegacyUsageRun(["x"], total_tokens=6))
        )
        assert chunks == [StreamChunk(text_delta="x"), StreamChunk(total_token_count=6)]

    async def test_empty_deltas_are_skipped(self):
        chunks = await collect(AgentGenerationService._iterate_stream(AsyncExitStack(), FakeRun(["", "x", ""])))
        assert chunks == [StreamChunk(text_delta="x"), StreamChunk(total_token_count=30)]


# ---------------------------------------------------------------------------
# Message building and model factory
# ---------------------------------------------------------------------------


class TestBuildContents:
    def test_no_history(self):
        prompt, messages = AgentGenerationService._build_contents("q", None)
        assert prompt == "q"
        assert messages == []

    def test_trailing_question_removed(self):
        history = [ChatHistory(role="user", text="a"), ChatHistory(role="user", text=" q ")]
        _, messages = AgentGenerationService._build_contents("q", history)
        assert len(messages) == 1
        assert messages[0].parts[0].content == "a"

    def test_roles_mapped(self):
        history = [ChatHistory(role="user", text="a"), ChatHistory(role="assistant", text="b")]
        _, messages = AgentGenerationService._build_contents("q", history)
        assert isinstance(messages[0], ModelRequest)
        assert isinstance(messages[1], ModelResponse)
        assert messages[1].parts == [TextPart(content="b")]


class TestCreateModel:
    def test_azure_openai(self):
        settings = Settings(
            _env_file=None,
            generation_provider="azure-openai",
            azure_openai_api_key="key",
            azure_openai_endpoint="https://example.openai.azure.com",
            azure_openai_chat_deployment="gpt-4o-mini",
        )
        model = create_model(settings)
        assert model.model_name == "gpt-4o-mini"

    def test_from_settings_applies_bounds(self):
        settings = Settings(
            _env_file=None,
            generation_provider="azure-openai",
            azure_openai_api_key="key",
            azure_openai_endpoint="https://example.openai.azure.com",
            keyword_count=4,
            max_categories=2,
            generation_max_retries=1,
        )
        service = AgentGenerationService.from_settings(settings)
        assert (service.keyword_count, service.max_categories, service.max_retries) == (4, 2, 1)
