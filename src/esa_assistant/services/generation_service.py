"""Generation service built on PydanticAI agents.

One agent per task, each with a typed output. The per-call instructions
(current time, category list, documents) are passed as run dependencies and
rendered through ``@agent.instructions`` so they are sent even when a
conversation history is supplied.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from contextlib import AsyncExitStack
from datetime import datetime
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel, Field
from pydantic_ai import Agent, RunContext
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from esa_assistant.application.exceptions import GenerationError
from esa_assistant.config import Settings
from esa_assistant.domain.models import (
    ChatHistory,
    Document,
    DuplicateCheckResult,
    GeneratedArticle,
    StreamChunk,
)
from esa_assistant.services import prompts
from esa_assistant.utils.dates import DEFAULT_TIMEZONE, utcnow
from esa_assistant.utils.retry import retry

T = TypeVar("T")

NORMAL_FINISH_REASONS = (None, "stop")


# ---------------------------------------------------------------------------
# Structured outputs
# ---------------------------------------------------------------------------


class CategorySelection(BaseModel):
    categories: list[str] = Field(description="Relevant category paths")


class KeywordList(BaseModel):
    keywords: list[str] = Field(description="Keywords used to search articles")


class DuplicateVerdict(BaseModel):
    is_duplicate: bool = Field(description="Whether existing documents fully cover the conversation")
    matched_post_ids: list[int] = Field(
        default_factory=list, description="Ids of the covering documents; empty when not a duplicate"
    )
    additional_info: list[str] = Field(
        default_factory=list, description="Information in the conversation missing from the documents"
    )
    reason: str = Field(description="Why the conversation is or is not a duplicate")


# ---------------------------------------------------------------------------
# Model factory
# ---------------------------------------------------------------------------


def create_model(settings: Settings) -> Model:
    """Build the PydanticAI model for the configured provider."""
    if settings.generation_provider == "azure-openai":
        from openai import AsyncAzureOpenAI
        from pydantic_ai.models.openai import OpenAIChatModel
        from pydantic_ai.providers.openai import OpenAIProvider

        client = AsyncAzureOpenAI(
            api_key=settings.azure_openai_api_key,
            azure_endpoint=settings.azure_openai_endpoint,
            api_version=settings.azure_openai_api_version,
        )
        return OpenAIChatModel(
            settings.azure_openai_chat_deployment,
            provider=OpenAIProvider(openai_client=client),
        )

    from pydantic_ai.models.google import GoogleModel
    from pydantic_ai.providers.google import GoogleProvider

    provider = GoogleProvider(
        vertexai=True,
        project=settings.google_cloud_project_id,
        location=settings.google_cloud_location,
    )
    return GoogleModel(settings.google_gemini_model, provider=provider)


def _task_agent(model: Model | str, output_type: Any, max_tokens: int) -> Agent[str, Any]:
    agent: Agent[str, Any] = Agent(
        model,
        deps_type=str,
        output_type=output_type,
        model_settings=ModelSettings(temperature=0, max_tokens=max_tokens),
    )

    @agent.instructions
    def _instructions(ctx: RunContext[str]) -> str:
        return ctx.deps

    return agent


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AgentGenerationService:
    """Implements ``IGenerationService`` with PydanticAI.

    Parameters
    ----------
    model:
        Any PydanticAI model (Gemini on Vertex AI, Azure OpenAI, or a
        ``FunctionModel`` in tests).
    max_retries / initial_delay_ms:
        Backoff for every model call; for streams only the stream set-up is
        retried.
    keyword_count / keyword_min_length / max_categories:
        Bounds applied to keyword generation and category selection.
    """

    def __init__(
        self,
        model: Model | str,
        *,
        max_retries: int = 3,
        initial_delay_ms: int = 1000,
        keyword_count: int = 8,
        keyword_min_length: int = 2,
        max_categories: int = 3,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self.keyword_count = keyword_count
        self.keyword_min_length = keyword_min_length
        self.max_categories = max_categories
        self.timezone = timezone

        self._category_agent = _task_agent(model, CategorySelection, max_tokens=2048)
        self._keyword_agent = _task_agent(model, KeywordList, max_tokens=2048)
        self._answer_agent = _task_agent(model, str, max_tokens=40000)
        self._duplicate_agent = _task_agent(model, DuplicateVerdict, max_tokens=2048)
        self._article_agent = _task_agent(model, GeneratedArticle, max_tokens=50000)

    @classmethod
    def from_settings(cls, settings: Settings) -> AgentGenerationService:
        return cls(
            create_model(settings),
            max_retries=settings.generation_max_retries,
            initial_delay_ms=settings.generation_initial_delay_ms,
            keyword_count=settings.keyword_count,
            keyword_min_length=settings.keyword_min_length,
            max_categories=settings.max_categories,
            timezone=settings.display_timezone,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def select_category(
        self,
        categories: Sequence[str],
        user_question: str,
        history: Sequence[ChatHistory] | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        instruction = prompts.select_category_instruction(
            categories, max_categories=self.max_categories, now=now or utcnow(), tz=self.timezone
        )
        output: CategorySelection = await self._run(
            self._category_agent, instruction, user_question, history
        )
        selected = [c.strip() for c in output.categories if c.strip()]
        return selected[: self.max_categories]

    async def generate_keywords(
        self,
        categories: Sequence[str],
        user_question: str,
        history: Sequence[ChatHistory] | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        instruction = prompts.generate_keywords_instruction(
            categories,
            user_question,
            keyword_count=self.keyword_count,
            keyword_min_length=self.keyword_min_length,
            now=now or utcnow(),
            tz=self.timezone,
        )
        output: KeywordList = await self._run(self._keyword_agent, instruction, user_question, history)

        keywords: list[str] = []
        for keyword in (k.strip() for k in output.keywords):
            if len(keyword) >= self.keyword_min_length and keyword not in keywords:
                keywords.append(keyword)
        return keywords[: self.keyword_count]

    async def answer_question(
        self,
        documents: Sequence[Document],
        question: str,
        history: Sequence[ChatHistory] | None = None,
        now: datetime | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Open the answer stream; see ``IGenerationService.answer_question``."""
        instruction = prompts.answer_question_instruction(documents, now=now or utcnow(), tz=self.timezone)
        user_prompt, message_history = self._build_contents(question, history)

        stack = AsyncExitStack()
        run = await self._with_retry(
            lambda: stack.enter_async_context(
                self._answer_agent.run_stream(
                    user_prompt,
                    deps=instruction,
                    message_history=message_history or None,
                )
            )
        )
        return self._iterate_stream(stack, run)

    async def check_duplicate(
        self,
        documents: Sequence[Document],
        conversation_summary: str,
        now: datetime | None = None,
    ) -> DuplicateCheckResult:
        instruction = prompts.check_duplicate_instruction(documents, now=now or utcnow(), tz=self.timezone)
        prompt = (
            "Compare the following Slack conversation with the existing documents.\n\n"
            f"# Conversation summary\n{conversation_summary}"
        )
        verdict: DuplicateVerdict = await self._run(self._duplicate_agent, instruction, prompt)
        logger.debug(
            "Duplicate check | duplicate={} ids={} reason={}",
            verdict.is_duplicate,
            verdict.matched_post_ids,
            verdict.reason,
        )

        wanted = set(verdict.matched_post_ids)
        matched = tuple(d for d in documents if d.number in wanted)
        return DuplicateCheckResult(
            is_duplicate=verdict.is_duplicate,
            matched_documents=matched,
            additional_info=tuple(verdict.additional_info),
            reason=verdict.reason,
        )

    async def generate_article(
        self,
        conversation: Sequence[ChatHistory],
        category: str | None = None,
        now: datetime | None = None,
    ) -> GeneratedArticle:
        instruction = prompts.generate_article_instruction(category, now=now or utcnow(), tz=self.timezone)
        conversation_text = prompts.render_conversation(conversation, separator="\n\n")
        prompt = f"Write an esa article from the following Slack conversation.\n\n# Conversation\n{conversation_text}"
        return await self._run(self._article_agent, instruction, prompt)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _with_retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await retry(fn, max_retries=self.max_retries, initial_delay_ms=self.initial_delay_ms)

    async def _run(
        self,
        agent: Agent[str, Any],
        instruction: str,
        question: str,
        history: Sequence[ChatHistory] | None = None,
    ) -> Any:
        user_prompt, message_history = self._build_contents(question, history)
        result = await self._with_retry(
            lambda: agent.run(
                user_prompt,
                deps=instruction,
                message_history=message_history or None,
            )
        )
        return result.output

    @staticmethod
    async def _iterate_stream(stack: AsyncExitStack, run: Any) -> AsyncGenerator[StreamChunk, None]:
        """Map a PydanticAI streamed run onto delta chunks plus one usage chunk.

        The finish reason is only known once the stream is exhausted, so the
        last delta is held back until it has been checked: an abnormal finish
        raises without emitting the text that arrived with it.
        """
        async with stack:
            pending: str | None = None
            async for delta in run.stream_text(delta=True, debounce_by=None):
                if not delta:
                    continue
                if pending is not None:
                    yield StreamChunk(text_delta=pending)
                pending = delta

            messages = run.all_messages()
            response = messages[-1] if messages else None
            finish_reason = getattr(response, "finish_reason", None)
            if finish_reason not in NORMAL_FINISH_REASONS:
                raise GenerationError(f"error on generating answer with finish-reason {finish_reason}")

            if pending is not None:
                yield StreamChunk(text_delta=pending)
            # usage() is a method in pydantic-ai 1.x and a property from 2.x
            usage = run.usage() if callable(run.usage) else run.usage
            yield StreamChunk(total_token_count=usage.total_tokens)

    @staticmethod
    def _build_contents(
        question: str, history: Sequence[ChatHistory] | None
    ) -> tuple[str, list[ModelMessage]]:
        """Split into (user prompt, prior messages).

        The question is sent as the user prompt. When the history already ends
        with the same user text, that entry is used as the prompt instead of
        being sent twice.
        """
        turns = list(history or [])
        if turns and turns[-1].role == "user" and turns[-1].text.strip() == question.strip():
            turns.pop()

        messages: list[ModelMessage] = []
        for turn in turns:
            if turn.role == "assistant":
                messages.append(ModelResponse(parts=[TextPart(content=turn.text)]))
            else:
                messages.append(ModelRequest(parts=[UserPromptPart(content=turn.text)]))
        return question, messages
