"""Document discovery shared by the mention and reaction workflows.

categories -> (category selection || keyword generation)
           -> (posts by category || posts by keyword) -> merge
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from esa_assistant.domain.models import ChatHistory, Document
from esa_assistant.domain.protocols import IDocumentSource, IGenerationService
from esa_assistant.utils.dates import utcnow
from esa_assistant.utils.sequences import merge


@dataclass(frozen=True)
class Discovery:
    categories: list[str]
    keywords: list[str]
    documents: list[Document]


class DocumentFinder:
    """Finds the documents relevant to a question.

    Each fan-out is a fixed pair of independent calls awaited together; the
    branches share read-only inputs and only the merge combines their results.
    """

    def __init__(self, document_source: IDocumentSource, generation_service: IGenerationService) -> None:
        self.document_source = document_source
        self.generation_service = generation_service

    async def discover(
        self,
        question: str,
        history: Sequence[ChatHistory] | None = None,
        now: datetime | None = None,
    ) -> Discovery:
        now = now or utcnow()
        categories = await self.document_source.list_categories(exclude_archive=True)
        with_counts = [f"{c.path} {c.post_count}" for c in categories]
        paths = [c.path for c in categories]

        selected, keywords = await asyncio.gather(
            self.generation_service.select_category(with_counts, question, history=history, now=now),
            self.generation_service.generate_keywords(paths, question, history=history, now=now),
        )
        logger.debug("Selected categories | categories={} keywords={}", selected, keywords)

        collected, searched = await asyncio.gather(
            self.document_source.collect_posts_by_categories(selected),
            self.document_source.search_posts_by_keywords(keywords),
        )
        documents = merge(collected, searched, key=lambda d: d.number)
        logger.info(
            "Documents found | collected={} searched={} merged={}",
            len(collected),
            len(searched),
            len(documents),
        )
        return Discovery(categories=list(selected), keywords=list(keywords), documents=documents)
