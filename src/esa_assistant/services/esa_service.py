"""Document source backed by esa: the query surface the handlers use."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from loguru import logger

from esa_assistant.domain.models import Category, Document
from esa_assistant.services.esa_client import EsaClient

PUBLISHED_ONLY = "wip:false"


class EsaService:
    """Implements ``IDocumentSource`` on top of :class:`EsaClient`."""

    def __init__(self, esa_client: EsaClient) -> None:
        self.esa = esa_client

    async def list_categories(self, exclude_archive: bool = True) -> list[Category]:
        return await self.esa.get_categories(exclude_archive=exclude_archive)

    async def collect_posts_by_categories(self, categories: Sequence[str]) -> list[Document]:
        """Fetch published posts for every category concurrently.

        Results are concatenated in the order of *categories*; a post filed
        under several matching paths may appear more than once.
        """
        if not categories:
            return []

        responses = await asyncio.gather(
            *(self.esa.get_posts(f"on:{path} {PUBLISHED_ONLY}") for path in categories)
        )
        posts = [post for batch in responses for post in batch]
        logger.debug("Collected posts by category | categories={} count={}", len(categories), len(posts))
        return posts

    async def search_posts_by_keywords(self, keywords: Sequence[str]) -> list[Document]:
        """Run one OR-query over all keywords, restricted to published posts."""
        query = self.build_keywords_query(keywords)
        if not query:
            return []

        posts = await self.esa.get_posts(f"{query} {PUBLISHED_ONLY}")
        logger.debug("Searched posts by keywords | keywords={} count={}", len(keywords), len(posts))
        return posts

    async def create_document(
        self,
        title: str,
        body: str,
        tags: Sequence[str] = (),
        category: str | None = None,
        wip: bool = True,
        message: str | None = None,
    ) -> Document:
        return await self.esa.create_post(
            name=title,
            body_md=body,
            tags=tags,
            category=category,
            wip=wip,
            message=message,
        )

    @staticmethod
    def build_keywords_query(keywords: Sequence[str]) -> str:
        """``["a", "b c"]`` -> ``'"a" OR "b c"'``; blank keywords are skipped."""
        terms = [kw.replace('"', "").strip() for kw in keywords]
        return " OR ".join(f'"{term}"' for term in terms if term)
