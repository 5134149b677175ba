"""Thin async client for the esa.io REST API (v1)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from esa_assistant.application.exceptions import EsaConfigError
from esa_assistant.domain.models import Category, Document

DEFAULT_BASE_URL = "https://api.esa.io"
DEFAULT_ARCHIVE_MARKER = "Archive"
USER_AGENT = "esa-slack-assistant"
MAX_POSTS_PER_PAGE = 30


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class EsaPost(BaseModel):
    """A post as returned by the esa API (only the fields we use)."""

    number: int
    name: str
    full_name: str = ""
    body_md: str = ""
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    url: str
    wip: bool = False

    def to_document(self) -> Document:
        return Document(
            number=self.number,
            name=self.name,
            full_name=self.full_name or self.name,
            body_md=self.body_md,
            category=self.category,
            tags=tuple(self.tags),
            created_at=self.created_at,
            updated_at=self.updated_at,
            url=self.url,
            wip=self.wip,
        )


class EsaCategoryPath(BaseModel):
    path: str | None = None
    posts: int = 0


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class EsaClient:
    """Calls the esa API for one team.

    Errors from the API are logged and re-raised unchanged as
    ``httpx.HTTPStatusError``; nothing here retries.
    """

    def __init__(
        self,
        api_key: str,
        team: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        archive_marker: str = DEFAULT_ARCHIVE_MARKER,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not api_key:
            raise EsaConfigError("esa API key is required")
        if not team:
            raise EsaConfigError("esa team name is required")

        self.team = team
        self.archive_marker = archive_marker
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> EsaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_categories(self, *, exclude_archive: bool = False) -> list[Category]:
        """List category paths with their post counts."""
        data = await self._request("GET", f"/v1/teams/{self.team}/categories/paths")
        entries = [EsaCategoryPath.model_validate(c) for c in data.get("categories") or []]
        if exclude_archive:
            entries = [c for c in entries if c.path and self.archive_marker not in c.path]
        return [Category(path=c.path or "", post_count=c.posts) for c in entries]

    async def get_posts(self, q: str, per_page: int = MAX_POSTS_PER_PAGE) -> list[Document]:
        """Search posts with an esa query expression (first page only)."""
        data = await self._request(
            "GET",
            f"/v1/teams/{self.team}/posts",
            params={"q": q, "per_page": per_page},
        )
        return [EsaPost.model_validate(p).to_document() for p in data.get("posts") or []]

    async def create_post(
        self,
        name: str,
        body_md: str,
        tags: Sequence[str] = (),
        category: str | None = None,
        wip: bool = True,
        message: str | None = None,
    ) -> Document:
        """Create a post. Posts are created as drafts (WIP) unless told otherwise."""
        payload: dict[str, Any] = {
            "name": name,
            "body_md": body_md,
            "tags": list(tags),
            "wip": wip,
        }
        if category:
            payload["category"] = category
        if message:
            payload["message"] = message

        data = await self._request("POST", f"/v1/teams/{self.team}/posts", json={"post": payload})
        return EsaPost.model_validate(data).to_document()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            logger.error(
                "esa API error | {} {} status={} body={}",
                method,
                path,
                response.status_code,
                response.text[:500],
            )
            raise
        return response.json()
