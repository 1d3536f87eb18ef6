"""Legacy top-headlines collector (NewsAPI). Disabled unless explicitly enabled."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from tidewatch.errors import RateLimitError
from tidewatch.schemas.items import Headline

from pipeline.governor import ExecutionGovernor
from pipeline.news.base import CollectionQuery, CollectionResult, Collector

logger = logging.getLogger(__name__)

NEWSAPI_TOP_HEADLINES_URL = "https://newsapi.org/v2/top-headlines"
DEFAULT_HEADLINE_CATEGORIES = ["business", "technology", "general"]


class HeadlineCollector(Collector):
    name = "newsapi"
    api = "headlines"

    def __init__(
        self,
        governor: ExecutionGovernor,
        api_key: str,
        *,
        enabled: bool = False,
        categories: list[str] | None = None,
        page_size: int = 50,
        endpoint: str = NEWSAPI_TOP_HEADLINES_URL,
        **kwargs: Any,
    ) -> None:
        super().__init__(governor, **kwargs)
        self.api_key = api_key
        self.enabled = enabled
        self.categories = categories or list(DEFAULT_HEADLINE_CATEGORIES)
        self.page_size = page_size
        self.endpoint = endpoint

    def is_configured(self) -> bool:
        return self.enabled and bool(self.api_key)

    async def top_headlines(self, client: httpx.AsyncClient, category: str) -> list[dict[str, Any]]:
        response = await client.get(
            self.endpoint,
            params={"category": category, "language": "en", "pageSize": self.page_size},
            headers={"X-Api-Key": self.api_key},
        )
        if response.status_code == 429:
            raise RateLimitError("NewsAPI rate limit exceeded", provider=self.name)
        response.raise_for_status()
        data = response.json()
        articles = data.get("articles", []) if isinstance(data, dict) else []
        return [a for a in articles if isinstance(a, dict)]

    async def _collect(self, query: CollectionQuery, client: httpx.AsyncClient) -> CollectionResult:
        async def _fetch(category: str) -> list[Headline]:
            headlines = []
            for a in await self.top_headlines(client, category):
                title = a.get("title") or ""
                if not title or title == "[Removed]" or not a.get("url"):
                    continue
                source = a.get("source") or {}
                headlines.append(
                    Headline(
                        title=title,
                        description=a.get("description"),
                        content=a.get("content"),
                        url=a["url"],
                        published_at=a.get("publishedAt"),
                        author=a.get("author"),
                        source_name=source.get("name") if isinstance(source, dict) else None,
                        category=category,
                    )
                )
            return headlines

        headlines, failed, _ = await self._fan_out(self.categories, _fetch)
        return CollectionResult(source=self.name, items=headlines, failed_requests=failed)
