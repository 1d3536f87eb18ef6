"""Primary collector: Tavily-compatible intelligent web search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from tidewatch.errors import RateLimitError
from tidewatch.schemas.items import WebArticle

from pipeline.governor import ExecutionGovernor
from pipeline.news.base import CollectionQuery, CollectionResult, Collector
from pipeline.news.deduplication import normalize_url
from pipeline.news.normalizer import parse_timestamp

logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"


@dataclass(frozen=True)
class SearchQuery:
    query: str
    category: str
    tags: list[str] = field(default_factory=list)


DEFAULT_QUERIES = [
    SearchQuery("recent geopolitical events economic impact", "general", ["geopolitical", "international"]),
    SearchQuery("international trade policy changes sanctions tariffs", "business", ["trade", "policy", "sanctions"]),
    SearchQuery("regulatory changes financial markets banking", "business", ["regulation", "finance", "banking"]),
    SearchQuery("major business developments mergers acquisitions", "business", ["mergers", "acquisitions", "corporate"]),
    SearchQuery(
        "central bank policy changes interest rates monetary policy",
        "business",
        ["central bank", "monetary policy", "interest rates"],
    ),
    SearchQuery("commodity market disruptions supply chain energy", "business", ["commodities", "supply chain", "energy"]),
    SearchQuery("technology regulation policy changes AI cybersecurity", "technology", ["tech regulation", "AI", "cybersecurity"]),
    SearchQuery(
        "cybersecurity incidents data breaches critical infrastructure",
        "technology",
        ["cybersecurity", "data breach", "infrastructure"],
    ),
    SearchQuery("energy sector policy changes oil gas renewable energy", "business", ["energy", "oil", "renewable"]),
    SearchQuery("environmental policy climate change carbon emissions", "general", ["environment", "climate", "policy"]),
]


class WebSearchCollector(Collector):
    name = "tavily"
    api = "web_search"
    primary = True

    def __init__(
        self,
        governor: ExecutionGovernor,
        api_key: str,
        *,
        queries: list[SearchQuery] | None = None,
        results_per_query: int = 10,
        min_score: float = 0.5,
        endpoint: str = TAVILY_SEARCH_URL,
        **kwargs: Any,
    ) -> None:
        super().__init__(governor, **kwargs)
        self.api_key = api_key
        self.queries = queries or list(DEFAULT_QUERIES)
        self.results_per_query = results_per_query
        self.min_score = min_score
        self.endpoint = endpoint

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def search(
        self, client: httpx.AsyncClient, query: str, *, max_results: int, recency_days: int
    ) -> list[dict[str, Any]]:
        response = await client.post(
            self.endpoint,
            json={
                "query": query,
                "topic": "news",
                "search_depth": "advanced",
                "max_results": max_results,
                "days": recency_days,
                "include_answer": False,
                "include_raw_content": True,
                "include_images": False,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if response.status_code == 429:
            raise RateLimitError("Tavily rate limit exceeded", provider=self.name)
        response.raise_for_status()
        data = response.json()
        results = data.get("results", []) if isinstance(data, dict) else []
        return [r for r in results if isinstance(r, dict)]

    async def _collect(self, query: CollectionQuery, client: httpx.AsyncClient) -> CollectionResult:
        window_start = query.window_start()

        async def _fetch(spec: SearchQuery) -> list[WebArticle]:
            results = await self.search(
                client,
                spec.query,
                max_results=self.results_per_query,
                recency_days=query.recency_days,
            )
            articles = []
            for r in results:
                score = float(r.get("score") or 0)
                if score < self.min_score:
                    continue
                published = parse_timestamp(r.get("published_date"))
                if published is not None and published < window_start:
                    continue
                title, url = r.get("title") or "", r.get("url") or ""
                if not title or not url:
                    continue
                articles.append(
                    WebArticle(
                        title=title,
                        url=url,
                        content=r.get("content") or r.get("raw_content") or "",
                        published_date=published.isoformat() if published else None,
                        score=score,
                        author=r.get("author"),
                        category=spec.category,
                        tags=list(spec.tags),
                    )
                )
            logger.debug("Tavily '%s': %d relevant result(s)", spec.query, len(articles))
            return articles

        articles, failed, errors = await self._fan_out(self.queries, _fetch)
        if failed and failed == len(self.queries):
            raise RuntimeError(f"all {failed} search queries failed; last error: {errors[-1]}")

        unique: dict[str, WebArticle] = {}
        for article in articles:
            unique.setdefault(normalize_url(article.url), article)
        logger.debug("Tavily: %d unique article(s) from %d queries", len(unique), len(self.queries))
        return CollectionResult(source=self.name, items=list(unique.values()), failed_requests=failed)
