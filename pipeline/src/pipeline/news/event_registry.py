"""Structured news-graph collector (Event Registry API)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from tidewatch.errors import RateLimitError
from tidewatch.schemas.items import RawConcept, RegistryArticle, RegistryEvent, RegistryTrend

from pipeline.governor import ExecutionGovernor
from pipeline.news.base import CollectionQuery, CollectionResult, Collector

logger = logging.getLogger(__name__)

EVENTREGISTRY_BASE_URL = "https://eventregistry.org/api/v1"

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "all": [
        "geopolitical conflict", "trade war", "sanctions", "diplomatic crisis",
        "international relations", "military escalation",
        "Federal Reserve", "monetary policy", "interest rates", "inflation",
        "central bank", "bond market", "currency devaluation",
        "semiconductor", "AI regulation", "tech policy", "cybersecurity",
        "chip manufacturing", "data privacy regulation",
        "OPEC", "energy crisis", "oil prices", "renewable energy policy",
        "nuclear energy", "gas pipeline",
    ],
    "tech": [
        "semiconductor supply chain", "AI regulation", "tech antitrust",
        "cybersecurity breach", "data privacy regulation", "chip manufacturing",
        "quantum computing", "tech policy", "software regulation",
    ],
    "finance": [
        "Federal Reserve decision", "monetary policy", "interest rate hike",
        "inflation data", "central bank", "bond market", "currency devaluation",
        "financial regulation", "banking crisis", "quantitative easing",
        "yield curve", "credit markets",
    ],
    "geopolitics": [
        "geopolitical conflict", "trade war", "sanctions", "diplomatic crisis",
        "international relations", "military escalation", "peace treaty",
        "alliance", "treaty", "embargo", "trade dispute",
    ],
    "energy": [
        "OPEC decision", "oil prices", "energy crisis", "renewable energy",
        "nuclear energy", "gas pipeline", "energy transition", "fossil fuels",
        "energy security", "commodity prices",
    ],
    "supply-chain": [
        "supply chain disruption", "logistics crisis", "manufacturing",
        "trade route", "shipping", "port congestion", "container shipping",
        "global trade", "export restrictions",
    ],
}


def keywords_for(category: str) -> list[str]:
    return CATEGORY_KEYWORDS.get(category, [category])


def _label(value: Any) -> str:
    """Labels arrive either as plain strings or as ``{"eng": ...}`` maps."""
    if isinstance(value, dict):
        return str(value.get("eng") or next(iter(value.values()), "") or "")
    return str(value or "")


def _polarity(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("polarity")
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, (int, float)):
        if value > 0.1:
            return "positive"
        if value < -0.1:
            return "negative"
        return "neutral"
    return None


def _concepts(raw: Any) -> list[RawConcept]:
    concepts = []
    for c in raw or []:
        if not isinstance(c, dict):
            continue
        score = c.get("score")
        concepts.append(
            RawConcept(
                label=_label(c.get("label")),
                score=float(score) if isinstance(score, (int, float)) else None,
                uri=c.get("uri") or "",
            )
        )
    return concepts


def _results(data: Any, key: str) -> list[dict[str, Any]]:
    block = data.get(key, {}) if isinstance(data, dict) else {}
    results = block.get("results", []) if isinstance(block, dict) else block
    return [r for r in results or [] if isinstance(r, dict)]


def parse_article(raw: dict[str, Any], category: str) -> RegistryArticle:
    source = raw.get("source") or {}
    return RegistryArticle(
        uri=str(raw.get("uri") or ""),
        url=raw.get("url") or "",
        title=raw.get("title") or "",
        body=raw.get("body") or "",
        lang=raw.get("lang"),
        date=raw.get("date"),
        date_time_pub=raw.get("dateTimePub") or raw.get("dateTime"),
        source_title=source.get("title") if isinstance(source, dict) else None,
        concepts=_concepts(raw.get("concepts")),
        sentiment=_polarity(raw.get("sentiment")),
        category=category,
    )


def parse_event(raw: dict[str, Any], category: str) -> RegistryEvent:
    counts = raw.get("articleCounts")
    article_count = raw.get("articleCount")
    if article_count is None and isinstance(counts, dict):
        article_count = counts.get("total")
    sources = []
    for article in _results(raw, "articles")[:10]:
        source = article.get("source") or {}
        sources.append(
            {
                "name": (source.get("title") if isinstance(source, dict) else None) or "Unknown",
                "url": article.get("url") or "",
            }
        )
    return RegistryEvent(
        uri=str(raw.get("uri") or ""),
        title=_label(raw.get("title")),
        summary=_label(raw.get("summary")),
        article_count=int(article_count or 0),
        date=raw.get("eventDate") or raw.get("date"),
        date_time_pub=raw.get("dateTimePub"),
        lang=raw.get("lang"),
        concepts=_concepts(raw.get("concepts")),
        sources=sources,
        category=category,
    )


def parse_trend(raw: dict[str, Any], category: str, observed_at: datetime) -> RegistryTrend:
    score = raw.get("score") if raw.get("score") is not None else raw.get("trendingScore")
    return RegistryTrend(
        uri=str(raw.get("uri") or ""),
        label=_label(raw.get("label")),
        score=float(score) if isinstance(score, (int, float)) else None,
        mentions_count=int(raw.get("mentionsCount") or 0),
        observed_at=observed_at.isoformat(),
        category=category,
    )


class EventRegistryCollector(Collector):
    """Articles and events per keyword, unioned by uri; trends for ``all`` only.

    The provider's keyword search does not combine OR terms reliably, so
    each keyword is a separate request.
    """

    name = "eventregistry"
    api = "event_registry"
    per_category = True

    def __init__(
        self,
        governor: ExecutionGovernor,
        api_key: str,
        *,
        articles_per_keyword: int = 30,
        events_per_keyword: int = 15,
        trend_count: int = 10,
        base_url: str = EVENTREGISTRY_BASE_URL,
        **kwargs: Any,
    ) -> None:
        super().__init__(governor, **kwargs)
        self.api_key = api_key
        self.articles_per_keyword = articles_per_keyword
        self.events_per_keyword = events_per_keyword
        self.trend_count = trend_count
        self.base_url = base_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _request(self, client: httpx.AsyncClient, endpoint: str, params: dict[str, Any]) -> Any:
        response = await client.get(f"{self.base_url}{endpoint}", params={**params, "apiKey": self.api_key})
        if response.status_code == 429:
            raise RateLimitError("EventRegistry API rate limit exceeded", provider=self.name)
        if response.status_code in (401, 403):
            raise RuntimeError("EventRegistry API key is invalid or expired")
        response.raise_for_status()
        return response.json()

    async def search_articles(
        self, client: httpx.AsyncClient, keyword: str, date_start: str, date_end: str
    ) -> list[dict[str, Any]]:
        data = await self._request(
            client,
            "/article/getArticles",
            {
                "keyword": keyword,
                "dateStart": date_start,
                "dateEnd": date_end,
                "lang": "eng",
                "resultType": "articles",
                "articlesSortBy": "date",
                "articlesCount": min(100, self.articles_per_keyword),
                "articleBodyLen": 500,
                "includeArticleConcepts": "true",
                "includeArticleSentiment": "true",
            },
        )
        return _results(data, "articles")

    async def search_events(
        self, client: httpx.AsyncClient, keyword: str, date_start: str, date_end: str
    ) -> list[dict[str, Any]]:
        data = await self._request(
            client,
            "/event/getEvents",
            {
                "keyword": keyword,
                "dateStart": date_start,
                "dateEnd": date_end,
                "resultType": "events",
                "eventsSortBy": "date",
                "eventsCount": min(50, self.events_per_keyword),
                "includeEventConcepts": "true",
                "includeEventArticleCounts": "true",
            },
        )
        return _results(data, "events")

    async def trending_concepts(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        data = await self._request(
            client,
            "/trending/getTrendingConcepts",
            {"source": "news", "count": self.trend_count},
        )
        if isinstance(data, list):
            return [r for r in data if isinstance(r, dict)]
        return _results(data, "trendingConcepts")

    async def _collect(self, query: CollectionQuery, client: httpx.AsyncClient) -> CollectionResult:
        now = datetime.now(UTC)
        date_start = query.window_start(now).date().isoformat()
        date_end = now.date().isoformat()
        keywords = query.keywords or keywords_for(query.category)
        requests = [("articles", kw) for kw in keywords] + [("events", kw) for kw in keywords]
        if query.category == "all":
            requests.append(("trends", ""))

        async def _fetch(request: tuple[str, str]) -> list[Any]:
            kind, keyword = request
            if kind == "articles":
                raw = await self.search_articles(client, keyword, date_start, date_end)
                return [parse_article(r, query.category) for r in raw]
            if kind == "events":
                raw = await self.search_events(client, keyword, date_start, date_end)
                return [parse_event(r, query.category) for r in raw]
            raw = await self.trending_concepts(client)
            return [parse_trend(r, query.category, now) for r in raw]

        items, failed, _ = await self._fan_out(requests, _fetch)

        unique: dict[tuple[str, str], Any] = {}
        for item in items:
            key = (item.kind, item.uri or getattr(item, "url", ""))
            if not key[1]:
                continue
            unique.setdefault(key, item)
        return CollectionResult(source=self.name, items=list(unique.values()), failed_requests=failed)
