"""Prediction-market collector (Polymarket Gamma API, no auth for reads)."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from tidewatch.errors import RateLimitError
from tidewatch.schemas.items import Market

from pipeline.governor import ExecutionGovernor
from pipeline.news.base import CollectionQuery, CollectionResult, Collector
from pipeline.news.normalizer import parse_timestamp

logger = logging.getLogger(__name__)

GAMMA_BASE_URL = "https://gamma-api.polymarket.com"

RELEVANT_TAGS = [
    "Geopolitics", "Economy", "Elections", "Conflict", "Energy", "Trade",
    "Finance", "World", "War", "Sanctions", "NATO",
    "Middle East", "China", "Russia", "Europe", "Ukraine", "Israel",
    "Iran", "Taiwan", "India", "Africa", "Latin America",
    "Immigration", "Trade War", "Tariffs",
    "Climate", "Oil", "Commodities", "Defense", "Military",
    "Regulation", "Central Banks", "Federal Reserve", "Stocks",
    "Crypto", "AI", "Technology", "Cybersecurity",
    "Politics", "Government", "Policy", "Congress", "Senate",
]


def _json_list(raw: Any) -> list[Any]:
    if isinstance(raw, list):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _float(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def parse_market(raw: dict[str, Any], tags: list[str], category: str = "markets") -> Market:
    return Market(
        market_id=str(raw.get("id") or ""),
        condition_id=raw.get("conditionId") or "",
        slug=raw.get("slug") or "",
        question=raw.get("question") or "",
        description=raw.get("description") or "",
        outcomes=[str(o) for o in _json_list(raw.get("outcomes"))],
        outcome_prices=[_float(p) for p in _json_list(raw.get("outcomePrices"))],
        volume=_float(raw.get("volume")),
        liquidity=_float(raw.get("liquidity")),
        start_date=raw.get("startDate") or None,
        end_date=raw.get("endDate") or None,
        updated_at=raw.get("updatedAt") or None,
        tags=tags,
        category=category,
    )


def flatten_markets(
    events: list[dict[str, Any]],
    now: datetime | None = None,
    categories: dict[str, str] | None = None,
) -> list[Market]:
    """Markets from all events, de-duplicated by id, closed or expired ones dropped.

    ``categories`` maps an event id to the tag that fetched it.
    """
    now = now or datetime.now(UTC)
    seen: set[str] = set()
    markets: list[Market] = []
    categories = categories or {}
    for event in events:
        category = categories.get(str(event.get("id")), "markets")
        tags = [t.get("label") for t in event.get("tags") or [] if isinstance(t, dict) and t.get("label")]
        for raw in event.get("markets") or []:
            if not isinstance(raw, dict) or raw.get("closed"):
                continue
            market = parse_market(raw, tags, category)
            if not market.market_id or market.market_id in seen:
                continue
            end = parse_timestamp(market.end_date)
            if end is not None and end < now:
                continue
            seen.add(market.market_id)
            markets.append(market)
    return markets


class PolymarketCollector(Collector):
    name = "polymarket"
    api = "polymarket"

    def __init__(
        self,
        governor: ExecutionGovernor,
        *,
        tags: list[str] | None = None,
        events_per_tag: int = 30,
        base_url: str = GAMMA_BASE_URL,
        **kwargs: Any,
    ) -> None:
        super().__init__(governor, **kwargs)
        self.tags = tags or list(RELEVANT_TAGS)
        self.events_per_tag = events_per_tag
        self.base_url = base_url.rstrip("/")

    async def fetch_events_by_tag(self, client: httpx.AsyncClient, tag: str) -> list[dict[str, Any]]:
        response = await client.get(
            f"{self.base_url}/events",
            params={"active": "true", "closed": "false", "limit": self.events_per_tag, "tag": tag},
            headers={"Accept": "application/json"},
        )
        if response.status_code == 429:
            raise RateLimitError("Polymarket rate limit exceeded", provider=self.name)
        response.raise_for_status()
        data = response.json()
        return [e for e in data if isinstance(e, dict)] if isinstance(data, list) else []

    async def fetch_markets(self, client: httpx.AsyncClient) -> tuple[list[Market], int]:
        async def _fetch(tag: str) -> list[tuple[str, dict[str, Any]]]:
            return [(tag, event) for event in await self.fetch_events_by_tag(client, tag)]

        tagged, failed, _ = await self._fan_out(self.tags, _fetch)
        unique_events: dict[str, dict[str, Any]] = {}
        categories: dict[str, str] = {}
        for tag, event in tagged:
            event_id = str(event.get("id"))
            if event_id not in unique_events:
                unique_events[event_id] = event
                categories[event_id] = tag.lower()
        logger.debug("Polymarket: %d unique events across %d tags", len(unique_events), len(self.tags))
        return flatten_markets(list(unique_events.values()), categories=categories), failed

    async def _collect(self, query: CollectionQuery, client: httpx.AsyncClient) -> CollectionResult:
        markets, failed = await self.fetch_markets(client)
        return CollectionResult(source=self.name, items=markets, failed_requests=failed)
