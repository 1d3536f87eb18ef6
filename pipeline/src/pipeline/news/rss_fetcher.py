"""Syndicated feed collector."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from tidewatch.schemas.items import FeedEntry

from pipeline.governor import ExecutionGovernor
from pipeline.news.base import CollectionQuery, CollectionResult, Collector
from pipeline.news.normalizer import clean_text, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedSource:
    name: str
    url: str
    category: str


DEFAULT_FEEDS = [
    FeedSource("BBC World", "https://feeds.bbci.co.uk/news/world/rss.xml", "general"),
    FeedSource("Guardian World", "https://www.theguardian.com/world/rss", "general"),
    FeedSource("NPR World", "https://feeds.npr.org/1001/rss.xml", "general"),
    FeedSource("Guardian Business", "https://www.theguardian.com/business/rss", "business"),
    FeedSource("BBC Business", "https://feeds.bbci.co.uk/news/business/rss.xml", "business"),
    FeedSource("NPR Business", "https://feeds.npr.org/1006/rss.xml", "business"),
    FeedSource("Guardian Tech", "https://www.theguardian.com/technology/rss", "technology"),
    FeedSource("BBC Tech", "https://feeds.bbci.co.uk/news/technology/rss.xml", "technology"),
    FeedSource("NPR Tech", "https://feeds.npr.org/1019/rss.xml", "technology"),
    FeedSource("BBC Environment", "https://feeds.bbci.co.uk/news/science-environment/rss.xml", "business"),
]


def parse_feed(text: str, source: FeedSource, window_start: datetime | None = None) -> list[FeedEntry]:
    """Parse feed XML into entries, tolerating malformed documents.

    Entries without a title or link are skipped, as are entries dated
    before ``window_start``.
    """
    import feedparser

    feed = feedparser.parse(text)
    if feed.bozo:
        logger.debug("Feed %s is malformed (%s); keeping parsed entries", source.name, feed.get("bozo_exception"))
    entries = []
    for entry in feed.entries:
        title = clean_text(entry.get("title", ""))
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        published = entry.get("published") or entry.get("updated")
        if window_start is not None:
            parsed = parse_timestamp(published)
            if parsed is not None and parsed < window_start:
                continue
        entries.append(
            FeedEntry(
                feed_name=source.name,
                title=title,
                link=link,
                description=clean_text(entry.get("summary") or entry.get("description") or ""),
                published=published,
                author=entry.get("author"),
                guid=entry.get("id") or link,
                category=source.category,
            )
        )
    return entries


class FeedCollector(Collector):
    name = "rss"
    api = "rss"

    def __init__(
        self,
        governor: ExecutionGovernor,
        *,
        feeds: list[FeedSource] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(governor, **kwargs)
        self.feeds = feeds or list(DEFAULT_FEEDS)

    async def fetch_feed(self, client: httpx.AsyncClient, url: str) -> str:
        response = await client.get(
            url, headers={"Accept": "application/rss+xml, application/xml, text/xml, */*"}
        )
        response.raise_for_status()
        return response.text

    async def _collect(self, query: CollectionQuery, client: httpx.AsyncClient) -> CollectionResult:
        window_start = query.window_start()

        async def _fetch(source: FeedSource) -> list[FeedEntry]:
            text = await self.fetch_feed(client, source.url)
            entries = parse_feed(text, source, window_start)
            if not entries:
                logger.warning("No items parsed from %s", source.name)
            return entries

        entries, failed, _ = await self._fan_out(self.feeds, _fetch)
        return CollectionResult(source=self.name, items=entries, failed_requests=failed)
