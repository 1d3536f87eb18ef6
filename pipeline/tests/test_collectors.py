"""Tests for the source collectors, driven through httpx.MockTransport."""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from pipeline.governor import ApiConfig, ExecutionGovernor
from pipeline.news.base import CollectionQuery
from pipeline.news.event_registry import EventRegistryCollector, parse_event
from pipeline.news.newsapi import HeadlineCollector
from pipeline.news.polymarket import PolymarketCollector, flatten_markets
from pipeline.news.rss_fetcher import FeedCollector, FeedSource, parse_feed
from pipeline.news.registry import build_collectors
from pipeline.news.web_search import SearchQuery, WebSearchCollector
from pipeline.stages.collection_stage import run_collection_stage
from tidewatch.config import Settings
from tidewatch.errors import CollaboratorConfigError
from tidewatch.schemas.items import Market, RegistryArticle, RegistryEvent, RegistryTrend

FAST = ApiConfig(max_concurrency=4, batch_size=10, retry_attempts=2, retry_delay=0)


async def _no_sleep(_delay):
    return None


def _governor():
    apis = ["web_search", "rss", "event_registry", "polymarket", "headlines"]
    return ExecutionGovernor({api: FAST for api in apis}, sleep=_no_sleep)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _recent(hours=2):
    return (datetime.now(UTC) - timedelta(hours=hours)).isoformat()


# ---------- web search (primary) ----------


@pytest.mark.asyncio
async def test_web_search_filters_by_score_and_dedupes_urls():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer tv-key"
        return httpx.Response(
            200,
            json={
                "results": [
                    {"title": "Sanctions widen", "url": "https://news.test/a?utm_source=x", "score": 0.9,
                     "published_date": _recent(), "content": "body"},
                    {"title": "Sanctions widen", "url": "https://news.test/a", "score": 0.8,
                     "published_date": _recent()},
                    {"title": "Low relevance", "url": "https://news.test/b", "score": 0.2,
                     "published_date": _recent()},
                    {"title": "", "url": "https://news.test/c", "score": 0.9},
                ]
            },
        )

    queries = [SearchQuery("q1", "business", ["sanctions"]), SearchQuery("q2", "general")]
    async with _client(handler) as client:
        collector = WebSearchCollector(_governor(), "tv-key", queries=queries, client=client)
        result = await collector.collect(CollectionQuery())
    assert result.hard_failure is None
    assert [item.title for item in result.items] == ["Sanctions widen"]
    assert result.items[0].tags == ["sanctions"]


@pytest.mark.asyncio
async def test_web_search_total_failure_is_hard_failure():
    def handler(request):
        return httpx.Response(500, json={"error": "boom"})

    async with _client(handler) as client:
        collector = WebSearchCollector(_governor(), "tv-key", queries=[SearchQuery("q", "general")], client=client)
        result = await collector.collect(CollectionQuery())
    assert result.items == []
    assert result.hard_failure


@pytest.mark.asyncio
async def test_web_search_partial_failure_is_not_hard():
    def handler(request):
        if request.read() and b'"q-bad"' in request.content:
            return httpx.Response(500)
        return httpx.Response(
            200,
            json={"results": [{"title": "Rates hold", "url": "https://news.test/r", "score": 0.7,
                               "published_date": _recent()}]},
        )

    queries = [SearchQuery("q-good", "business"), SearchQuery("q-bad", "business")]
    async with _client(handler) as client:
        collector = WebSearchCollector(_governor(), "tv-key", queries=queries, client=client)
        result = await collector.collect(CollectionQuery())
    assert result.hard_failure is None
    assert result.failed_requests == 1
    assert len(result.items) == 1


@pytest.mark.asyncio
async def test_unconfigured_collector_is_a_noop():
    def handler(request):
        raise AssertionError("no request expected")

    async with _client(handler) as client:
        collector = WebSearchCollector(_governor(), "", client=client)
        result = await collector.collect(CollectionQuery())
    assert result.items == []
    assert result.hard_failure is None


# ---------- syndicated feeds ----------

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Test</title>
<item><title>Central bank raises rates</title><link>https://feed.test/1</link>
<description>&lt;p&gt;Inflation pressure&lt;/p&gt;</description>
<pubDate>{recent}</pubDate><guid>feed-1</guid></item>
<item><title>Old story</title><link>https://feed.test/2</link>
<pubDate>Mon, 01 Jan 2001 00:00:00 GMT</pubDate></item>
<item><title></title><link>https://feed.test/3</link></item>
</channel></rss>"""


def _rfc2822(dt):
    return dt.strftime("%a, %d %b %Y %H:%M:%S +0000")


def test_parse_feed_applies_window_and_skips_incomplete_entries():
    source = FeedSource("Test", "https://feed.test/rss", "business")
    text = RSS.format(recent=_rfc2822(datetime.now(UTC) - timedelta(hours=1)))
    entries = parse_feed(text, source, datetime.now(UTC) - timedelta(days=7))
    assert [e.title for e in entries] == ["Central bank raises rates"]
    assert entries[0].description == "Inflation pressure"
    assert entries[0].guid == "feed-1"


def test_parse_feed_tolerates_malformed_xml():
    source = FeedSource("Broken", "https://feed.test/broken", "general")
    assert parse_feed("<rss><channel><item><title>unterminated", source) == []


@pytest.mark.asyncio
async def test_feed_collector_counts_failed_feeds():
    text = RSS.format(recent=_rfc2822(datetime.now(UTC) - timedelta(hours=1)))

    def handler(request):
        if request.url.host == "down.test":
            return httpx.Response(503)
        return httpx.Response(200, text=text)

    feeds = [
        FeedSource("Up", "https://feed.test/rss", "business"),
        FeedSource("Down", "https://down.test/rss", "general"),
    ]
    async with _client(handler) as client:
        result = await FeedCollector(_governor(), feeds=feeds, client=client).collect(CollectionQuery())
    assert result.failed_requests == 1
    assert [e.feed_name for e in result.items] == ["Up"]


# ---------- structured news API ----------


@pytest.mark.asyncio
async def test_event_registry_unions_per_keyword_results():
    requested = []

    def handler(request):
        path = request.url.path
        keyword = request.url.params.get("keyword")
        requested.append((path, keyword))
        if path.endswith("/article/getArticles"):
            return httpx.Response(
                200,
                json={"articles": {"results": [
                    {"uri": "art-shared", "title": "Shared story", "url": "https://er.test/s",
                     "dateTimePub": _recent(), "concepts": [{"label": {"eng": "Sanctions"}, "score": 80}],
                     "sentiment": -0.4},
                    {"uri": f"art-{keyword}", "title": f"Story {keyword}", "url": f"https://er.test/{keyword}",
                     "dateTimePub": _recent()},
                ]}},
            )
        if path.endswith("/event/getEvents"):
            return httpx.Response(
                200,
                json={"events": {"results": [
                    {"uri": "evt-1", "title": {"eng": "Strait blockade"}, "articleCounts": {"total": 14},
                     "eventDate": "2026-10-17"},
                ]}},
            )
        return httpx.Response(200, json={"trendingConcepts": {"results": [
            {"uri": "c-1", "label": {"eng": "OPEC"}, "score": 55, "mentionsCount": 120},
        ]}})

    query = CollectionQuery(category="all", keywords=["oil", "gas"])
    async with _client(handler) as client:
        collector = EventRegistryCollector(_governor(), "er-key", client=client)
        result = await collector.collect(query)

    articles = [i for i in result.items if isinstance(i, RegistryArticle)]
    events = [i for i in result.items if isinstance(i, RegistryEvent)]
    trends = [i for i in result.items if isinstance(i, RegistryTrend)]
    assert sorted(a.uri for a in articles) == ["art-gas", "art-oil", "art-shared"]
    assert len(events) == 1 and events[0].article_count == 14
    assert len(trends) == 1 and trends[0].mentions_count == 120
    shared = next(a for a in articles if a.uri == "art-shared")
    assert shared.sentiment == "negative"
    assert shared.concepts[0].label == "Sanctions"
    assert sum(1 for path, _ in requested if path.endswith("getTrendingConcepts")) == 1


@pytest.mark.asyncio
async def test_event_registry_skips_trends_for_specific_category():
    def handler(request):
        assert not request.url.path.endswith("getTrendingConcepts")
        return httpx.Response(200, json={})

    async with _client(handler) as client:
        collector = EventRegistryCollector(_governor(), "er-key", client=client)
        result = await collector.collect(CollectionQuery(category="energy", keywords=["oil"]))
    assert result.items == []
    assert result.failed_requests == 0


@pytest.mark.asyncio
async def test_event_registry_requests_stay_bounded_across_categories():
    in_flight = 0
    peak = 0

    async def handler(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return httpx.Response(200, json={})

    queries = [CollectionQuery(category=c) for c in ("geopolitics", "economy", "energy", "markets", "technology")]
    async with _client(handler) as client:
        collector = EventRegistryCollector(_governor(), "er-key", client=client)
        outcome = await run_collection_stage([collector], queries)
    assert outcome.counts.errors == 0
    assert peak <= FAST.max_concurrency


def test_parse_event_collects_sources():
    event = parse_event(
        {
            "uri": "evt-9",
            "title": "Summit",
            "articleCount": 3,
            "articles": {"results": [{"source": {"title": "Wire"}, "url": "https://wire.test/1"}]},
        },
        "geopolitics",
    )
    assert event.sources == [{"name": "Wire", "url": "https://wire.test/1"}]


# ---------- prediction markets ----------


def test_flatten_markets_drops_closed_expired_and_duplicates():
    now = datetime(2026, 10, 18, tzinfo=UTC)
    events = [
        {
            "id": "e1",
            "tags": [{"label": "Energy"}],
            "markets": [
                {"id": "m1", "question": "Will OPEC cut?", "outcomes": '["Yes","No"]',
                 "outcomePrices": '["0.62","0.38"]', "endDate": "2026-12-31T00:00:00Z"},
                {"id": "m2", "question": "Closed?", "closed": True},
                {"id": "m3", "question": "Expired?", "endDate": "2026-01-01T00:00:00Z"},
            ],
        },
        {"id": "e2", "markets": [{"id": "m1", "question": "Will OPEC cut?"}]},
    ]
    markets = flatten_markets(events, now)
    assert [m.market_id for m in markets] == ["m1"]
    assert markets[0].outcome_prices == [0.62, 0.38]
    assert markets[0].tags == ["Energy"]
    assert markets[0].category == "markets"


@pytest.mark.asyncio
async def test_polymarket_collector_dedupes_events_across_tags():
    def handler(request):
        return httpx.Response(
            200,
            json=[{"id": "e1", "markets": [{"id": "m1", "question": "Fed cut in December?",
                                            "updatedAt": _recent()}]}],
        )

    async with _client(handler) as client:
        collector = PolymarketCollector(_governor(), tags=["Economy", "Finance"], client=client)
        result = await collector.collect(CollectionQuery())
    assert len(result.items) == 1
    assert result.items[0].category == "economy"
    assert isinstance(result.items[0], Market)


# ---------- legacy headlines ----------


@pytest.mark.asyncio
async def test_headline_collector_requires_explicit_opt_in():
    def handler(request):
        raise AssertionError("disabled collector must not call out")

    async with _client(handler) as client:
        collector = HeadlineCollector(_governor(), "na-key", client=client)
        result = await collector.collect(CollectionQuery())
    assert not collector.is_configured()
    assert result.items == []


@pytest.mark.asyncio
async def test_headline_collector_skips_removed_articles():
    def handler(request):
        assert request.headers["X-Api-Key"] == "na-key"
        return httpx.Response(
            200,
            json={"articles": [
                {"title": "[Removed]", "url": "https://removed.test"},
                {"title": "Chip export curbs", "url": "https://na.test/1", "publishedAt": _recent(),
                 "source": {"name": "Wire"}},
            ]},
        )

    async with _client(handler) as client:
        collector = HeadlineCollector(_governor(), "na-key", enabled=True, categories=["business"], client=client)
        result = await collector.collect(CollectionQuery())
    assert [h.title for h in result.items] == ["Chip export curbs"]
    assert result.items[0].source_name == "Wire"
    assert result.items[0].category == "business"


# ---------- registry ----------


def test_build_collectors_omits_collectors_that_fail_to_configure():
    def broken(settings, governor, col):
        raise CollaboratorConfigError("missing endpoint")

    def working(settings, governor, col):
        return FeedCollector(governor)

    collectors = build_collectors(Settings(), _governor(), factories={"broken": broken, "rss": working})
    assert [c.name for c in collectors] == ["rss"]


def test_build_collectors_default_set():
    settings = Settings(TAVILY_API_KEY="tv", EVENTREGISTRY_API_KEY="", NEWS_API_KEY="na")
    collectors = build_collectors(settings, _governor())
    by_name = {c.name: c for c in collectors}
    assert set(by_name) == {"tavily", "rss", "eventregistry", "polymarket", "newsapi"}
    assert by_name["tavily"].primary
    assert not by_name["eventregistry"].is_configured()
    assert not by_name["newsapi"].is_configured()
