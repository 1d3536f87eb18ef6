"""Tests for the collection, triage, persistence and enrichment stages."""

from datetime import UTC, datetime, timedelta

import pytest
from pipeline.governor import ApiConfig, ExecutionGovernor
from pipeline.news.base import CollectionQuery, CollectionResult, Collector
from pipeline.news.deduplication import deduplicate_items
from pipeline.news.filters import REASON_BLACKLIST, filter_items
from pipeline.news.scoring import score_item
from pipeline.stages.collection_stage import run_collection_stage
from pipeline.stages.enrichment_stage import run_enrichment_stage
from pipeline.stages.persistence_stage import run_persistence_stage
from pipeline.stages.triage_stage import run_triage_stage
from tidewatch.schemas.items import (
    CanonicalItem,
    Concept,
    Consensus,
    FeedEntry,
    Headline,
    RawConcept,
    RegistryArticle,
    Sentiment,
    Tier,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
FAST = ApiConfig(max_concurrency=4, batch_size=10, retry_attempts=2, retry_delay=0)


async def _no_sleep(_delay):
    return None


def _governor():
    return ExecutionGovernor({"store": FAST, "llm": FAST}, sleep=_no_sleep)


def _scored(title, score, tier, source_id=None):
    return CanonicalItem(
        source="eventregistry",
        source_id=source_id or title,
        title=title,
        published_at=NOW,
        relevance_score=score,
        tier=tier,
        consensus=Consensus.DISPUTED,
    )


class StaticCollector(Collector):
    def __init__(self, name, items=None, *, per_category=False, primary=False, hard_failure=None):
        super().__init__(_governor())
        self.name = name
        self.api = "rss"
        self.per_category = per_category
        self.primary = primary
        self.items = items or []
        self.hard_failure = hard_failure
        self.queries = []

    async def collect(self, query):
        self.queries.append(query.category)
        return CollectionResult(source=self.name, items=list(self.items), hard_failure=self.hard_failure)

    async def _collect(self, query, client):
        raise NotImplementedError


class ExplodingCollector(StaticCollector):
    async def collect(self, query):
        raise RuntimeError("collector bug")


class FakeStore:
    def __init__(self, fail_on=()):
        self.rows = {}
        self.annotations = {}
        self.fail_on = set(fail_on)

    async def upsert(self, item):
        if item.source_id in self.fail_on:
            raise ConnectionError("db down")
        outcome = "updated" if item.natural_key in self.rows else "inserted"
        self.rows[item.natural_key] = item
        return outcome

    async def attach_annotation(self, source, source_id, text):
        self.annotations[(source, source_id)] = text
        return True


class FakeEnricher:
    def __init__(self, empty_for=()):
        self.calls = []
        self.max_chars = []
        self.empty_for = set(empty_for)

    async def enrich(self, text, context=None, *, max_chars=100):
        self.calls.append(text)
        self.max_chars.append(max_chars)
        if text in self.empty_for:
            return None
        return f"Why it matters: {text}"


# ---------- collection ----------


@pytest.mark.asyncio
async def test_collection_stage_runs_per_category_collectors_for_each_query():
    article = RegistryArticle(uri="a", title="A", date="2026-10-18")
    per_category = StaticCollector("eventregistry", [article], per_category=True)
    once = StaticCollector("rss", [article])
    queries = [CollectionQuery(category="tech"), CollectionQuery(category="energy")]

    outcome = await run_collection_stage([per_category, once], queries)

    assert per_category.queries == ["tech", "energy"]
    assert once.queries == ["tech"]
    assert len(outcome.raw_items) == 3
    assert outcome.hard_failures == {}


@pytest.mark.asyncio
async def test_collection_stage_isolates_raising_collector_and_records_primary_failure():
    primary = StaticCollector("tavily", primary=True, hard_failure="all queries failed")
    broken = ExplodingCollector("rss")
    healthy = StaticCollector("polymarket", [RegistryArticle(uri="b", title="B", date="2026-10-18")])

    outcome = await run_collection_stage([primary, broken, healthy], [CollectionQuery()])

    assert len(outcome.raw_items) == 1
    assert outcome.counts.errors == 1
    assert outcome.hard_failures == {"tavily": "all queries failed"}


# ---------- triage ----------


def test_three_item_batch_scenario():
    seized = CanonicalItem(
        source="eventregistry",
        source_id="evt-oil",
        title="Oil tanker seized in Strait",
        published_at=NOW - timedelta(hours=2),
        corroboration_count=12,
        concepts=[Concept(label="Sanctions", salience=0.8)],
        sentiment=Sentiment.NEGATIVE,
    )
    seized = score_item(seized, NOW)
    gossip = _scored("Celebrity wedding photos leak", 99, Tier.CRITICAL).model_copy(
        update={"concepts": [Concept(label="Sanctions", salience=1.0)]}
    )
    rates = [Concept(label="Interest Rates", salience=0.5)]
    fed_low = _scored("Fed holds rates steady", 55, Tier.BACKGROUND, "fed-1").model_copy(update={"concepts": rates})
    fed_high = _scored("Fed holds rates steady", 78, Tier.STRATEGIC, "fed-2").model_copy(update={"concepts": rates})

    kept, rejections = filter_items([seized, gossip, fed_low, fed_high])
    unique = deduplicate_items(kept)

    assert seized.relevance_score >= 90
    assert seized.tier is Tier.CRITICAL
    assert seized.consensus is Consensus.FRAGMENTED
    assert rejections == {REASON_BLACKLIST: 1}
    assert [(i.source_id, i.relevance_score) for i in unique] == [
        ("evt-oil", seized.relevance_score),
        ("fed-2", 78),
    ]


def test_triage_stage_normalizes_scores_filters_and_dedupes():
    recent = (NOW - timedelta(hours=1)).isoformat()
    sanctions = [RawConcept(label="Sanctions", score=80)]
    raws = [
        RegistryArticle(uri="a1", title="Sanctions hit shipping", date_time_pub=recent, concepts=sanctions,
                        sentiment="negative"),
        RegistryArticle(uri="a2", title="Sanctions  hit shipping", date_time_pub=recent, concepts=sanctions),
        FeedEntry(feed_name="BBC", title="Celebrity chef opens restaurant", link="https://f.test/1",
                  published=recent),
        Headline(title="Undated", url="https://na.test/1"),
    ]

    outcome = run_triage_stage(raws, NOW)

    assert [i.source_id for i in outcome.items] == ["a1"]
    assert outcome.items[0].tier is Tier.STRATEGIC
    assert outcome.rejections == {REASON_BLACKLIST: 1}
    assert outcome.counts.filtered == 1
    # one undated item plus one duplicate
    assert outcome.counts.skipped == 2


# ---------- persistence ----------


@pytest.mark.asyncio
async def test_persistence_stage_counts_inserts_updates_and_errors():
    store = FakeStore(fail_on={"bad"})
    items = [_scored("One", 80, Tier.STRATEGIC), _scored("Two", 95, Tier.CRITICAL), _scored("Bad", 50, Tier.BACKGROUND, "bad")]

    first = await run_persistence_stage(store, items, _governor())
    second = await run_persistence_stage(store, items[:1], _governor())

    assert (first.inserted, first.updated, first.errors) == (2, 0, 1)
    assert (second.inserted, second.updated) == (0, 1)


# ---------- enrichment ----------


@pytest.mark.asyncio
async def test_enrichment_stage_is_score_gated_and_limited():
    store = FakeStore()
    enricher = FakeEnricher()
    items = [
        _scored("Critical low", 91, Tier.CRITICAL),
        _scored("Critical high", 99, Tier.CRITICAL),
        _scored("Strategic", 80, Tier.STRATEGIC),
        _scored("Background", 20, Tier.BACKGROUND),
    ]

    counts = await run_enrichment_stage(store, enricher, items, [Tier.CRITICAL], _governor(), limit=1, max_chars=50)

    assert enricher.calls == ["Critical high"]
    assert enricher.max_chars == [50]
    assert counts.enriched == 1
    assert list(store.annotations.values()) == ["Why it matters: Critical high"]


@pytest.mark.asyncio
async def test_enrichment_stage_treats_empty_annotation_as_skip():
    store = FakeStore()
    enricher = FakeEnricher(empty_for={"Quiet"})
    items = [_scored("Quiet", 95, Tier.CRITICAL), _scored("Loud", 96, Tier.CRITICAL)]

    counts = await run_enrichment_stage(store, enricher, items, [Tier.CRITICAL], _governor())

    assert (counts.enriched, counts.skipped, counts.errors) == (1, 1, 0)
    assert ("eventregistry", "Quiet") not in store.annotations


@pytest.mark.asyncio
async def test_enrichment_stage_without_enricher_skips_everything():
    items = [_scored("Critical", 95, Tier.CRITICAL)]
    counts = await run_enrichment_stage(FakeStore(), None, items, [Tier.CRITICAL], _governor())
    assert (counts.enriched, counts.skipped) == (0, 1)
