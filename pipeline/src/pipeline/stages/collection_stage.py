"""Collection stage: run every collector concurrently."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import cast

from tidewatch.schemas.items import RawItem
from tidewatch.schemas.pipeline import StageCounts

from pipeline.news.base import CollectionQuery, CollectionResult, Collector

logger = logging.getLogger(__name__)


@dataclass
class CollectionOutcome:
    raw_items: list[RawItem] = field(default_factory=list)
    counts: StageCounts = field(default_factory=StageCounts)
    hard_failures: dict[str, str] = field(default_factory=dict)


async def run_collection_stage(
    collectors: Sequence[Collector],
    queries: Sequence[CollectionQuery],
) -> CollectionOutcome:
    """Per-category collectors run once per query; the rest run once."""
    if not queries:
        queries = [CollectionQuery()]
    jobs: list[tuple[Collector, CollectionQuery]] = []
    for collector in collectors:
        for query in queries if collector.per_category else queries[:1]:
            jobs.append((collector, query))

    results = await asyncio.gather(*(c.collect(q) for c, q in jobs), return_exceptions=True)

    outcome = CollectionOutcome()
    for (collector, query), result in zip(jobs, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning("Collector %s raised for %s: %s", collector.name, query.category, result)
            outcome.counts.errors += 1
            continue
        result = cast(CollectionResult, result)
        outcome.raw_items.extend(result.items)
        outcome.counts.errors += result.failed_requests
        if result.hard_failure:
            outcome.hard_failures[collector.name] = result.hard_failure
    logger.info(
        "Collection: %d raw item(s) from %d run(s), %d failed request(s)",
        len(outcome.raw_items),
        len(jobs),
        outcome.counts.errors,
    )
    return outcome
