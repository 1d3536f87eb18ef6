"""Persistence stage: bounded-concurrency upserts by natural key."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from tidewatch.schemas.items import CanonicalItem
from tidewatch.schemas.pipeline import StageCounts
from tidewatch.services.event_store import EventStore

from pipeline.governor import ExecutionGovernor

logger = logging.getLogger(__name__)


async def run_persistence_stage(
    store: EventStore,
    items: Sequence[CanonicalItem],
    governor: ExecutionGovernor,
) -> StageCounts:
    if not items:
        return StageCounts()
    outcome = await governor.run_all(items, store.upsert, api="store")
    counts = StageCounts(
        inserted=sum(1 for r in outcome.results if r == "inserted"),
        updated=sum(1 for r in outcome.results if r == "updated"),
        errors=len(outcome.failures),
    )
    for failure in outcome.failures:
        logger.warning("Upsert failed for %s: %s", failure.item.natural_key, failure.error)
    logger.info(
        "Persistence: %d inserted, %d updated, %d errors",
        counts.inserted,
        counts.updated,
        counts.errors,
    )
    return counts
