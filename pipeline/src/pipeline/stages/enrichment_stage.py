"""Score-gated enrichment stage."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from tidewatch.schemas.items import CanonicalItem, Tier
from tidewatch.schemas.pipeline import StageCounts
from tidewatch.services.event_store import EventStore

from pipeline.governor import ExecutionGovernor

logger = logging.getLogger(__name__)


class Enricher(Protocol):
    async def enrich(
        self, text: str, context: dict[str, Any] | None = None, *, max_chars: int = 100
    ) -> str | None: ...


def _context(item: CanonicalItem) -> dict[str, Any]:
    return {
        "summary": item.description,
        "category": item.category,
        "sources": [s.name for s in item.sources],
    }


async def run_enrichment_stage(
    store: EventStore,
    enricher: Enricher | None,
    items: Sequence[CanonicalItem],
    tiers: Sequence[Tier],
    governor: ExecutionGovernor,
    limit: int | None = None,
    max_chars: int = 100,
) -> StageCounts:
    """Annotate items in ``tiers``; a None annotation is a skip, not an error."""
    selected = [item for item in items if item.tier in tiers]
    selected.sort(key=lambda item: item.relevance_score or 0, reverse=True)
    if limit is not None:
        selected = selected[:limit]
    if not selected:
        return StageCounts()
    if enricher is None:
        logger.info("Enrichment disabled (no LLM configured); %d item(s) left unannotated", len(selected))
        return StageCounts(skipped=len(selected))

    async def _enrich_one(item: CanonicalItem) -> bool:
        text = await enricher.enrich(item.title, _context(item), max_chars=max_chars)
        if not text:
            return False
        return await store.attach_annotation(item.source, item.source_id, text)

    outcome = await governor.run_all(selected, _enrich_one, api="llm")
    enriched = sum(1 for ok in outcome.results if ok)
    counts = StageCounts(
        enriched=enriched,
        skipped=len(outcome.results) - enriched,
        errors=len(outcome.failures),
    )
    logger.info(
        "Enrichment [%s]: %d enriched, %d skipped, %d errors",
        ",".join(t.value for t in tiers),
        counts.enriched,
        counts.skipped,
        counts.errors,
    )
    return counts
