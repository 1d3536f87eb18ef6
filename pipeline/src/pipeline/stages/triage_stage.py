"""Triage stage: normalize, score, quality-filter and deduplicate a batch."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from tidewatch.schemas.items import CanonicalItem, RawItem
from tidewatch.schemas.pipeline import StageCounts
from tidewatch.services.pipeline_settings import PipelineSettings

from pipeline.news.deduplication import deduplicate_items
from pipeline.news.filters import filter_items
from pipeline.news.normalizer import normalize_batch
from pipeline.news.scoring import score_item

logger = logging.getLogger(__name__)


@dataclass
class TriageOutcome:
    items: list[CanonicalItem] = field(default_factory=list)
    counts: StageCounts = field(default_factory=StageCounts)
    rejections: dict[str, int] = field(default_factory=dict)


def run_triage_stage(
    raws: Sequence[RawItem],
    now: datetime,
    settings: PipelineSettings | None = None,
) -> TriageOutcome:
    """Pure, synchronous transformation of one collection batch.

    The scorer runs before the filter and deduplicator because both read
    the relevance score.
    """
    cfg = settings or PipelineSettings()
    priority = cfg.filter.priority_concepts

    normalized, rejected = normalize_batch(
        raws,
        vocabulary=priority,
        max_body_chars=cfg.collection.max_body_chars,
        max_description_chars=cfg.collection.max_description_chars,
    )
    scored = [score_item(item, now, cfg.scoring, priority) for item in normalized]
    kept, rejections = filter_items(scored, cfg.filter)
    unique = deduplicate_items(kept)

    counts = StageCounts(
        skipped=rejected + len(kept) - len(unique),
        filtered=sum(rejections.values()),
    )
    logger.info(
        "Triage: %d raw -> %d normalized -> %d passed filter -> %d unique",
        len(raws),
        len(normalized),
        len(kept),
        len(unique),
    )
    return TriageOutcome(items=unique, counts=counts, rejections=rejections)
