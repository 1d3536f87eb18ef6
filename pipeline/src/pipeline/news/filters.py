"""Quality filter for off-topic and low-signal items."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from tidewatch.schemas.items import CanonicalItem, Concept, ItemType
from tidewatch.services.pipeline_settings import FilterSettings

logger = logging.getLogger(__name__)

REASON_BLACKLIST = "blacklist"
REASON_LOW_SCORE = "low_score"
REASON_LOW_CORROBORATION = "low_corroboration"
REASON_WEAK_CONCEPTS = "weak_concepts"


def has_priority_concept(concepts: Sequence[Concept], priority: Sequence[str]) -> bool:
    wanted = [p.lower() for p in priority]
    return any(p in c.label.lower() for c in concepts for p in wanted)


def rejection_reason(
    title: str,
    concepts: Sequence[Concept],
    score: float,
    corroboration_count: int | None = None,
    settings: FilterSettings | None = None,
) -> str | None:
    """First matching rejection rule, or None when the item is accepted.

    Rules are evaluated in order and short-circuit: a priority concept
    overrides the score and corroboration thresholds but not the final
    concept-strength check.
    """
    cfg = settings or FilterSettings()
    title_lower = title.lower()
    if any(kw.lower() in title_lower for kw in cfg.blacklist_keywords):
        return REASON_BLACKLIST
    priority = has_priority_concept(concepts, cfg.priority_concepts)
    if not priority and score < cfg.min_score:
        return REASON_LOW_SCORE
    if corroboration_count is not None and corroboration_count < cfg.min_corroboration and not priority:
        return REASON_LOW_CORROBORATION
    strong = any(c.salience >= cfg.min_concept_salience for c in concepts)
    if not strong and score < cfg.high_score_override:
        return REASON_WEAK_CONCEPTS
    return None


def should_reject(
    title: str,
    concepts: Sequence[Concept],
    score: float,
    corroboration_count: int | None = None,
    settings: FilterSettings | None = None,
) -> bool:
    return rejection_reason(title, concepts, score, corroboration_count, settings) is not None


def filter_items(
    items: Sequence[CanonicalItem], settings: FilterSettings | None = None
) -> tuple[list[CanonicalItem], dict[str, int]]:
    """Apply the quality filter to scored items; returns (kept, rejections by reason)."""
    kept: list[CanonicalItem] = []
    rejected: dict[str, int] = {}
    for item in items:
        # Corroboration only gates aggregated items; single articles carry 0.
        corroboration = item.corroboration_count if item.item_type in (ItemType.EVENT, ItemType.TREND) else None
        reason = rejection_reason(
            item.title, item.concepts, item.relevance_score or 0, corroboration, settings
        )
        if reason:
            rejected[reason] = rejected.get(reason, 0) + 1
            logger.debug("Filtered '%s' (%s)", item.title[:60], reason)
            continue
        kept.append(item)
    return kept, rejected
