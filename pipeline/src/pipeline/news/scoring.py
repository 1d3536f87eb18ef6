"""Deterministic relevance and pressure scoring.

Both scorers are pure, total functions: out-of-range or non-finite numeric
input is clamped rather than rejected, and no network or model calls are
made. Scoring the same item twice with the same ``now`` gives the same
score, tier and consensus.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from tidewatch.schemas.items import CanonicalItem, Consensus, Sentiment, Tier
from tidewatch.services.pipeline_settings import FilterSettings, ScoringSettings

from pipeline.news.filters import has_priority_concept

_DEFAULT_PRIORITY = tuple(FilterSettings().priority_concepts)


def _finite(value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, _finite(value)))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def relevance_score(
    item: CanonicalItem,
    now: datetime,
    settings: ScoringSettings | None = None,
    priority_concepts: Sequence[str] | None = None,
) -> int:
    cfg = settings or ScoringSettings()
    priority = _DEFAULT_PRIORITY if priority_concepts is None else priority_concepts

    score = cfg.base

    corroboration = max(0.0, _finite(item.corroboration_count))
    score += min(cfg.corroboration_cap, math.log(corroboration + 1) * cfg.corroboration_weight)

    if item.concepts:
        avg_salience = sum(_finite(c.salience) for c in item.concepts) / len(item.concepts)
        score += min(cfg.concept_cap, avg_salience * cfg.concept_weight)
        if has_priority_concept(item.concepts, priority):
            score += cfg.priority_bonus

    hours = max(0.0, _finite((now - item.published_at).total_seconds() / 3600))
    score += max(0.0, cfg.recency_max * math.exp(-hours / cfg.recency_decay_hours))

    if item.sentiment in (Sentiment.POSITIVE, Sentiment.NEGATIVE):
        score += cfg.sentiment_bonus

    return int(min(100, max(0, _round_half_up(score))))


def determine_tier(score: int, settings: ScoringSettings | None = None) -> Tier:
    cfg = settings or ScoringSettings()
    if score > cfg.critical_above:
        return Tier.CRITICAL
    if score >= cfg.strategic_min:
        return Tier.STRATEGIC
    return Tier.BACKGROUND


def determine_consensus(corroboration_count: int, settings: ScoringSettings | None = None) -> Consensus:
    cfg = settings or ScoringSettings()
    if corroboration_count >= cfg.consensus_high_min:
        return Consensus.HIGH
    if corroboration_count >= cfg.consensus_fragmented_min:
        return Consensus.FRAGMENTED
    return Consensus.DISPUTED


def score_item(
    item: CanonicalItem,
    now: datetime,
    settings: ScoringSettings | None = None,
    priority_concepts: Sequence[str] | None = None,
) -> CanonicalItem:
    """Return a copy of ``item`` with relevance_score, tier and consensus attached."""
    score = relevance_score(item, now, settings, priority_concepts)
    return item.model_copy(
        update={
            "relevance_score": score,
            "tier": determine_tier(score, settings),
            "consensus": determine_consensus(item.corroboration_count, settings),
        }
    )


# ---------------------------------------------------------------------------
# Pressure score
# ---------------------------------------------------------------------------

HORIZON_DECAY_DAYS = 45.0
MAX_HORIZON_DAYS = 365.0
CITATION_SATURATION = 5.0
IMPACT_WEIGHTS = {1: 1.0, 2: 0.65, 3: 0.4}


@dataclass(frozen=True)
class PressureFeatures:
    """Features extracted upstream for one signal.

    ``evidence_strength`` and ``novelty`` are in [0, 1]; ``impact_order`` is
    1 (direct) to 3 (third-order).
    """

    evidence_strength: float
    novelty: float
    impact_order: float
    time_horizon_days: float
    citations: float


@dataclass(frozen=True)
class PressureScore:
    probability: float
    magnitude: float
    confidence: float


def pressure_score(features: PressureFeatures) -> PressureScore:
    evidence = _clamp(features.evidence_strength)
    novelty = _clamp(features.novelty)
    citations = _clamp(_finite(features.citations) / CITATION_SATURATION)
    order = int(_clamp(_round_half_up(_finite(features.impact_order)), 1, 3))
    days = _clamp(features.time_horizon_days, 0.0, MAX_HORIZON_DAYS)

    probability = _clamp(0.55 * evidence + 0.25 * novelty + 0.20 * citations)
    magnitude = _clamp(IMPACT_WEIGHTS[order] * math.exp(-days / HORIZON_DECAY_DAYS))
    confidence = _clamp(0.5 * evidence + 0.3 * citations + 0.2 * (1 - novelty))
    return PressureScore(
        probability=round(probability, 4),
        magnitude=round(magnitude, 4),
        confidence=round(confidence, 4),
    )
