"""Pipeline settings service -- typed Pydantic models backed by site_settings table."""
from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tidewatch.models.site_setting import SiteSetting

logger = logging.getLogger(__name__)


class FilterSettings(BaseModel):
    blacklist_keywords: list[str] = Field(
        default=[
            "sports", "entertainment", "celebrity", "gossip", "movie", "music",
            "weather", "horoscope", "recipe", "cooking", "fashion", "beauty",
            "lifestyle", "travel", "tourism", "restaurant", "food review",
        ]
    )
    priority_concepts: list[str] = Field(
        default=[
            "Federal Reserve", "European Central Bank", "OPEC", "World Bank", "IMF",
            "Semiconductor", "Supply Chain", "Trade War", "Sanctions",
            "Geopolitical Conflict", "Energy Crisis", "Inflation", "Monetary Policy",
            "Interest Rates", "Central Bank", "Trade Dispute", "Diplomatic Crisis",
        ]
    )
    min_score: int = 60
    min_corroboration: int = 3
    min_concept_salience: float = 0.3
    high_score_override: int = 70


class ScoringSettings(BaseModel):
    base: float = 40.0
    corroboration_weight: float = 5.0
    corroboration_cap: float = 30.0
    concept_weight: float = 0.3
    concept_cap: float = 30.0
    priority_bonus: float = 15.0
    recency_max: float = 20.0
    recency_decay_hours: float = 24.0
    sentiment_bonus: float = 10.0
    critical_above: int = 90
    strategic_min: int = 70
    consensus_high_min: int = 40
    consensus_fragmented_min: int = 10


class CollectionSettings(BaseModel):
    recency_days: int = 7
    articles_per_category: int = 30
    events_per_category: int = 15
    trend_count: int = 10
    web_results_per_query: int = 10
    web_min_score: float = 0.5
    market_tag_limit: int = 30
    max_body_chars: int = 10_000
    max_description_chars: int = 500


class EnrichmentSettings(BaseModel):
    critical_limit: int = 5
    strategic_limit: int = 10
    max_annotation_chars: int = 100
    temperature: float = 0.3
    max_tokens: int = 100


class PipelineSettings(BaseModel):
    filter: FilterSettings = Field(default_factory=FilterSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    collection: CollectionSettings = Field(default_factory=CollectionSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    governor: dict[str, dict[str, Any]] = Field(default_factory=dict)


async def load_pipeline_settings(session: AsyncSession) -> PipelineSettings:
    """Load pipeline settings from site_settings table, merged with defaults.

    Keys use dotted paths like ``pipeline.filter.min_score``. Governor
    overrides use ``pipeline.governor.<api>`` with a dict value.
    """
    result = await session.execute(
        select(SiteSetting).where(SiteSetting.category == "pipeline")
    )
    rows = result.scalars().all()

    overrides: dict[str, Any] = {}
    for row in rows:
        key = row.key
        if key.startswith("pipeline."):
            key = key[len("pipeline."):]
        parts = key.split(".")
        value = row.value
        # Scalars are stored wrapped as {"value": ...}
        if isinstance(value, dict) and set(value) == {"value"}:
            value = value["value"]
        if len(parts) == 2:
            group, field = parts
            overrides.setdefault(group, {})[field] = value
        else:
            logger.warning("Ignoring malformed pipeline setting key '%s'", row.key)

    merged = PipelineSettings().model_dump()
    for group, fields in overrides.items():
        if group in merged and isinstance(fields, dict):
            merged[group].update(fields)
        else:
            logger.warning("Ignoring unknown pipeline settings group '%s'", group)

    return PipelineSettings(**merged)


def pipeline_settings_schema() -> dict[str, Any]:
    """Return the full JSON Schema for PipelineSettings with defaults."""
    return PipelineSettings.model_json_schema()
