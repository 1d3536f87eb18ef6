"""Tests for PipelineSettings service -- Pydantic models, defaults, schema, and merging."""

from unittest.mock import AsyncMock, MagicMock

from tidewatch.services.pipeline_settings import (
    CollectionSettings,
    EnrichmentSettings,
    FilterSettings,
    PipelineSettings,
    ScoringSettings,
    load_pipeline_settings,
    pipeline_settings_schema,
)

# ---------- Default values ----------


class TestFilterSettingsDefaults:
    def test_defaults(self):
        f = FilterSettings()
        assert f.min_score == 60
        assert f.min_corroboration == 3
        assert f.min_concept_salience == 0.3
        assert f.high_score_override == 70

    def test_blacklist_and_priority_lists(self):
        f = FilterSettings()
        assert "celebrity" in f.blacklist_keywords
        assert "Sanctions" in f.priority_concepts

    def test_override(self):
        f = FilterSettings(min_score=50)
        assert f.min_score == 50
        assert f.min_corroboration == 3  # unchanged default


class TestScoringSettingsDefaults:
    def test_defaults(self):
        s = ScoringSettings()
        assert s.base == 40.0
        assert s.corroboration_weight == 5.0
        assert s.corroboration_cap == 30.0
        assert s.concept_weight == 0.3
        assert s.priority_bonus == 15.0
        assert s.recency_max == 20.0
        assert s.recency_decay_hours == 24.0
        assert s.sentiment_bonus == 10.0

    def test_tier_and_consensus_thresholds(self):
        s = ScoringSettings()
        assert (s.critical_above, s.strategic_min) == (90, 70)
        assert (s.consensus_high_min, s.consensus_fragmented_min) == (40, 10)


class TestCollectionAndEnrichmentDefaults:
    def test_collection_defaults(self):
        c = CollectionSettings()
        assert c.recency_days == 7
        assert c.articles_per_category == 30
        assert c.max_body_chars == 10_000

    def test_enrichment_defaults(self):
        e = EnrichmentSettings()
        assert e.critical_limit == 5
        assert e.max_annotation_chars == 100


# ---------- PipelineSettings composite ----------


class TestPipelineSettings:
    def test_all_submodels_present(self):
        ps = PipelineSettings()
        assert isinstance(ps.filter, FilterSettings)
        assert isinstance(ps.scoring, ScoringSettings)
        assert isinstance(ps.collection, CollectionSettings)
        assert isinstance(ps.enrichment, EnrichmentSettings)
        assert ps.governor == {}

    def test_nested_override_via_dict(self):
        ps = PipelineSettings(filter={"min_score": 45}, governor={"llm": {"max_concurrency": 8}})
        assert ps.filter.min_score == 45
        assert ps.scoring.base == 40.0
        assert ps.governor["llm"]["max_concurrency"] == 8


# ---------- JSON Schema ----------


class TestPipelineSettingsSchema:
    def test_schema_has_required_sections(self):
        schema = pipeline_settings_schema()
        props = schema.get("properties", {})
        for section in ("filter", "scoring", "collection", "enrichment", "governor"):
            assert section in props

    def test_schema_has_defaults(self):
        defs = pipeline_settings_schema().get("$defs", {})
        scoring_props = defs["ScoringSettings"]["properties"]
        assert scoring_props["priority_bonus"]["default"] == 15.0


# ---------- load_pipeline_settings ----------


class FakeRow:
    def __init__(self, key, value):
        self.key = key
        self.value = value
        self.category = "pipeline"


def _session(rows):
    mock_result = MagicMock()
    mock_result.scalars.return_value.all.return_value = rows
    mock_session = AsyncMock()
    mock_session.execute.return_value = mock_result
    return mock_session


class TestLoadPipelineSettings:
    async def test_no_overrides_returns_defaults(self):
        ps = await load_pipeline_settings(_session([]))
        assert ps == PipelineSettings()

    async def test_with_overrides(self):
        rows = [
            FakeRow("pipeline.filter.min_score", 55),
            FakeRow("pipeline.scoring.recency_decay_hours", {"value": 12}),
            FakeRow("pipeline.governor.llm", {"max_concurrency": 10, "batch_size": 20}),
        ]
        ps = await load_pipeline_settings(_session(rows))
        assert ps.filter.min_score == 55
        assert ps.scoring.recency_decay_hours == 12
        assert ps.governor["llm"] == {"max_concurrency": 10, "batch_size": 20}
        # Unchanged defaults preserved
        assert ps.filter.min_corroboration == 3

    async def test_key_without_pipeline_prefix(self):
        ps = await load_pipeline_settings(_session([FakeRow("enrichment.critical_limit", 9)]))
        assert ps.enrichment.critical_limit == 9

    async def test_malformed_and_unknown_keys_are_ignored(self):
        rows = [FakeRow("pipeline.min_score", 1), FakeRow("pipeline.unknown.field", 2)]
        ps = await load_pipeline_settings(_session(rows))
        assert ps == PipelineSettings()
