"""Pipeline orchestrator - collection and processing cycles."""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from tidewatch.config import Settings, get_settings
from tidewatch.database import get_session, get_session_factory
from tidewatch.errors import CollaboratorConfigError
from tidewatch.schemas.items import CanonicalItem, Tier
from tidewatch.schemas.pipeline import CycleReport, CycleType, StageCounts, StageFailure
from tidewatch.services.event_store import EventStore
from tidewatch.services.llm_client import LLMClient
from tidewatch.services.pipeline_settings import PipelineSettings, load_pipeline_settings

from pipeline.governor import ExecutionGovernor
from pipeline.news.base import CollectionQuery, Collector
from pipeline.news.registry import build_collectors
from pipeline.stages.collection_stage import CollectionOutcome, run_collection_stage
from pipeline.stages.enrichment_stage import Enricher, run_enrichment_stage
from pipeline.stages.persistence_stage import run_persistence_stage
from pipeline.stages.triage_stage import TriageOutcome, run_triage_stage

logger = logging.getLogger(__name__)


@dataclass
class PipelineDeps:
    collectors: list[Collector]
    governor: ExecutionGovernor
    store: EventStore
    enricher: Enricher | None
    settings: Settings
    pipeline_settings: PipelineSettings = field(default_factory=PipelineSettings)

    async def close(self) -> None:
        close = getattr(self.enricher, "close", None)
        if close is not None:
            await close()


async def _load_tunables() -> PipelineSettings:
    try:
        async with get_session() as session:
            return await load_pipeline_settings(session)
    except Exception as exc:
        logger.warning("Could not load pipeline settings from DB, using defaults: %s", exc)
        return PipelineSettings()


async def build_pipeline_deps(settings: Settings | None = None) -> PipelineDeps:
    """Wire collaborators from configuration.

    A collaborator that cannot be configured is disabled on its own; the
    rest still initialize.
    """
    settings = settings or get_settings()
    tunables = await _load_tunables()
    governor = ExecutionGovernor.from_overrides(tunables.governor)

    enricher: Enricher | None
    try:
        client = LLMClient.from_settings(settings)
        client.config.temperature = tunables.enrichment.temperature
        client.config.max_tokens = tunables.enrichment.max_tokens
        enricher = client
    except CollaboratorConfigError as exc:
        logger.warning("Enrichment disabled: %s", exc)
        enricher = None

    return PipelineDeps(
        collectors=build_collectors(settings, governor, tunables.collection),
        governor=governor,
        store=EventStore(get_session_factory()),
        enricher=enricher,
        settings=settings,
        pipeline_settings=tunables,
    )


async def _run_stage(report: CycleReport, stage: str, func: Callable[..., Any], *args: Any) -> Any:
    """Run one stage; an exception becomes a recorded failure and a None result."""
    try:
        result = func(*args)
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception as exc:
        logger.exception("Stage %s failed: %s", stage, exc)
        report.stage_failures.append(StageFailure(stage=stage, error=str(exc) or type(exc).__name__))
        report.stages[stage] = StageCounts()
        return None


async def _start_run(deps: PipelineDeps, report: CycleReport) -> uuid.UUID | None:
    try:
        return await deps.store.record_run(report.cycle_type, report.started_at)
    except Exception as exc:
        logger.warning("Could not record %s run start: %s", report.cycle_type.value, exc)
        return None


async def _finish_run(deps: PipelineDeps, run_id: uuid.UUID | None, report: CycleReport) -> None:
    report.ended_at = datetime.now(UTC)
    if run_id is None:
        return
    try:
        await deps.store.finish_run(run_id, report)
    except Exception as exc:
        logger.warning("Could not record run %s result: %s", run_id, exc)


def _log_summary(report: CycleReport) -> None:
    for name, counts in report.stages.items():
        logger.info("  %-12s %s", name, counts.model_dump())
    duration = ((report.ended_at or report.started_at) - report.started_at).total_seconds()
    logger.info(
        "%s cycle %s in %.2fs",
        report.cycle_type.value.capitalize(),
        report.status.value,
        duration,
    )
    for failure in report.stage_failures:
        logger.error("Stage %s failed this cycle: %s", failure.stage, failure.error)
    for name, error in report.collector_failures.items():
        logger.error("Primary collector %s failed: %s", name, error)


def collection_queries(deps: PipelineDeps) -> list[CollectionQuery]:
    col = deps.pipeline_settings.collection
    return [
        CollectionQuery(
            category=category,
            recency_days=col.recency_days,
            max_results=col.articles_per_category,
        )
        for category in deps.settings.categories
    ]


async def run_collection_cycle(deps: PipelineDeps, now: datetime | None = None) -> CycleReport:
    """Collect -> triage -> persist -> enrich this cycle's critical items.

    Never raises: each stage failure is logged, recorded on the report and
    treated as zero results.
    """
    now = now or datetime.now(UTC)
    report = CycleReport(cycle_type=CycleType.COLLECTION, started_at=now)
    run_id = await _start_run(deps, report)
    tunables = deps.pipeline_settings

    collected: CollectionOutcome | None = await _run_stage(
        report, "collection", run_collection_stage, deps.collectors, collection_queries(deps)
    )
    if collected is not None:
        report.stages["collection"] = collected.counts
        report.collector_failures.update(collected.hard_failures)
    raws = collected.raw_items if collected else []

    triaged: TriageOutcome | None = await _run_stage(
        report, "triage", run_triage_stage, raws, now, tunables
    )
    if triaged is not None:
        report.stages["triage"] = triaged.counts
    items = triaged.items if triaged else []

    persisted = await _run_stage(report, "persistence", run_persistence_stage, deps.store, items, deps.governor)
    if persisted is not None:
        report.stages["persistence"] = persisted

    enriched = await _run_stage(
        report,
        "enrichment",
        run_enrichment_stage,
        deps.store,
        deps.enricher,
        items,
        [Tier.CRITICAL],
        deps.governor,
        tunables.enrichment.critical_limit,
        tunables.enrichment.max_annotation_chars,
    )
    if enriched is not None:
        report.stages["enrichment"] = enriched

    await _finish_run(deps, run_id, report)
    _log_summary(report)
    return report


def is_strategic_pass(pass_number: int, every: int) -> bool:
    """Strategic items join every ``every``-th processing pass (1-based)."""
    return every > 0 and pass_number % every == 0


async def _select_backlog(deps: PipelineDeps, include_strategic: bool) -> list[CanonicalItem]:
    """Critical items up to the batch size, then strategic up to their own cap."""
    backlog = await deps.store.select_for_enrichment([Tier.CRITICAL], deps.settings.processing_batch_size)
    if include_strategic:
        limit = deps.pipeline_settings.enrichment.strategic_limit
        backlog += await deps.store.select_for_enrichment([Tier.STRATEGIC], limit)
    return backlog


async def run_processing_cycle(deps: PipelineDeps, include_strategic: bool = False) -> CycleReport:
    """Enrich the persisted backlog: critical every pass, strategic when asked."""
    report = CycleReport(cycle_type=CycleType.PROCESSING, started_at=datetime.now(UTC))
    run_id = await _start_run(deps, report)
    tiers = [Tier.CRITICAL, Tier.STRATEGIC] if include_strategic else [Tier.CRITICAL]

    backlog = await _run_stage(report, "backlog", _select_backlog, deps, include_strategic)
    if backlog is not None:
        logger.info("Processing: %d unannotated item(s) in %s", len(backlog), [t.value for t in tiers])

    enriched = await _run_stage(
        report,
        "enrichment",
        run_enrichment_stage,
        deps.store,
        deps.enricher,
        backlog or [],
        tiers,
        deps.governor,
        None,
        deps.pipeline_settings.enrichment.max_annotation_chars,
    )
    if enriched is not None:
        report.stages["enrichment"] = enriched

    await _finish_run(deps, run_id, report)
    _log_summary(report)
    return report
