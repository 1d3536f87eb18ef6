"""Pipeline entry point for running as a module: python -m pipeline."""

from __future__ import annotations

import asyncio
import itertools
import logging
import signal
import sys
from datetime import UTC, datetime

from sqlalchemy import select
from tidewatch.config import get_settings
from tidewatch.database import dispose_engine, get_session
from tidewatch.models import PipelineRun

from pipeline.orchestrator import (
    PipelineDeps,
    build_pipeline_deps,
    is_strategic_pass,
    run_collection_cycle,
    run_processing_cycle,
)
from pipeline.scheduler import IntervalScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger("pipeline")


async def _run_once(deps: PipelineDeps) -> bool:
    """One collection cycle then one processing cycle; True if either had hard errors."""
    collection = await run_collection_cycle(deps)
    processing = await run_processing_cycle(deps, include_strategic=True)
    return collection.has_hard_errors or processing.has_hard_errors


async def _mark_orphaned_running_runs() -> None:
    """Convert stale 'running' rows to failed on process startup."""
    try:
        async with get_session() as session:
            result = await session.execute(
                select(PipelineRun).where(PipelineRun.status == "running")
            )
            orphaned = result.scalars().all()
            if not orphaned:
                return

            now = datetime.now(UTC)
            for run in orphaned:
                run.status = "failed"
                run.ended_at = now
                if not run.error_detail:
                    run.error_detail = "Run marked failed after pipeline process restart before completion."
            logger.warning("Marked %d orphaned running run(s) as failed", len(orphaned))
    except Exception as exc:
        logger.warning("Could not mark orphaned runs on startup: %s", exc)


def build_scheduler(deps: PipelineDeps, stop_event: asyncio.Event | None = None) -> IntervalScheduler:
    settings = deps.settings
    scheduler = IntervalScheduler(stop_event)
    passes = itertools.count(1)

    async def _collection_job():
        return await run_collection_cycle(deps)

    async def _processing_job():
        strategic = is_strategic_pass(next(passes), settings.strategic_every)
        return await run_processing_cycle(deps, include_strategic=strategic)

    scheduler.add_job("collection", settings.collection_interval, _collection_job)
    scheduler.add_job("processing", settings.processing_interval, _processing_job)
    return scheduler


def _install_signal_handlers(scheduler: IntervalScheduler) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported on this platform", sig)


async def main(argv: list[str] | None = None) -> None:
    """Run one pass or scheduler mode."""
    args = sys.argv[1:] if argv is None else argv
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("Starting Tidewatch pipeline")

    await _mark_orphaned_running_runs()
    deps = await build_pipeline_deps(settings)
    logger.info(
        "Collectors: %s",
        ", ".join(f"{c.name}{'' if c.is_configured() else ' (inactive)'}" for c in deps.collectors),
    )

    try:
        if "--once" in args or settings.run_once:
            if await _run_once(deps):
                logger.error("Run finished with hard errors")
                sys.exit(1)
            return

        logger.info(
            "Collection every %.0fs, processing every %.0fs (batch %d, strategic every %d passes)",
            settings.collection_interval,
            settings.processing_interval,
            settings.processing_batch_size,
            settings.strategic_every,
        )
        scheduler = build_scheduler(deps)
        _install_signal_handlers(scheduler)
        await scheduler.run()
    finally:
        await deps.close()
        await dispose_engine()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
