"""Tests for the interval scheduler and the pipeline entry point."""

import asyncio
from datetime import UTC, datetime

import pytest

import pipeline.__main__ as entry
from pipeline.scheduler import IntervalScheduler
from tidewatch.config import Settings
from tidewatch.schemas.pipeline import CycleReport, CycleType, StageFailure


def test_add_job_validates_interval_and_name():
    scheduler = IntervalScheduler()

    async def job():
        return None

    scheduler.add_job("collection", 5, job)
    with pytest.raises(ValueError):
        scheduler.add_job("collection", 5, job)
    with pytest.raises(ValueError):
        scheduler.add_job("processing", 0, job)


@pytest.mark.asyncio
async def test_run_without_jobs_is_rejected():
    with pytest.raises(ValueError):
        await IntervalScheduler().run()


@pytest.mark.asyncio
async def test_run_job_once_single_steps_and_contains_failures():
    scheduler = IntervalScheduler()

    async def broken():
        raise RuntimeError("cycle crashed")

    scheduler.add_job("broken", 60, broken)
    assert await scheduler.run_job_once("broken") is None
    job = scheduler.jobs["broken"]
    assert (job.runs, job.failures) == (1, 1)


@pytest.mark.asyncio
async def test_stop_token_ends_the_loop():
    stop = asyncio.Event()
    scheduler = IntervalScheduler(stop)
    runs = []

    async def job():
        runs.append(1)
        if len(runs) == 3:
            scheduler.stop()

    scheduler.add_job("tick", 0.001, job)
    await asyncio.wait_for(scheduler.run(), timeout=2)
    assert len(runs) == 3
    assert scheduler.stopped


@pytest.mark.asyncio
async def test_slow_job_is_not_overlapped():
    scheduler = IntervalScheduler()
    active = 0
    peak = 0
    runs = 0

    async def slow():
        nonlocal active, peak, runs
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        runs += 1
        if runs == 3:
            scheduler.stop()

    scheduler.add_job("slow", 0.005, slow)
    await asyncio.wait_for(scheduler.run(), timeout=2)
    assert peak == 1
    assert runs == 3


# ---------- entry point ----------


def _report(failed=False):
    report = CycleReport(cycle_type=CycleType.COLLECTION, started_at=datetime.now(UTC))
    if failed:
        report.stage_failures.append(StageFailure(stage="triage", error="boom"))
    return report


class FakeDeps:
    def __init__(self):
        self.closed = False
        self.settings = Settings()
        self.collectors = []

    async def close(self):
        self.closed = True


def _patch_entry(monkeypatch, deps, collection_failed=False):
    async def fake_build(_settings=None):
        return deps

    async def fake_collection(_deps, now=None):
        return _report(failed=collection_failed)

    async def fake_processing(_deps, include_strategic=False):
        assert include_strategic
        return _report()

    async def noop():
        return None

    monkeypatch.setattr(entry, "get_settings", lambda: Settings())
    monkeypatch.setattr(entry, "build_pipeline_deps", fake_build)
    monkeypatch.setattr(entry, "run_collection_cycle", fake_collection)
    monkeypatch.setattr(entry, "run_processing_cycle", fake_processing)
    monkeypatch.setattr(entry, "_mark_orphaned_running_runs", noop)
    monkeypatch.setattr(entry, "dispose_engine", noop)


@pytest.mark.asyncio
async def test_once_mode_exits_nonzero_on_hard_errors(monkeypatch):
    deps = FakeDeps()
    _patch_entry(monkeypatch, deps, collection_failed=True)
    with pytest.raises(SystemExit) as exc_info:
        await entry.main(["--once"])
    assert exc_info.value.code == 1
    assert deps.closed


@pytest.mark.asyncio
async def test_once_mode_returns_cleanly(monkeypatch):
    deps = FakeDeps()
    _patch_entry(monkeypatch, deps)
    await entry.main(["--once"])
    assert deps.closed


@pytest.mark.asyncio
async def test_build_scheduler_adds_strategic_every_nth_pass(monkeypatch):
    seen = []

    async def fake_processing(_deps, include_strategic=False):
        seen.append(include_strategic)

    monkeypatch.setattr(entry, "run_processing_cycle", fake_processing)
    deps = FakeDeps()
    deps.settings = Settings(STRATEGIC_EVERY=2)
    scheduler = entry.build_scheduler(deps)
    for _ in range(4):
        await scheduler.run_job_once("processing")
    assert seen == [False, True, False, True]
    assert set(scheduler.jobs) == {"collection", "processing"}
