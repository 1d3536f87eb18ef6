"""Pydantic schemas for pipeline operations."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class PipelineStatus(str, Enum):
    """Pipeline run status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CycleType(str, Enum):
    COLLECTION = "collection"
    PROCESSING = "processing"


class StageCounts(BaseModel):
    """Aggregate counts reported by a single stage."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    filtered: int = 0
    enriched: int = 0

    def merge(self, other: StageCounts) -> StageCounts:
        return StageCounts(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
            filtered=self.filtered + other.filtered,
            enriched=self.enriched + other.enriched,
        )


class StageFailure(BaseModel):
    """A stage that raised past its own error handling."""

    stage: str
    error: str


class CycleReport(BaseModel):
    """Result of one orchestrator cycle."""

    cycle_type: CycleType
    started_at: datetime
    ended_at: datetime | None = None
    stages: dict[str, StageCounts] = Field(default_factory=dict)
    stage_failures: list[StageFailure] = Field(default_factory=list)
    collector_failures: dict[str, str] = Field(default_factory=dict)

    @property
    def has_hard_errors(self) -> bool:
        return bool(self.stage_failures or self.collector_failures)

    @property
    def status(self) -> PipelineStatus:
        return PipelineStatus.FAILED if self.has_hard_errors else PipelineStatus.COMPLETED

    def totals(self) -> StageCounts:
        total = StageCounts()
        for counts in self.stages.values():
            total = total.merge(counts)
        return total
