"""Pipeline run model - audit record of every orchestrator cycle."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tidewatch.models.base import Base, JSONType


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cycle_type: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(Text, nullable=False, default="running")
    stage_counts: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    error_detail: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("status IN ('running','completed','failed')", name="ck_pipeline_status"),
        CheckConstraint(
            "cycle_type IN ('collection','processing')", name="ck_pipeline_cycle_type"
        ),
        Index("idx_pipeline_runs_started", "started_at"),
    )
