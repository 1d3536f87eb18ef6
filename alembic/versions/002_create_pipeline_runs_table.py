"""Create pipeline_runs table for cycle audit records.

Revision ID: 002_create_pipeline_runs
Revises: 001_create_events
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "002_create_pipeline_runs"
down_revision: str | None = "001_create_events"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "pipeline_runs",
        sa.Column(
            "id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("cycle_type", sa.Text(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'running'"),
        ),
        sa.Column("stage_counts", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('running','completed','failed')",
            name="ck_pipeline_status",
        ),
        sa.CheckConstraint(
            "cycle_type IN ('collection','processing')",
            name="ck_pipeline_cycle_type",
        ),
    )
    op.create_index("idx_pipeline_runs_started", "pipeline_runs", ["started_at"])


def downgrade() -> None:
    op.drop_index("idx_pipeline_runs_started", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
