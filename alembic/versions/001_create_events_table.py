"""Create events table for scored, persisted items.

Revision ID: 001_create_events
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "001_create_events"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column(
            "id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("source_id", sa.Text(), nullable=False),
        sa.Column("item_type", sa.Text(), nullable=False, server_default=sa.text("'article'")),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("body", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("author", sa.Text(), nullable=True),
        sa.Column("language", sa.Text(), nullable=False, server_default=sa.text("'en'")),
        sa.Column("category", sa.Text(), nullable=False, server_default=sa.text("'all'")),
        sa.Column("concepts", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("tags", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("sources", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("corroboration_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sentiment", sa.Text(), nullable=True),
        sa.Column("relevance_score", sa.Integer(), nullable=False),
        sa.Column("tier", sa.Text(), nullable=False),
        sa.Column("consensus", sa.Text(), nullable=False),
        sa.Column("annotation", sa.Text(), nullable=True),
        sa.Column("enriched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("source", "source_id", name="uq_events_natural_key"),
        sa.CheckConstraint(
            "relevance_score >= 0 AND relevance_score <= 100",
            name="ck_event_score",
        ),
        sa.CheckConstraint(
            "tier IN ('critical','strategic','background')",
            name="ck_event_tier",
        ),
        sa.CheckConstraint(
            "consensus IN ('high','fragmented','disputed')",
            name="ck_event_consensus",
        ),
    )
    op.create_index("idx_events_tier_score", "events", ["tier", "relevance_score"])
    op.create_index("idx_events_published", "events", ["published_at"])
    op.create_index(
        "idx_events_unannotated",
        "events",
        ["relevance_score"],
        postgresql_where=sa.text("annotation IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("idx_events_unannotated", table_name="events")
    op.drop_index("idx_events_published", table_name="events")
    op.drop_index("idx_events_tier_score", table_name="events")
    op.drop_table("events")
