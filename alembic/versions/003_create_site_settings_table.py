"""Create site_settings table for tunable pipeline overrides.

Revision ID: 003_create_site_settings
Revises: 002_create_pipeline_runs
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "003_create_site_settings"
down_revision: str | None = "002_create_pipeline_runs"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "site_settings",
        sa.Column("key", sa.Text(), primary_key=True),
        sa.Column("value", JSONB(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False, server_default=sa.text("'general'")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index("idx_site_settings_category", "site_settings", ["category"])


def downgrade() -> None:
    op.drop_index("idx_site_settings_category", table_name="site_settings")
    op.drop_table("site_settings")
