"""Event model - one persisted row per (source, source_id) natural key."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from tidewatch.models.base import Base, JSONType


class Event(Base):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    source_id: Mapped[str] = mapped_column(Text, nullable=False)

    item_type: Mapped[str] = mapped_column(Text, nullable=False, default="article")
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    url: Mapped[str | None] = mapped_column(Text)
    author: Mapped[str | None] = mapped_column(Text)
    language: Mapped[str] = mapped_column(Text, nullable=False, default="en")
    category: Mapped[str] = mapped_column(Text, nullable=False, default="all")

    concepts: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    sources: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    corroboration_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sentiment: Mapped[str | None] = mapped_column(Text)

    # Derived by the relevance scorer
    relevance_score: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(Text, nullable=False)
    consensus: Mapped[str] = mapped_column(Text, nullable=False)

    # Written by enrichment only
    annotation: Mapped[str | None] = mapped_column(Text)
    enriched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="uq_events_natural_key"),
        CheckConstraint(
            "relevance_score >= 0 AND relevance_score <= 100", name="ck_event_score"
        ),
        CheckConstraint("tier IN ('critical','strategic','background')", name="ck_event_tier"),
        CheckConstraint(
            "consensus IN ('high','fragmented','disputed')", name="ck_event_consensus"
        ),
        Index("idx_events_tier_score", "tier", "relevance_score"),
        Index("idx_events_published", "published_at"),
    )
