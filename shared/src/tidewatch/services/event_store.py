"""Event persistence: idempotent upsert by natural key and run bookkeeping."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Literal

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tidewatch.models import Event, PipelineRun
from tidewatch.schemas.items import CanonicalItem, Concept, SourceRef, Tier
from tidewatch.schemas.pipeline import CycleReport, CycleType, PipelineStatus

logger = logging.getLogger(__name__)

UpsertOutcome = Literal["inserted", "updated"]

# Written by upsert; annotation and enriched_at belong to enrichment.
_UPSERT_COLUMNS = (
    "item_type",
    "title",
    "description",
    "body",
    "published_at",
    "url",
    "author",
    "language",
    "category",
    "concepts",
    "tags",
    "sources",
    "corroboration_count",
    "sentiment",
    "relevance_score",
    "tier",
    "consensus",
)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def event_values(item: CanonicalItem) -> dict[str, Any]:
    if not item.is_scored:
        raise ValueError(f"Refusing to persist unscored item {item.natural_key}")
    return {
        "source": item.source,
        "source_id": item.source_id,
        "item_type": item.item_type.value,
        "title": item.title,
        "description": item.description,
        "body": item.body,
        "published_at": item.published_at,
        "url": item.url,
        "author": item.author,
        "language": item.language,
        "category": item.category,
        "concepts": [c.model_dump(mode="json") for c in item.concepts],
        "tags": list(item.tags),
        "sources": [s.model_dump(mode="json") for s in item.sources],
        "corroboration_count": item.corroboration_count,
        "sentiment": item.sentiment.value if item.sentiment else None,
        "relevance_score": item.relevance_score,
        "tier": item.tier.value if item.tier else None,
        "consensus": item.consensus.value if item.consensus else None,
    }


def event_to_item(row: Event) -> CanonicalItem:
    return CanonicalItem(
        source=row.source,
        source_id=row.source_id,
        item_type=row.item_type,
        title=row.title,
        description=row.description or "",
        body=row.body or "",
        published_at=_aware(row.published_at),
        url=row.url,
        author=row.author,
        language=row.language,
        category=row.category,
        concepts=[Concept(**c) for c in row.concepts or []],
        tags=list(row.tags or []),
        sources=[SourceRef(**s) for s in row.sources or []],
        corroboration_count=row.corroboration_count,
        sentiment=row.sentiment,
        relevance_score=row.relevance_score,
        tier=row.tier,
        consensus=row.consensus,
    )


class EventStore:
    """Persistence for scored events over an async session factory.

    Upserts are serialized per natural key in-process; across processes the
    unique constraint plus ``ON CONFLICT DO UPDATE`` keeps writes idempotent.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def _key_lock(self, key: tuple[str, str]) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    @staticmethod
    def _insert_on_conflict(dialect: str, values: dict[str, Any]):
        if dialect == "postgresql":
            stmt = postgresql.insert(Event).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(Event).values(**values)
        else:
            return insert(Event).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[Event.source, Event.source_id],
            set_={**{col: stmt.excluded[col] for col in _UPSERT_COLUMNS}, "updated_at": func.now()},
        )

    async def upsert(self, item: CanonicalItem) -> UpsertOutcome:
        """Insert the item or update its scored fields in place."""
        values = event_values(item)
        async with self._key_lock(item.natural_key):
            async with self._session_factory() as session:
                existing = await session.execute(
                    select(Event.id).where(
                        Event.source == item.source, Event.source_id == item.source_id
                    )
                )
                event_id = existing.scalar_one_or_none()
                if event_id is not None:
                    await session.execute(
                        update(Event)
                        .where(Event.id == event_id)
                        .values(**{col: values[col] for col in _UPSERT_COLUMNS}, updated_at=func.now())
                    )
                    outcome: UpsertOutcome = "updated"
                else:
                    dialect = session.get_bind().dialect.name
                    await session.execute(
                        self._insert_on_conflict(dialect, {"id": uuid.uuid4(), **values})
                    )
                    outcome = "inserted"
                await session.commit()
        logger.debug("Upsert %s/%s: %s", item.source, item.source_id, outcome)
        return outcome

    async def get(self, source: str, source_id: str) -> Event | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Event).where(Event.source == source, Event.source_id == source_id)
            )
            return result.scalars().first()

    async def select_for_enrichment(self, tiers: Sequence[Tier], limit: int) -> list[CanonicalItem]:
        """Unannotated events in ``tiers``, highest score first."""
        if not tiers or limit <= 0:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Event)
                .where(
                    Event.annotation.is_(None),
                    Event.tier.in_([t.value for t in tiers]),
                )
                .order_by(Event.relevance_score.desc(), Event.published_at.desc())
                .limit(limit)
            )
            return [event_to_item(row) for row in result.scalars().all()]

    async def attach_annotation(self, source: str, source_id: str, text: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Event)
                .where(Event.source == source, Event.source_id == source_id)
                .values(annotation=text, enriched_at=datetime.now(UTC), updated_at=func.now())
            )
            await session.commit()
            return bool(result.rowcount)

    async def record_run(self, cycle_type: CycleType, started_at: datetime) -> uuid.UUID:
        run = PipelineRun(
            id=uuid.uuid4(),
            cycle_type=cycle_type.value,
            started_at=started_at,
            status=PipelineStatus.RUNNING.value,
            stage_counts={},
        )
        async with self._session_factory() as session:
            session.add(run)
            await session.commit()
        return run.id

    async def finish_run(self, run_id: uuid.UUID, report: CycleReport) -> None:
        errors = [f"{f.stage}: {f.error}" for f in report.stage_failures]
        errors += [f"collector {name}: {error}" for name, error in report.collector_failures.items()]
        async with self._session_factory() as session:
            run = await session.get(PipelineRun, run_id)
            if run is None:
                logger.warning("Pipeline run %s not found; cannot record its result", run_id)
                return
            run.ended_at = report.ended_at or datetime.now(UTC)
            run.status = report.status.value
            run.stage_counts = {name: counts.model_dump() for name, counts in report.stages.items()}
            run.error_detail = "\n".join(errors) or None
            await session.commit()
