"""Collector base class and query/result types."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import httpx

from tidewatch.schemas.items import RawItem

from pipeline.governor import ExecutionGovernor

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "Mozilla/5.0 (compatible; Tidewatch/1.0)"


@dataclass
class CollectionQuery:
    category: str = "all"
    keywords: list[str] = field(default_factory=list)
    recency_days: int = 7
    max_results: int = 30

    def window_start(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(UTC)) - timedelta(days=self.recency_days)


@dataclass
class CollectionResult:
    """What one collector produced for one query.

    ``hard_failure`` is only ever set by the primary collector.
    """

    source: str
    items: list[RawItem] = field(default_factory=list)
    failed_requests: int = 0
    hard_failure: str | None = None


class Collector(ABC):
    """One external source turned into RawItems.

    Subclasses implement ``_collect``. ``collect`` never raises: a missing
    credential or a whole-run failure yields an empty result.
    """

    name: str = ""
    api: str = ""
    primary: bool = False
    per_category: bool = False

    def __init__(
        self,
        governor: ExecutionGovernor,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.governor = governor
        self.timeout = timeout
        self._client = client

    def is_configured(self) -> bool:
        return True

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as client:
            yield client

    async def collect(self, query: CollectionQuery) -> CollectionResult:
        if not self.is_configured():
            logger.info("Collector %s not configured, skipping", self.name)
            return CollectionResult(source=self.name)
        try:
            async with self._http() as client:
                result = await self._collect(query, client)
        except Exception as exc:
            if self.primary:
                logger.error("Primary collector %s failed: %s", self.name, exc)
                return CollectionResult(source=self.name, hard_failure=str(exc) or type(exc).__name__)
            logger.warning("Collector %s failed: %s", self.name, exc)
            return CollectionResult(source=self.name)
        logger.info(
            "Collector %s [%s]: %d item(s), %d failed request(s)",
            self.name,
            query.category,
            len(result.items),
            result.failed_requests,
        )
        return result

    @abstractmethod
    async def _collect(self, query: CollectionQuery, client: httpx.AsyncClient) -> CollectionResult:
        ...

    async def _fan_out(
        self,
        requests: Sequence[T],
        fetch: Callable[[T], Awaitable[list[Any]]],
    ) -> tuple[list[Any], int, list[BaseException]]:
        """Run ``fetch`` per request through the governor; flatten successes."""
        outcome = await self.governor.run_all(requests, fetch, api=self.api)
        items = [item for batch in outcome.results for item in batch]
        for failure in outcome.failures:
            logger.warning("%s request %r skipped: %s", self.name, failure.item, failure.error)
        return items, len(outcome.failures), [f.error for f in outcome.failures]
