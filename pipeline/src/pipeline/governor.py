"""Execution governor: bounded-concurrency, batched, retrying task runner.

Every outbound call in the pipeline (collectors, store writes, enrichment)
goes through :class:`ExecutionGovernor`. Callers declare an
:class:`ApiConfig` per logical API and get back successes and structured
failures; the governor only raises for invalid configuration.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, fields, replace
from typing import Any, Generic, TypeVar

import httpx

from tidewatch.errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Sleep = Callable[[float], Awaitable[Any]]
ProgressCallback = Callable[[int, int], Any]


class GovernorConfigError(ValueError):
    """Raised for an ApiConfig that cannot be executed."""


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    base_delay: float
    backoff_multiplier: float = 2.0
    cap: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failed try (0-based)."""
        return min(self.cap, self.base_delay * (self.backoff_multiplier ** attempt))


@dataclass(frozen=True)
class ApiConfig:
    """Declared limits for one external API. Delays are in seconds."""

    max_concurrency: int
    batch_size: int
    retry_attempts: int
    retry_delay: float
    rate_limit_buffer: float = 0.0

    def validate(self) -> ApiConfig:
        if self.max_concurrency <= 0:
            raise GovernorConfigError(f"max_concurrency must be > 0, got {self.max_concurrency}")
        if self.batch_size <= 0:
            raise GovernorConfigError(f"batch_size must be > 0, got {self.batch_size}")
        if self.retry_attempts <= 0:
            raise GovernorConfigError(f"retry_attempts must be > 0, got {self.retry_attempts}")
        if self.retry_delay < 0:
            raise GovernorConfigError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if not 0 <= self.rate_limit_buffer < 100:
            raise GovernorConfigError(
                f"rate_limit_buffer must be in [0, 100), got {self.rate_limit_buffer}"
            )
        return self

    @property
    def effective_concurrency(self) -> int:
        """Concurrency after reserving ``rate_limit_buffer`` percent as headroom."""
        return max(1, math.floor(self.max_concurrency * (100 - self.rate_limit_buffer) / 100))

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.retry_attempts, base_delay=self.retry_delay)


API_CONFIGS: dict[str, ApiConfig] = {
    "llm": ApiConfig(max_concurrency=50, batch_size=100, retry_attempts=5, retry_delay=1.0, rate_limit_buffer=10),
    "web_search": ApiConfig(max_concurrency=20, batch_size=50, retry_attempts=3, retry_delay=0.5, rate_limit_buffer=15),
    "event_registry": ApiConfig(max_concurrency=5, batch_size=20, retry_attempts=3, retry_delay=1.0, rate_limit_buffer=20),
    "polymarket": ApiConfig(max_concurrency=5, batch_size=50, retry_attempts=3, retry_delay=0.5),
    "rss": ApiConfig(max_concurrency=10, batch_size=50, retry_attempts=2, retry_delay=0.5),
    "headlines": ApiConfig(max_concurrency=3, batch_size=10, retry_attempts=2, retry_delay=1.0),
    "store": ApiConfig(max_concurrency=10, batch_size=100, retry_attempts=3, retry_delay=0.2),
}


def is_rate_limit_error(exc: BaseException) -> bool:
    """True for HTTP 429 responses and provider-specific rate-limit signals."""
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return True
    for attr in ("status", "status_code"):
        if getattr(exc, attr, None) == 429:
            return True
    if getattr(exc, "code", None) == "rate_limit_exceeded":
        return True
    message = str(exc).lower()
    return "rate limit" in message or "429" in message


class RateLimitManager:
    """Shared adaptive delay for callers drawing on one provider quota.

    The delay doubles on every hit (capped at ``max_delay``) and decays by
    ``1 - decay`` for every full minute without a hit (floored at
    ``min_delay``).
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        min_delay: float = 0.1,
        max_delay: float = 10.0,
        decay: float = 0.9,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.initial_delay = initial_delay
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.decay = decay
        self._clock = clock
        self._lock = threading.Lock()
        self._delay = initial_delay
        self._hits = 0
        self._last_change = clock()

    @property
    def hits(self) -> int:
        return self._hits

    def hit(self) -> float:
        with self._lock:
            self._hits += 1
            self._delay = min(self._delay * 2, self.max_delay)
            self._last_change = self._clock()
            delay = self._delay
        logger.warning("Rate limit hit (%d total). New delay: %.2fs", self._hits, delay)
        return delay

    def current_delay(self) -> float:
        with self._lock:
            now = self._clock()
            minutes = int((now - self._last_change) // 60)
            if minutes > 0:
                self._delay = max(self._delay * (self.decay ** minutes), self.min_delay)
                self._last_change += minutes * 60
            return self._delay

    def reset(self) -> None:
        with self._lock:
            self._hits = 0
            self._delay = self.initial_delay
            self._last_change = self._clock()


class RetryExhaustedError(Exception):
    """All attempts of one call failed; wraps the last error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts


async def retry_call(
    func: Callable[[], Awaitable[R]],
    policy: RetryPolicy,
    *,
    manager: RateLimitManager | None = None,
    sleep: Sleep = asyncio.sleep,
    label: str = "task",
) -> R:
    """Await ``func()`` under ``policy``; raise RetryExhaustedError when it keeps failing.

    Rate-limit failures also register a hit on ``manager`` and wait at least
    the manager's current delay before the next attempt.
    """
    last_error: BaseException | None = None
    for attempt in range(policy.attempts):
        try:
            return await func()
        except Exception as exc:
            last_error = exc
            rate_limited = is_rate_limit_error(exc)
            if rate_limited and manager is not None:
                manager.hit()
            if attempt == policy.attempts - 1:
                break
            delay = policy.delay_for(attempt)
            if rate_limited and manager is not None:
                delay = max(delay, manager.current_delay())
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.2fs: %s",
                label,
                attempt + 1,
                policy.attempts,
                "rate limit" if rate_limited else "error",
                delay,
                exc,
            )
            await sleep(delay)
    if last_error is None:
        raise GovernorConfigError(f"{label}: retry policy allows no attempts")
    raise RetryExhaustedError(last_error, policy.attempts)


@dataclass
class TaskFailure(Generic[T]):
    item: T
    error: BaseException
    attempts: int


@dataclass
class GovernorResult(Generic[T, R]):
    results: list[R] = field(default_factory=list)
    failures: list[TaskFailure[T]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results)


class ExecutionGovernor:
    """Owns per-API configuration and rate-limit state for one process."""

    def __init__(
        self,
        configs: dict[str, ApiConfig] | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = dict(API_CONFIGS)
        for api, config in (configs or {}).items():
            self._configs[api] = config.validate()
        self._sleep = sleep
        self._clock = clock
        self._managers: dict[str, RateLimitManager] = {}
        self._managers_lock = threading.Lock()
        self._limiters: dict[str, asyncio.Semaphore] = {}

    @classmethod
    def from_overrides(cls, overrides: dict[str, dict[str, Any]], **kwargs: Any) -> ExecutionGovernor:
        """Build a governor from ``{api: {field: value}}`` overrides of the defaults."""
        allowed = {f.name for f in fields(ApiConfig)}
        configs: dict[str, ApiConfig] = {}
        for api, values in overrides.items():
            unknown = set(values) - allowed
            if unknown:
                raise GovernorConfigError(f"Unknown governor fields for '{api}': {sorted(unknown)}")
            base = API_CONFIGS.get(api)
            if base is None:
                try:
                    configs[api] = ApiConfig(**values)
                except TypeError as exc:
                    raise GovernorConfigError(f"Incomplete governor config for '{api}': {exc}") from exc
            else:
                configs[api] = replace(base, **values)
        return cls(configs, **kwargs)

    def config(self, api: str) -> ApiConfig:
        try:
            return self._configs[api]
        except KeyError:
            raise GovernorConfigError(f"No governor config for api '{api}'") from None

    def manager(self, api: str) -> RateLimitManager:
        with self._managers_lock:
            if api not in self._managers:
                self._managers[api] = RateLimitManager(clock=self._clock)
            return self._managers[api]

    def limiter(self, api: str, config: ApiConfig | None = None) -> asyncio.Semaphore:
        """The semaphore shared by every ``run_all`` call against ``api``.

        Sized once, from the api's own config when it has one.
        """
        if api not in self._limiters:
            if api in self._configs:
                config = self._configs[api]
            elif config is None:
                raise GovernorConfigError(f"No governor config for api '{api}'")
            self._limiters[api] = asyncio.Semaphore(config.effective_concurrency)
        return self._limiters[api]

    def reset(self) -> None:
        with self._managers_lock:
            self._managers.clear()

    async def run_all(
        self,
        items: Sequence[T],
        processor: Callable[[T], Awaitable[R]],
        config: ApiConfig | None = None,
        on_progress: ProgressCallback | None = None,
        api: str | None = None,
    ) -> GovernorResult[T, R]:
        """Run ``processor`` over ``items`` in batches with bounded concurrency.

        With ``api`` set, the bound holds across every concurrent call for
        that api. Results keep input order; exhausted items become
        TaskFailure records.
        """
        if config is None:
            if api is None:
                raise GovernorConfigError("run_all needs either a config or an api name")
            config = self.config(api)
        config.validate()

        policy = config.retry_policy
        manager = self.manager(api) if api else None
        total = len(items)
        completed = 0
        result: GovernorResult[T, R] = GovernorResult()
        label = api or "task"
        shared = self.limiter(api, config) if api else None

        def _report() -> None:
            nonlocal completed
            completed += 1
            if on_progress is None:
                return
            try:
                on_progress(completed, total)
            except Exception:
                logger.exception("Progress callback failed for %s", label)

        for start in range(0, total, config.batch_size):
            batch = items[start : start + config.batch_size]
            semaphore = shared if shared is not None else asyncio.Semaphore(config.effective_concurrency)

            async def _run_one(item: T) -> tuple[bool, Any]:
                async with semaphore:
                    try:
                        value = await retry_call(
                            lambda: processor(item),
                            policy,
                            manager=manager,
                            sleep=self._sleep,
                            label=label,
                        )
                    except RetryExhaustedError as exc:
                        _report()
                        return False, TaskFailure(item, exc.last_error, exc.attempts)
                    _report()
                    return True, value

            outcomes = await asyncio.gather(*[_run_one(item) for item in batch])
            for ok, value in outcomes:
                if ok:
                    result.results.append(value)
                else:
                    result.failures.append(value)

        if result.failures:
            logger.warning(
                "%s: %d/%d item(s) failed after retries", label, len(result.failures), total
            )
        return result
