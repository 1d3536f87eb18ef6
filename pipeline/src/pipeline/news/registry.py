"""Instantiate the enabled collectors from configuration."""

from __future__ import annotations

import logging
from collections.abc import Callable

from tidewatch.config import Settings
from tidewatch.errors import CollaboratorConfigError
from tidewatch.services.pipeline_settings import CollectionSettings

from pipeline.governor import ExecutionGovernor
from pipeline.news.base import Collector
from pipeline.news.event_registry import EventRegistryCollector
from pipeline.news.newsapi import HeadlineCollector
from pipeline.news.polymarket import PolymarketCollector
from pipeline.news.rss_fetcher import FeedCollector
from pipeline.news.web_search import WebSearchCollector

logger = logging.getLogger(__name__)

CollectorFactory = Callable[[Settings, ExecutionGovernor, CollectionSettings], Collector]


def _web_search(settings: Settings, governor: ExecutionGovernor, col: CollectionSettings) -> Collector:
    return WebSearchCollector(
        governor,
        settings.tavily_api_key,
        results_per_query=col.web_results_per_query,
        min_score=col.web_min_score,
        timeout=settings.request_timeout,
    )


def _feeds(settings: Settings, governor: ExecutionGovernor, col: CollectionSettings) -> Collector:
    return FeedCollector(governor, timeout=settings.request_timeout)


def _event_registry(settings: Settings, governor: ExecutionGovernor, col: CollectionSettings) -> Collector:
    return EventRegistryCollector(
        governor,
        settings.eventregistry_api_key,
        articles_per_keyword=col.articles_per_category,
        events_per_keyword=col.events_per_category,
        trend_count=col.trend_count,
        timeout=settings.request_timeout,
    )


def _markets(settings: Settings, governor: ExecutionGovernor, col: CollectionSettings) -> Collector:
    return PolymarketCollector(governor, events_per_tag=col.market_tag_limit, timeout=settings.request_timeout)


def _headlines(settings: Settings, governor: ExecutionGovernor, col: CollectionSettings) -> Collector:
    return HeadlineCollector(
        governor,
        settings.news_api_key,
        enabled=settings.enable_newsapi,
        timeout=settings.request_timeout,
    )


COLLECTOR_FACTORIES: dict[str, CollectorFactory] = {
    "tavily": _web_search,
    "rss": _feeds,
    "eventregistry": _event_registry,
    "polymarket": _markets,
    "newsapi": _headlines,
}


def build_collectors(
    settings: Settings,
    governor: ExecutionGovernor,
    collection: CollectionSettings | None = None,
    factories: dict[str, CollectorFactory] | None = None,
) -> list[Collector]:
    """Build every collector; one that fails to configure is logged and left out."""
    col = collection or CollectionSettings()
    collectors: list[Collector] = []
    for name, factory in (factories or COLLECTOR_FACTORIES).items():
        try:
            collector = factory(settings, governor, col)
        except CollaboratorConfigError as exc:
            logger.error("Collector %s disabled: %s", name, exc)
            continue
        if not collector.is_configured():
            logger.info("Collector %s has no credentials or is not enabled; it will no-op", name)
        collectors.append(collector)
    return collectors
