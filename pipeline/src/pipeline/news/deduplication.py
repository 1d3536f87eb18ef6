"""In-batch deduplication of canonical items."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import UTC, date
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from tidewatch.schemas.items import CanonicalItem

logger = logging.getLogger(__name__)

TRACKING_PARAMS = {"utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "ref", "fbclid", "gclid"}

_WS_RE = re.compile(r"\s+")


def dedup_key(item: CanonicalItem) -> tuple[str, date]:
    """Lowercased, whitespace-collapsed title plus UTC publication day."""
    title = _WS_RE.sub(" ", item.title).strip().lower()
    return title, item.published_at.astimezone(UTC).date()


def deduplicate_items(items: Iterable[CanonicalItem]) -> list[CanonicalItem]:
    """Keep the highest-scored item per dedup key; ties keep the first seen.

    Output is ordered by first appearance of each key, so the same batch
    always yields the same survivors in the same order.
    """
    best: dict[tuple[str, date], CanonicalItem] = {}
    total = 0
    for item in items:
        total += 1
        key = dedup_key(item)
        current = best.get(key)
        if current is None or (item.relevance_score or 0) > (current.relevance_score or 0):
            best[key] = item
    if total != len(best):
        logger.info("Deduplicated %d item(s) into %d", total, len(best))
    return list(best.values())


def normalize_url(url: str) -> str:
    try:
        p = urlparse(url)
        q = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if k.lower() not in TRACKING_PARAMS]
        return urlunparse(
            (
                p.scheme.lower(),
                p.netloc.lower(),
                p.path.rstrip("/"),
                p.params,
                urlencode(q, doseq=True),
                "",
            )
        )
    except ValueError:
        return url
