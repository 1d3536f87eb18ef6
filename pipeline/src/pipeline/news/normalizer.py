"""Map provider-specific RawItems onto CanonicalItem."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from functools import singledispatch

from tidewatch.schemas.items import (
    CanonicalItem,
    Concept,
    FeedEntry,
    Headline,
    ItemType,
    Market,
    RawConcept,
    RawItem,
    RegistryArticle,
    RegistryEvent,
    RegistryTrend,
    Sentiment,
    SourceRef,
    WebArticle,
)

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 10_000
MAX_DESCRIPTION_CHARS = 500
MAX_TAGS = 5

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse ISO-8601, RFC-2822 or date-only strings into aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def clean_text(value: str | None) -> str:
    if not value:
        return ""
    return _WS_RE.sub(" ", _TAG_RE.sub(" ", value)).strip()


def _salience(score: float | None) -> float:
    if score is None:
        return 0.0
    try:
        value = float(score)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    # Some providers report concept weight on a 0-100 scale.
    if value > 1:
        value /= 100
    return min(1.0, max(0.0, value))


def build_concepts(raw: Iterable[RawConcept | tuple[str, float | None]]) -> list[Concept]:
    """Ordered, de-duplicated concepts with salience clamped to [0, 1]."""
    concepts: list[Concept] = []
    seen: set[str] = set()
    for entry in raw:
        if isinstance(entry, RawConcept):
            label, score = entry.label, entry.score
        else:
            label, score = entry
        label = (label or "").strip()
        if not label or label.casefold() in seen:
            continue
        seen.add(label.casefold())
        concepts.append(Concept(label=label, salience=_salience(score)))
    return concepts


def _with_keyword_concepts(concepts: list[Concept], text: str, vocabulary: Sequence[str]) -> list[Concept]:
    """Append vocabulary terms mentioned in ``text`` as zero-salience concepts."""
    lowered = text.lower()
    present = {c.label.casefold() for c in concepts}
    extra = [
        Concept(label=term, salience=0.0)
        for term in vocabulary
        if term.lower() in lowered and term.casefold() not in present
    ]
    return concepts + extra


def _sentiment(value: str | None) -> Sentiment | None:
    if not value:
        return None
    try:
        return Sentiment(value.lower())
    except ValueError:
        return None


def _truncate(text: str, limit: int) -> str:
    return text[:limit] if len(text) > limit else text


@singledispatch
def _to_canonical(raw: object, vocabulary: Sequence[str]) -> CanonicalItem | None:
    raise TypeError(f"Unsupported raw item type: {type(raw).__name__}")


@_to_canonical.register
def _(raw: WebArticle, vocabulary: Sequence[str]) -> CanonicalItem | None:
    published = parse_timestamp(raw.published_date)
    if published is None or not raw.title.strip():
        return None
    # Query tags carry the provider's relevance score as salience.
    concepts = build_concepts((tag, raw.score) for tag in raw.tags)
    concepts = _with_keyword_concepts(concepts, f"{raw.title} {raw.content}", vocabulary)
    content = clean_text(raw.content)
    return CanonicalItem(
        source="tavily",
        source_id=raw.url,
        item_type=ItemType.ARTICLE,
        title=raw.title.strip(),
        description=content,
        body=content,
        published_at=published,
        url=raw.url,
        author=raw.author,
        category=raw.category,
        concepts=concepts,
        tags=list(raw.tags[:MAX_TAGS]),
        sources=[SourceRef(name="Tavily", url=raw.url)],
    )


@_to_canonical.register
def _(raw: FeedEntry, vocabulary: Sequence[str]) -> CanonicalItem | None:
    published = parse_timestamp(raw.published)
    if published is None or not raw.title.strip():
        return None
    description = clean_text(raw.description)
    concepts = _with_keyword_concepts([], f"{raw.title} {description}", vocabulary)
    return CanonicalItem(
        source="rss",
        source_id=raw.guid or raw.link,
        item_type=ItemType.ARTICLE,
        title=raw.title.strip(),
        description=description,
        body=description,
        published_at=published,
        url=raw.link,
        author=raw.author,
        category=raw.category,
        concepts=concepts,
        tags=[c.label for c in concepts[:MAX_TAGS]],
        sources=[SourceRef(name=raw.feed_name, url=raw.link)],
    )


@_to_canonical.register
def _(raw: RegistryArticle, vocabulary: Sequence[str]) -> CanonicalItem | None:
    published = parse_timestamp(raw.date_time_pub) or parse_timestamp(raw.date)
    if published is None or not raw.title.strip():
        return None
    concepts = build_concepts(raw.concepts)
    return CanonicalItem(
        source="eventregistry",
        source_id=raw.uri or raw.url,
        item_type=ItemType.ARTICLE,
        title=raw.title.strip(),
        description=raw.body,
        body=raw.body,
        published_at=published,
        url=raw.url or None,
        author=raw.source_title,
        language=raw.lang or "en",
        category=raw.category,
        concepts=concepts,
        tags=[c.label for c in concepts[:MAX_TAGS]],
        sources=[SourceRef(name=raw.source_title or "Unknown", url=raw.url or None)],
        corroboration_count=0,
        sentiment=_sentiment(raw.sentiment),
    )


@_to_canonical.register
def _(raw: RegistryEvent, vocabulary: Sequence[str]) -> CanonicalItem | None:
    published = parse_timestamp(raw.date_time_pub) or parse_timestamp(raw.date)
    if published is None or not raw.title.strip() or not raw.uri:
        return None
    concepts = build_concepts(raw.concepts)
    return CanonicalItem(
        source="eventregistry",
        source_id=raw.uri,
        item_type=ItemType.EVENT,
        title=raw.title.strip(),
        description=raw.summary,
        body=raw.summary,
        published_at=published,
        language=raw.lang or "en",
        category=raw.category,
        concepts=concepts,
        tags=[c.label for c in concepts[:MAX_TAGS]],
        sources=[
            SourceRef(name=s.get("name") or "Unknown", url=s.get("url"))
            for s in raw.sources[:10]
        ],
        corroboration_count=max(0, raw.article_count),
    )


@_to_canonical.register
def _(raw: RegistryTrend, vocabulary: Sequence[str]) -> CanonicalItem | None:
    published = parse_timestamp(raw.observed_at)
    label = raw.label.strip()
    if published is None or not label or not raw.uri:
        return None
    return CanonicalItem(
        source="eventregistry",
        source_id=raw.uri,
        item_type=ItemType.TREND,
        title=f"Trending: {label}",
        description=f"Trending concept with {raw.mentions_count} mentions",
        body=f"Trending concept: {label}",
        published_at=published,
        category=raw.category,
        concepts=build_concepts([(label, raw.score)]),
        tags=[label],
        corroboration_count=max(0, raw.mentions_count),
    )


@_to_canonical.register
def _(raw: Market, vocabulary: Sequence[str]) -> CanonicalItem | None:
    published = parse_timestamp(raw.updated_at) or parse_timestamp(raw.start_date)
    if published is None or not raw.question.strip():
        return None
    concepts = build_concepts((tag, None) for tag in raw.tags)
    concepts = _with_keyword_concepts(concepts, raw.question, vocabulary)
    odds = ", ".join(
        f"{outcome}: {price:.2f}" for outcome, price in zip(raw.outcomes, raw.outcome_prices)
    )
    description = clean_text(raw.description)
    body = description
    if odds:
        body = f"{description}\n\nOutcomes: {odds}".strip()
    url = f"https://polymarket.com/event/{raw.slug}" if raw.slug else None
    return CanonicalItem(
        source="polymarket",
        source_id=raw.market_id,
        item_type=ItemType.MARKET,
        title=raw.question.strip(),
        description=description,
        body=body,
        published_at=published,
        url=url,
        category=raw.category,
        concepts=concepts,
        tags=list(raw.tags[:MAX_TAGS]),
        sources=[SourceRef(name="Polymarket", url=url)],
    )


@_to_canonical.register
def _(raw: Headline, vocabulary: Sequence[str]) -> CanonicalItem | None:
    published = parse_timestamp(raw.published_at)
    if published is None or not raw.title.strip() or not raw.url:
        return None
    description = clean_text(raw.description)
    concepts = _with_keyword_concepts([], f"{raw.title} {description}", vocabulary)
    return CanonicalItem(
        source="newsapi",
        source_id=raw.url,
        item_type=ItemType.ARTICLE,
        title=raw.title.strip(),
        description=description,
        body=clean_text(raw.content) or description,
        published_at=published,
        url=raw.url,
        author=raw.author,
        category=raw.category,
        concepts=concepts,
        tags=[c.label for c in concepts[:MAX_TAGS]],
        sources=[SourceRef(name=raw.source_name or "NewsAPI", url=raw.url)],
    )


def normalize(
    raw: RawItem,
    *,
    vocabulary: Sequence[str] = (),
    max_body_chars: int = MAX_BODY_CHARS,
    max_description_chars: int = MAX_DESCRIPTION_CHARS,
) -> CanonicalItem | None:
    """Return the canonical form of ``raw``, or None when it has no title or date.

    ``vocabulary`` lists terms (usually the priority concepts) that are
    tagged as zero-salience concepts when a source supplies none of its own.
    """
    item = _to_canonical(raw, vocabulary)
    if item is None:
        return None
    return item.model_copy(
        update={
            "body": _truncate(item.body, max_body_chars),
            "description": _truncate(item.description, max_description_chars),
        }
    )


def normalize_batch(
    raws: Iterable[RawItem],
    *,
    vocabulary: Sequence[str] = (),
    max_body_chars: int = MAX_BODY_CHARS,
    max_description_chars: int = MAX_DESCRIPTION_CHARS,
) -> tuple[list[CanonicalItem], int]:
    """Normalize a batch; returns (items, rejected_count)."""
    items: list[CanonicalItem] = []
    rejected = 0
    for raw in raws:
        try:
            item = normalize(
                raw,
                vocabulary=vocabulary,
                max_body_chars=max_body_chars,
                max_description_chars=max_description_chars,
            )
        except ValueError as exc:
            logger.debug("Dropping malformed %s item: %s", getattr(raw, "kind", "?"), exc)
            item = None
        if item is None:
            rejected += 1
            continue
        items.append(item)
    if rejected:
        logger.info("Normalizer rejected %d of %d item(s)", rejected, len(items) + rejected)
    return items, rejected
