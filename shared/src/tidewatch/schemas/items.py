"""Pydantic schemas for raw provider payloads and canonical items."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator


class Tier(str, Enum):
    CRITICAL = "critical"
    STRATEGIC = "strategic"
    BACKGROUND = "background"


class Consensus(str, Enum):
    HIGH = "high"
    FRAGMENTED = "fragmented"
    DISPUTED = "disputed"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class ItemType(str, Enum):
    ARTICLE = "article"
    EVENT = "event"
    TREND = "trend"
    MARKET = "market"


class RawConcept(BaseModel):
    """Concept as returned by a provider; score scale varies by provider."""

    label: str = ""
    score: float | None = None
    uri: str = ""


# ---------------------------------------------------------------------------
# Raw items: one variant per provider payload, discriminated by ``kind``.
# ---------------------------------------------------------------------------


class WebArticle(BaseModel):
    kind: Literal["web_article"] = "web_article"
    title: str
    url: str
    content: str = ""
    published_date: str | None = None
    score: float = 0.0
    author: str | None = None
    category: str = "general"
    tags: list[str] = Field(default_factory=list)


class FeedEntry(BaseModel):
    kind: Literal["feed_entry"] = "feed_entry"
    feed_name: str
    title: str
    link: str
    description: str = ""
    published: str | None = None
    author: str | None = None
    guid: str | None = None
    category: str = "general"


class RegistryArticle(BaseModel):
    kind: Literal["registry_article"] = "registry_article"
    uri: str = ""
    url: str = ""
    title: str = ""
    body: str = ""
    lang: str | None = None
    date: str | None = None
    date_time_pub: str | None = None
    source_title: str | None = None
    concepts: list[RawConcept] = Field(default_factory=list)
    sentiment: str | None = None
    category: str = "all"


class RegistryEvent(BaseModel):
    kind: Literal["registry_event"] = "registry_event"
    uri: str = ""
    title: str = ""
    summary: str = ""
    article_count: int = 0
    date: str | None = None
    date_time_pub: str | None = None
    lang: str | None = None
    concepts: list[RawConcept] = Field(default_factory=list)
    sources: list[dict[str, str]] = Field(default_factory=list)
    category: str = "all"


class RegistryTrend(BaseModel):
    kind: Literal["registry_trend"] = "registry_trend"
    uri: str = ""
    label: str = ""
    score: float | None = None
    mentions_count: int = 0
    observed_at: str | None = None
    category: str = "all"


class Market(BaseModel):
    kind: Literal["market"] = "market"
    market_id: str
    condition_id: str = ""
    slug: str = ""
    question: str = ""
    description: str = ""
    outcomes: list[str] = Field(default_factory=list)
    outcome_prices: list[float] = Field(default_factory=list)
    volume: float = 0.0
    liquidity: float = 0.0
    start_date: str | None = None
    end_date: str | None = None
    updated_at: str | None = None
    tags: list[str] = Field(default_factory=list)
    category: str = "markets"


class Headline(BaseModel):
    kind: Literal["headline"] = "headline"
    title: str = ""
    description: str | None = None
    content: str | None = None
    url: str = ""
    published_at: str | None = None
    author: str | None = None
    source_name: str | None = None
    category: str = "news"


RawItem = Annotated[
    Union[WebArticle, FeedEntry, RegistryArticle, RegistryEvent, RegistryTrend, Market, Headline],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Canonical item
# ---------------------------------------------------------------------------


class Concept(BaseModel):
    label: str
    salience: float = Field(default=0.0, ge=0.0, le=1.0)


class SourceRef(BaseModel):
    name: str
    url: str | None = None


class CanonicalItem(BaseModel):
    """The unit the pipeline operates on after normalization."""

    source: str
    source_id: str
    item_type: ItemType = ItemType.ARTICLE
    title: str
    description: str = ""
    body: str = ""
    published_at: datetime
    url: str | None = None
    author: str | None = None
    language: str = "en"
    category: str = "all"
    concepts: list[Concept] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    sources: list[SourceRef] = Field(default_factory=list)
    corroboration_count: int = Field(default=0, ge=0)
    sentiment: Sentiment | None = None

    # Derived by the relevance scorer
    relevance_score: int | None = Field(default=None, ge=0, le=100)
    tier: Tier | None = None
    consensus: Consensus | None = None

    @field_validator("published_at")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("published_at must be timezone-aware")
        return value

    @property
    def natural_key(self) -> tuple[str, str]:
        return self.source, self.source_id

    @property
    def is_scored(self) -> bool:
        return self.relevance_score is not None
