from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MediaType(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    VIDEO = "video"


class LinkType(str, Enum):
    INTERNAL = "internal"
    CROSS_PUBLICATION = "cross-publication"
    EXTERNAL = "external"


@dataclass(frozen=True)
class FeedItem:
    title: str
    url: str
    published_at: datetime
    author: str
    content_html: str
    media_type: MediaType = MediaType.TEXT
    summary: str | None = None
    image_url: str | None = None
    guid: str | None = None


@dataclass(frozen=True)
class Feed:
    title: str
    link: str
    feed_url: str
    items: list[FeedItem]
    description: str | None = None
    author: str | None = None
    last_build_date: datetime | None = None


@dataclass(frozen=True)
class FetchResult:
    success: bool
    fetched_at: datetime
    feed: Feed | None = None
    error: str | None = None
    cached: bool = False
    http_status: int | None = None


@dataclass(frozen=True)
class ExtractedLink:
    url: str
    text: str
    link_type: LinkType
    target_slug: str | None = None


@dataclass(frozen=True)
class ArticleMetadata:
    title: str
    author: str
    publication: str
    publication_slug: str
    published_at: str
    source_url: str
    word_count: int
    estimated_read_time: int
    tags: dict[str, str] | None = None


@dataclass(frozen=True)
class ConvertedArticle:
    metadata: ArticleMetadata
    markdown: str
    html: str
    links: list[ExtractedLink]


@dataclass(frozen=True)
class StorageResult:
    success: bool
    path: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class LibraryStats:
    publications: int
    articles: int
    total_size: int


@dataclass(frozen=True)
class IngestionSource:
    name: str
    slug: str
    feed_url: str
    author: str | None = None


@dataclass(frozen=True)
class IngestionOptions:
    library_dir: str = "./library"
    fetch_delay_seconds: float = 1.0
    fetch_retries: int = 3
    fetch_timeout_seconds: float = 30.0
    user_agent: str = "feedlibrary/0.1 (Personal Library)"
    dry_run: bool = False
    verbose: bool = False
    since: datetime | None = None
    max_articles_per_pub: int | None = None
    text_only: bool = True
    min_read_time_minutes: int = 0
    db: Any = None


@dataclass(frozen=True)
class IngestionError:
    error: str
    phase: str
    article_title: str | None = None
    article_url: str | None = None


@dataclass(frozen=True)
class ArticleProcessResult:
    item: FeedItem
    skipped: bool
    skip_reason: str | None = None
    converted: ConvertedArticle | None = None
    stored: StorageResult | None = None
    error: IngestionError | None = None


@dataclass(frozen=True)
class IngestionResult:
    source: IngestionSource
    success: bool
    articles_processed: int
    articles_skipped: int
    articles_stored: int
    errors: list[IngestionError] = field(default_factory=list)
    duration: float = 0.0


@dataclass(frozen=True)
class BatchIngestionResult:
    total_sources: int
    successful_sources: int
    failed_sources: int
    total_articles_processed: int
    total_articles_skipped: int
    total_articles_stored: int
    total_errors: int
    results: list[IngestionResult]
    duration: float

    @property
    def all_succeeded(self) -> bool:
        return self.failed_sources == 0
