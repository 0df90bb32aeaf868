from __future__ import annotations

import logging
import re
import sqlite3
import time
from dataclasses import replace

from . import db as catalog
from .converter import convert_feed_item
from .fetcher import Fetcher
from .models import (
    ArticleProcessResult,
    BatchIngestionResult,
    FeedItem,
    IngestionError,
    IngestionOptions,
    IngestionResult,
    IngestionSource,
    MediaType,
)
from .storage import ArticleLibrary
from .utils import isoformat_utc, log_event, parse_datetime, slugify

logger = logging.getLogger("feedlibrary.ingest")

SKIP_EXISTS = "already exists"
SKIP_MEDIA = "video/audio content"

_MEDIA_MARKUP_RE = re.compile(r"<(?:video|audio)\b|\btranscript\b", re.IGNORECASE)


def contains_media_markup(html: str) -> bool:
    return bool(_MEDIA_MARKUP_RE.search(html or ""))


def fetcher_from_options(options: IngestionOptions) -> Fetcher:
    return Fetcher(
        delay_seconds=options.fetch_delay_seconds,
        retries=options.fetch_retries,
        timeout_seconds=options.fetch_timeout_seconds,
        user_agent=options.user_agent,
    )


def _skip(item: FeedItem, reason: str) -> ArticleProcessResult:
    return ArticleProcessResult(item=item, skipped=True, skip_reason=reason)


def _failure(item: FeedItem, error: str, phase: str, converted=None) -> ArticleProcessResult:
    return ArticleProcessResult(
        item=item,
        skipped=False,
        converted=converted,
        error=IngestionError(
            error=error, phase=phase, article_title=item.title, article_url=item.url
        ),
    )


def process_article(
    item: FeedItem,
    source: IngestionSource,
    options: IngestionOptions,
    library: ArticleLibrary,
    publication_id: int | None = None,
) -> ArticleProcessResult:
    article_slug = slugify(item.title)
    if library.exists(source.slug, article_slug):
        return _skip(item, SKIP_EXISTS)

    since = parse_datetime(options.since)
    if since is not None and item.published_at < since:
        return _skip(item, f"published before {isoformat_utc(since)}")

    # body markup counts even when the parser classified the item as text
    if contains_media_markup(item.content_html) or (
        options.text_only and item.media_type is not MediaType.TEXT
    ):
        return _skip(item, SKIP_MEDIA)

    try:
        converted = convert_feed_item(item, source)
    except Exception as exc:  # noqa: BLE001
        return _failure(item, str(exc) or exc.__class__.__name__, "convert")

    if source.author:
        converted = replace(converted, metadata=replace(converted.metadata, author=source.author))

    read_time = converted.metadata.estimated_read_time
    if options.min_read_time_minutes and read_time < options.min_read_time_minutes:
        return _skip(
            item, f"{read_time} min read (minimum: {options.min_read_time_minutes} min)"
        )

    if options.dry_run:
        return ArticleProcessResult(item=item, skipped=False, converted=converted)

    stored = library.store(converted)
    if not stored.success:
        return _failure(item, stored.error or "Unknown storage error", "store", converted)

    if options.db is not None and publication_id is not None:
        _mirror_article(options.db, publication_id, item, converted, article_slug, stored.path)

    return ArticleProcessResult(item=item, skipped=False, converted=converted, stored=stored)


def _mirror_article(conn, publication_id, item, converted, article_slug, path) -> None:
    try:
        if catalog.get_article_by_url(conn, item.url) is None:
            catalog.insert_article(conn, publication_id, item, converted, article_slug, path)
    except sqlite3.Error as exc:
        log_event(logger, logging.WARNING, "db_mirror_failed", url=item.url, error=exc)


def _publication_id(conn, source: IngestionSource) -> int | None:
    if conn is None:
        return None
    try:
        return catalog.get_or_create_publication(conn, source)
    except sqlite3.Error as exc:
        log_event(logger, logging.WARNING, "db_mirror_failed", source=source.slug, error=exc)
        return None


def ingest_source(
    source: IngestionSource,
    options: IngestionOptions,
    fetcher: Fetcher | None = None,
    library: ArticleLibrary | None = None,
) -> IngestionResult:
    started = time.monotonic()
    fetcher = fetcher or fetcher_from_options(options)
    library = library or ArticleLibrary(options.library_dir)
    detail_level = logging.INFO if options.verbose else logging.DEBUG

    fetched = fetcher.fetch(source.feed_url)
    if not fetched.success or fetched.feed is None:
        error = IngestionError(error=fetched.error or "Failed to fetch feed", phase="fetch")
        log_event(
            logger,
            logging.ERROR,
            "source_ingested",
            source=source.slug,
            success=False,
            error=error.error,
        )
        return IngestionResult(
            source=source,
            success=False,
            articles_processed=0,
            articles_skipped=0,
            articles_stored=0,
            errors=[error],
            duration=time.monotonic() - started,
        )

    publication_id = _publication_id(options.db, source)
    items = fetched.feed.items
    if options.max_articles_per_pub:
        items = items[: options.max_articles_per_pub]

    errors: list[IngestionError] = []
    processed = skipped = stored = 0
    for item in items:
        processed += 1
        result = process_article(item, source, options, library, publication_id)
        if result.skipped:
            skipped += 1
            log_event(
                logger,
                detail_level,
                "article_skipped",
                source=source.slug,
                title=item.title,
                reason=result.skip_reason,
            )
        elif result.error:
            errors.append(result.error)
            log_event(
                logger,
                logging.WARNING,
                "article_error",
                source=source.slug,
                title=item.title,
                phase=result.error.phase,
                error=result.error.error,
            )
        elif result.stored and result.stored.success:
            stored += 1
            log_event(
                logger, detail_level, "article_stored", source=source.slug, path=result.stored.path
            )
        elif options.dry_run:
            stored += 1
            log_event(logger, detail_level, "article_dry_run", source=source.slug, title=item.title)

    ingestion = IngestionResult(
        source=source,
        success=not errors,
        articles_processed=processed,
        articles_skipped=skipped,
        articles_stored=stored,
        errors=errors,
        duration=time.monotonic() - started,
    )
    log_event(
        logger,
        logging.INFO,
        "source_ingested",
        source=source.slug,
        success=ingestion.success,
        processed=processed,
        skipped=skipped,
        stored=stored,
        errors=len(errors),
        cached=fetched.cached,
    )
    return ingestion


def ingest_batch(
    sources: list[IngestionSource],
    options: IngestionOptions,
    fetcher: Fetcher | None = None,
    library: ArticleLibrary | None = None,
) -> BatchIngestionResult:
    """Ingest sources one after another through a single shared fetcher."""
    started = time.monotonic()
    fetcher = fetcher or fetcher_from_options(options)
    library = library or ArticleLibrary(options.library_dir)
    results = [ingest_source(source, options, fetcher, library) for source in sources]

    batch = BatchIngestionResult(
        total_sources=len(sources),
        successful_sources=sum(1 for result in results if result.success),
        failed_sources=sum(1 for result in results if not result.success),
        total_articles_processed=sum(result.articles_processed for result in results),
        total_articles_skipped=sum(result.articles_skipped for result in results),
        total_articles_stored=sum(result.articles_stored for result in results),
        total_errors=sum(len(result.errors) for result in results),
        results=results,
        duration=time.monotonic() - started,
    )
    log_event(
        logger,
        logging.INFO,
        "batch_ingested",
        sources=batch.total_sources,
        succeeded=batch.successful_sources,
        failed=batch.failed_sources,
        stored=batch.total_articles_stored,
        errors=batch.total_errors,
    )
    return batch
