from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import ConfigError, load_config, load_sources_file, options_from_config
from .db import connect_db
from .fetcher import Fetcher, feed_url_for
from .ingest import ingest_batch
from .models import BatchIngestionResult, IngestionSource
from .storage import ArticleLibrary
from .utils import configure_logging, count_words, estimate_read_time, json_dumps, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("feedlibrary")


def _resolve_sources(args: argparse.Namespace, logger: logging.Logger) -> list[IngestionSource] | None:
    if args.sources:
        try:
            sources = load_sources_file(args.sources)
        except ConfigError as exc:
            log_event(logger, logging.ERROR, "sources_error", error=str(exc))
            return None
        logger.info("Loaded %d sources from %s", len(sources), args.sources)
        return sources
    if args.feed:
        if not args.name or not args.slug:
            log_event(logger, logging.ERROR, "missing_arguments", hint="--name and --slug are required with --feed")
            return None
        return [IngestionSource(name=args.name, slug=args.slug, feed_url=args.feed, author=args.author)]
    log_event(logger, logging.ERROR, "missing_arguments", hint="either --sources or --feed is required")
    return None


def _log_batch_report(logger: logging.Logger, batch: BatchIngestionResult) -> None:
    logger.info("Ingestion Report")
    logger.info("-" * 60)
    logger.info("Sources: %d (ok=%d, failed=%d)", batch.total_sources, batch.successful_sources, batch.failed_sources)
    logger.info("Articles processed: %d", batch.total_articles_processed)
    logger.info("Articles skipped: %d", batch.total_articles_skipped)
    logger.info("Articles stored: %d", batch.total_articles_stored)
    logger.info("Errors: %d", batch.total_errors)
    logger.info("Duration: %.2fs", batch.duration)
    for result in batch.results:
        status = "SUCCESS" if result.success else "FAILED"
        logger.info(
            "[%s] %s processed=%d skipped=%d stored=%d",
            status,
            result.source.name,
            result.articles_processed,
            result.articles_skipped,
            result.articles_stored,
        )
        for error in result.errors:
            logger.info("  - [%s] %s", error.phase, error.error)
            if error.article_title:
                logger.info("    article: %s", error.article_title)


def _cmd_ingest(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    sources = _resolve_sources(args, logger)
    if sources is None:
        return 1

    state_db = args.state_db or config.library.state_db
    conn = connect_db(state_db) if state_db else None
    try:
        options = options_from_config(
            config,
            library_dir=args.library,
            fetch_delay_seconds=args.delay,
            max_articles_per_pub=args.max,
            since=args.since,
            dry_run=args.dry_run,
            verbose=args.verbose,
            db=conn,
        )
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    fetcher = Fetcher(
        delay_seconds=options.fetch_delay_seconds,
        retries=options.fetch_retries,
        timeout_seconds=options.fetch_timeout_seconds,
        user_agent=options.user_agent,
        cache_ttl_seconds=config.fetch.cache_ttl_seconds,
    )
    try:
        batch = ingest_batch(sources, options, fetcher=fetcher)
    finally:
        if conn is not None:
            conn.close()

    _log_batch_report(logger, batch)
    if args.report:
        Path(args.report).parent.mkdir(parents=True, exist_ok=True)
        Path(args.report).write_text(json_dumps(batch, indent=2), encoding="utf-8")
        log_event(logger, logging.INFO, "report_written", path=args.report)
    return 0 if batch.all_succeeded else 1


def _cmd_fetch(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    url = args.url or feed_url_for(args.publication)
    fetcher = Fetcher(
        delay_seconds=config.fetch.delay_seconds,
        retries=config.fetch.retries,
        timeout_seconds=config.fetch.timeout_seconds,
        user_agent=config.fetch.user_agent,
    )
    result = fetcher.fetch(url)
    if not result.success or result.feed is None:
        log_event(logger, logging.ERROR, "fetch_failed", url=url, error=result.error)
        return 1

    feed = result.feed
    items = [
        {
            "title": item.title,
            "url": item.url,
            "published_at": item.published_at,
            "author": item.author,
            "media_type": item.media_type,
            "word_count": count_words(item.content_html),
            "read_time": estimate_read_time(item.content_html),
        }
        for item in feed.items
    ]
    if args.json:
        payload = {"title": feed.title, "link": feed.link, "feed_url": feed.feed_url, "items": items}
        sys.stdout.write(json_dumps(payload, indent=2) + "\n")
        return 0

    logger.info("Feed: %s", feed.title)
    logger.info("Link: %s", feed.link)
    logger.info("Items: %d", len(items))
    logger.info("-" * 60)
    for item in items:
        logger.info("%s", item["title"])
        logger.info(
            "  %s | %d words | %d min | %s",
            item["published_at"].date().isoformat(),
            item["word_count"],
            item["read_time"],
            item["media_type"].value,
        )
        if args.verbose:
            logger.info("  url: %s", item["url"])
            logger.info("  author: %s", item["author"])
    return 0


def _library_from_args(args: argparse.Namespace, logger: logging.Logger) -> ArticleLibrary | None:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None
    return ArticleLibrary(args.library or config.library.root)


def _cmd_library_stats(args: argparse.Namespace, logger: logging.Logger) -> int:
    library = _library_from_args(args, logger)
    if library is None:
        return 1
    stats = library.stats()
    logger.info("Library: %s", library.root)
    logger.info("Publications: %d", stats.publications)
    logger.info("Articles: %d", stats.articles)
    logger.info("Total size: %d bytes", stats.total_size)
    return 0


def _cmd_library_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    library = _library_from_args(args, logger)
    if library is None:
        return 1
    if not args.publication:
        for publication in library.list_publications():
            logger.info("%s (%d articles)", publication, len(library.list_articles(publication)))
        return 0
    for article_slug in library.list_articles(args.publication):
        metadata = library.read_metadata(args.publication, article_slug) or {}
        logger.info("%s  %s", article_slug, metadata.get("published_at", "n/a"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedlibrary", description="Newsletter feed library")
    parser.add_argument("--config", dest="config", default=None, help="Path to config.yml")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser("ingest", help="Fetch feeds and store new articles")
    ingest_parser.add_argument("-s", "--sources", help="JSON/YAML file with publication sources")
    ingest_parser.add_argument("-f", "--feed", help="Single feed URL to ingest")
    ingest_parser.add_argument("-n", "--name", help="Publication name (required with --feed)")
    ingest_parser.add_argument("--slug", help="Publication slug (required with --feed)")
    ingest_parser.add_argument("-a", "--author", help="Override author name")
    ingest_parser.add_argument("-l", "--library", help="Library directory")
    ingest_parser.add_argument("-d", "--delay", type=float, help="Delay between fetches in seconds")
    ingest_parser.add_argument("-m", "--max", type=int, help="Max articles per publication")
    ingest_parser.add_argument("--since", help="Skip articles published before this date (ISO format)")
    ingest_parser.add_argument("--dry-run", action="store_true", help="Convert without writing files")
    ingest_parser.add_argument("-v", "--verbose", action="store_true", help="Log every article decision")
    ingest_parser.add_argument("--state-db", help="SQLite file that mirrors stored articles")
    ingest_parser.add_argument("--report", help="Write the batch result as JSON to this path")
    ingest_parser.set_defaults(func=_cmd_ingest)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch and summarize a single feed")
    target = fetch_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("-u", "--url", help="Full feed URL")
    target.add_argument("-p", "--publication", help="Substack publication slug")
    fetch_parser.add_argument("-j", "--json", action="store_true", help="Print JSON to stdout")
    fetch_parser.add_argument("-v", "--verbose", action="store_true", help="Show item details")
    fetch_parser.set_defaults(func=_cmd_fetch)

    library_parser = subparsers.add_parser("library", help="Inspect the article library")
    library_parser.add_argument("-l", "--library", help="Library directory")
    library_subparsers = library_parser.add_subparsers(dest="library_command", required=True)

    library_stats = library_subparsers.add_parser("stats", help="Count publications and articles")
    library_stats.set_defaults(func=_cmd_library_stats)

    library_list = library_subparsers.add_parser("list", help="List publications or articles")
    library_list.add_argument("publication", nargs="?", help="Publication slug")
    library_list.set_defaults(func=_cmd_library_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    sys.exit(main())
