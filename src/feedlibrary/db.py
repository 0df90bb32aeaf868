from __future__ import annotations

import json
import logging
import os
import sqlite3
from typing import Any, Callable

from .models import ConvertedArticle, FeedItem, IngestionSource
from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]

logger = logging.getLogger("feedlibrary.db")


def connect_db(path: str) -> sqlite3.Connection:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path)
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA busy_timeout=5000")
    apply_migrations(conn)
    return conn


def apply_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS publications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            base_url TEXT NULL,
            feed_url TEXT NOT NULL,
            author_name TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            publication_id INTEGER NOT NULL REFERENCES publications(id),
            title TEXT NOT NULL,
            slug TEXT NOT NULL,
            original_url TEXT NOT NULL UNIQUE,
            content_path TEXT NULL,
            author_name TEXT NULL,
            published_at TEXT NULL,
            word_count INTEGER NOT NULL DEFAULT 0,
            estimated_read_time_minutes INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """
    )


def _migration_media_type(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE articles ADD COLUMN media_type TEXT NOT NULL DEFAULT 'text'")
    conn.execute("ALTER TABLE articles ADD COLUMN tags_json TEXT NULL")


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_media_type_and_tags", _migration_media_type),
    ]


def get_or_create_publication(conn: sqlite3.Connection, source: IngestionSource) -> int:
    row = conn.execute("SELECT id FROM publications WHERE slug = ?", (source.slug,)).fetchone()
    if row:
        return int(row[0])
    base_url = source.feed_url[: -len("/feed")] if source.feed_url.endswith("/feed") else None
    cursor = conn.execute(
        """
        INSERT INTO publications (name, slug, base_url, feed_url, author_name, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (source.name, source.slug, base_url, source.feed_url, source.author, utc_now_iso()),
    )
    conn.commit()
    return int(cursor.lastrowid)


def get_article_by_url(conn: sqlite3.Connection, url: str) -> dict[str, Any] | None:
    cursor = conn.execute(
        """
        SELECT id, publication_id, title, slug, original_url, content_path, author_name,
               published_at, word_count, estimated_read_time_minutes, media_type, tags_json
        FROM articles
        WHERE original_url = ?
        """,
        (url,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    columns = [description[0] for description in cursor.description]
    record = dict(zip(columns, row))
    record["tags"] = json.loads(record.pop("tags_json") or "null")
    return record


def insert_article(
    conn: sqlite3.Connection,
    publication_id: int,
    item: FeedItem,
    article: ConvertedArticle,
    slug: str,
    content_path: str | None,
) -> int:
    metadata = article.metadata
    cursor = conn.execute(
        """
        INSERT INTO articles
            (publication_id, title, slug, original_url, content_path, author_name,
             published_at, word_count, estimated_read_time_minutes, media_type, tags_json,
             created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            publication_id,
            metadata.title,
            slug,
            item.url,
            content_path,
            metadata.author,
            metadata.published_at,
            metadata.word_count,
            metadata.estimated_read_time,
            item.media_type.value,
            json.dumps(metadata.tags) if metadata.tags else None,
            utc_now_iso(),
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def count_articles(conn: sqlite3.Connection, publication_id: int | None = None) -> int:
    if publication_id is None:
        row = conn.execute("SELECT COUNT(*) FROM articles").fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) FROM articles WHERE publication_id = ?", (publication_id,)
        ).fetchone()
    return int(row[0])
