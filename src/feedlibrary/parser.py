"""RSS 2.0 and Atom parsing into the canonical Feed / FeedItem model.

feedparser does the XML work; this module decides which of its fields win,
normalizes text nodes, and classifies each item's media type.
"""

from __future__ import annotations

import io
import logging
import re
from datetime import datetime
from typing import Any, Iterable, Mapping, Union

import feedparser

from .errors import FormatError
from .models import Feed, FeedItem, MediaType
from .utils import log_event, parse_datetime, utc_now

logger = logging.getLogger("feedlibrary.parser")

# A feed field arrives either as plain text or as a node carrying its text
# alongside attributes (feedparser's *_detail dicts, {"#text": ...} wrappers).
TextOrNode = Union[str, Mapping[str, Any], None]

# feedparser reports RSS 0.90 and 1.0 for rdf:RDF documents; only <rss> roots count.
_RDF_VERSIONS = {"rss090", "rss10"}

_MEDIA_CATEGORY_WORDS = (
    ("podcast", MediaType.AUDIO),
    ("audio", MediaType.AUDIO),
    ("video", MediaType.VIDEO),
)
_VIDEO_TAG_RE = re.compile(r"<video\b", re.IGNORECASE)
_AUDIO_TAG_RE = re.compile(r"<audio\b", re.IGNORECASE)
_SPOKEN_MARKER_RE = re.compile(r"\btranscript\b|listen to this episode", re.IGNORECASE)


def text_of(value: TextOrNode) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for key in ("value", "#text", "text"):
            inner = value.get(key)
            if isinstance(inner, str):
                return inner
        return None
    return str(value)


def parse_feed(raw: bytes | str, feed_url: str, fetched_at: datetime | None = None) -> Feed:
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    parsed = feedparser.parse(io.BytesIO(raw), sanitize_html=False)
    version = parsed.get("version") or ""
    is_atom = version.startswith("atom")
    is_rss = version.startswith("rss") and version not in _RDF_VERSIONS
    if not (is_atom or is_rss):
        raise FormatError("Unknown feed format: expected RSS or Atom")

    if parsed.get("bozo"):
        log_event(
            logger,
            logging.WARNING,
            "feed_parse_warning",
            feed_url=feed_url,
            error=parsed.get("bozo_exception"),
        )

    fetched_at = fetched_at or utc_now()
    channel = parsed.get("feed") or {}
    feed_title = (text_of(channel.get("title")) or "").strip()
    feed_author = (text_of(channel.get("author")) or "").strip() or None

    items = [
        _parse_entry(entry, feed_title, feed_author, fetched_at)
        for entry in parsed.get("entries") or []
    ]

    links = channel.get("links") or []
    self_link = _select_link(links, "self")

    return Feed(
        title=feed_title,
        description=text_of(channel.get("subtitle")) or None,
        link=_select_link(links, "alternate") or channel.get("link") or "",
        feed_url=self_link or feed_url,
        author=feed_author,
        last_build_date=parse_datetime(channel.get("updated_parsed") or channel.get("updated")),
        items=items,
    )


def _parse_entry(
    entry: Mapping[str, Any],
    feed_title: str,
    feed_author: str | None,
    fetched_at: datetime,
) -> FeedItem:
    content = _first_content(entry)
    summary = text_of(entry.get("summary"))
    if content is not None:
        content_html = content
        # feedparser copies the body into summary when no separate one exists
        summary = summary if summary and summary != content else None
    else:
        content_html = summary or ""
        summary = None

    author = (text_of(entry.get("author")) or "").strip() or feed_author or feed_title
    published_at = (
        parse_datetime(entry.get("published_parsed") or entry.get("published"))
        or parse_datetime(entry.get("updated_parsed") or entry.get("updated"))
        or fetched_at
    )
    url = _select_link(entry.get("links") or [], "alternate") or entry.get("link") or ""
    guid = (text_of(entry.get("id")) or "").strip() or None

    return FeedItem(
        title=(text_of(entry.get("title")) or "").strip(),
        url=url,
        published_at=published_at,
        author=author,
        content_html=content_html,
        media_type=detect_media_type(entry, content_html),
        summary=summary,
        image_url=_lead_image(entry),
        guid=guid,
    )


def _first_content(entry: Mapping[str, Any]) -> str | None:
    for node in entry.get("content") or []:
        value = text_of(node)
        if value is not None:
            return value
    return None


def _select_link(links: Iterable[Mapping[str, Any]], rel: str) -> str | None:
    for link in links:
        link_rel = link.get("rel")
        matches = link_rel == rel or (rel == "alternate" and not link_rel)
        if matches and link.get("href"):
            return link["href"]
    return None


def _media_from_mime(mime: str | None) -> MediaType | None:
    mime = (mime or "").lower()
    if mime.startswith("audio/"):
        return MediaType.AUDIO
    if mime.startswith("video/"):
        return MediaType.VIDEO
    return None


def detect_media_type(entry: Mapping[str, Any], html: str) -> MediaType:
    """Classify an entry, strongest signal first.

    Enclosure MIME, then Media-RSS MIME, then Media-RSS ``medium``, then
    item categories, and only then a scan of the body HTML.
    """
    for enclosure in entry.get("enclosures") or []:
        media = _media_from_mime(enclosure.get("type"))
        if media:
            return media

    media_content = entry.get("media_content") or []
    for node in media_content:
        media = _media_from_mime(node.get("type"))
        if media:
            return media
    for node in media_content:
        medium = (node.get("medium") or "").lower()
        if medium in (MediaType.AUDIO.value, MediaType.VIDEO.value):
            return MediaType(medium)

    for tag in entry.get("tags") or []:
        term = (tag.get("term") or tag.get("label") or "").lower()
        for word, media in _MEDIA_CATEGORY_WORDS:
            if word in term:
                return media

    html = html or ""
    if _VIDEO_TAG_RE.search(html):
        return MediaType.VIDEO
    if _AUDIO_TAG_RE.search(html) or _SPOKEN_MARKER_RE.search(html):
        return MediaType.AUDIO
    return MediaType.TEXT


def _lead_image(entry: Mapping[str, Any]) -> str | None:
    for enclosure in entry.get("enclosures") or []:
        if enclosure.get("href") and _media_from_mime(enclosure.get("type")) is None:
            return enclosure["href"]
    for node in entry.get("media_content") or []:
        medium = (node.get("medium") or "").lower()
        if medium in ("audio", "video") or _media_from_mime(node.get("type")):
            continue
        if node.get("url"):
            return node["url"]
    for node in entry.get("media_thumbnail") or []:
        if node.get("url"):
            return node["url"]
    return None
