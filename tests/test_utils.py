import json
import time
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from feedlibrary.models import LinkType, MediaType, StorageResult
from feedlibrary.utils import (
    count_words,
    estimate_read_time,
    extract_text_content,
    isoformat_utc,
    json_dumps,
    parse_datetime,
    slugify,
)


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Hello World!", "hello-world"),
        ("  Multiple   Spaces -- and---dashes ", "multiple-spaces-and-dashes"),
        ("Q3 2025: What's Next?", "q3-2025-whats-next"),
        ("Café & Crème", "caf-crme"),
        ("!!!", "untitled"),
        ("", "untitled"),
    ],
)
def test_slugify(title, expected):
    assert slugify(title) == expected


def test_slugify_truncates_without_trailing_hyphen():
    slug = slugify("word " * 60)
    assert len(slug) <= 100
    assert not slug.endswith("-")
    assert slugify(slug) == slug


def test_slugify_is_idempotent():
    for title in ["Hello World!", "A -- B", "Weekly Podcast Recap #12", "x" * 150]:
        slug = slugify(title)
        assert slugify(slug) == slug


def test_extract_text_content_strips_tags_and_entities():
    assert extract_text_content("<p>Fish &amp; chips</p>\n<p>  and   more</p>") == "Fish & chips and more"


def test_count_words_and_read_time():
    assert count_words("<p>Hello <b>big</b> world</p>") == 3
    assert count_words("") == 0
    assert estimate_read_time("<p>" + "word " * 200 + "</p>") == 1
    assert estimate_read_time("<p>" + "word " * 201 + "</p>") == 2
    assert estimate_read_time("") == 0


def test_parse_datetime_variants():
    expected = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_datetime("Wed, 01 Jan 2025 12:00:00 GMT") == expected
    assert parse_datetime("2025-01-01T12:00:00Z") == expected
    assert parse_datetime("2025-01-01T14:00:00+02:00") == expected
    assert parse_datetime(datetime(2025, 1, 1, 12, 0)) == expected
    assert parse_datetime(time.strptime("2025-01-01 12:00:00", "%Y-%m-%d %H:%M:%S")) == expected
    assert parse_datetime(date(2025, 1, 1)) == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert parse_datetime("2025-01-01") == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert parse_datetime("not a date") is None
    assert parse_datetime("") is None
    assert parse_datetime(None) is None


def test_isoformat_utc_uses_milliseconds_and_z():
    assert isoformat_utc(datetime(2025, 1, 1, tzinfo=timezone.utc)) == "2025-01-01T00:00:00.000Z"
    shifted = datetime(2025, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
    assert isoformat_utc(shifted) == "2025-01-01T00:00:00.000Z"


def test_json_dumps_handles_models():
    payload = {
        "result": StorageResult(success=True, path="/tmp/library/a.md"),
        "media": MediaType.AUDIO,
        "link": LinkType.CROSS_PUBLICATION,
        "when": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "day": date(2025, 1, 2),
        "path": Path("/tmp/library"),
        "pair": ("x", "y"),
    }
    decoded = json.loads(json_dumps(payload))
    assert decoded["result"] == {"success": True, "path": "/tmp/library/a.md", "error": None}
    assert decoded["media"] == "audio"
    assert decoded["link"] == "cross-publication"
    assert decoded["when"].startswith("2025-01-01T00:00:00")
    assert decoded["day"] == "2025-01-02"
    assert decoded["path"] == "/tmp/library"
    assert decoded["pair"] == ["x", "y"]
