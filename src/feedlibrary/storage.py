"""Filesystem library of converted articles.

Articles live at ``{root}/{publication_slug}/{article_slug}.md`` where the
article slug is derived from the title. That pair is the dedup key: a later
article with the same title in the same publication overwrites the file.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .converter import generate_markdown_file
from .errors import StorageError
from .models import ConvertedArticle, LibraryStats, StorageResult
from .utils import log_event, slugify

logger = logging.getLogger("feedlibrary.storage")

ARTICLE_SUFFIX = ".md"

_FRONTMATTER_RE = re.compile(r"\A---\n(.*?)\n---", re.DOTALL)
_TOP_LEVEL_RE = re.compile(r"^(\w+):\s*(.*)$")
_NESTED_RE = re.compile(r"^\s+([^:]+?):\s*(.*)$")
_ESCAPE_RE = re.compile(r'\\(["n\\])')
_ESCAPES = {'"': '"', "n": "\n", "\\": "\\"}
_STRING_KEYS = ("title", "author", "publication", "publication_slug", "published_at", "source_url")


class ArticleLibrary:
    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def path(self, publication_slug: str, article_slug: str) -> Path:
        return self.root / publication_slug / f"{article_slug}{ARTICLE_SUFFIX}"

    def exists(self, publication_slug: str, article_slug: str) -> bool:
        return self.path(publication_slug, article_slug).is_file()

    def store(self, article: ConvertedArticle) -> StorageResult:
        metadata = article.metadata
        path = self.path(metadata.publication_slug, slugify(metadata.title))
        try:
            self._write(path, generate_markdown_file(article))
        except StorageError as exc:
            return StorageResult(success=False, error=str(exc))
        return StorageResult(success=True, path=str(path))

    def _write(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"failed to write {path}: {exc}") from exc

    def read(self, publication_slug: str, article_slug: str) -> str | None:
        try:
            return self.path(publication_slug, article_slug).read_text(encoding="utf-8")
        except OSError:
            return None

    def read_metadata(self, publication_slug: str, article_slug: str) -> dict[str, Any] | None:
        content = self.read(publication_slug, article_slug)
        if content is None:
            return None
        return parse_frontmatter(content)

    def list_publications(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(entry.name for entry in self.root.iterdir() if entry.is_dir())

    def list_articles(self, publication_slug: str) -> list[str]:
        directory = self.root / publication_slug
        if not directory.is_dir():
            return []
        return sorted(entry.stem for entry in directory.glob(f"*{ARTICLE_SUFFIX}"))

    def stats(self) -> LibraryStats:
        publications = self.list_publications()
        articles = 0
        total_size = 0
        for publication in publications:
            for article_slug in self.list_articles(publication):
                articles += 1
                try:
                    total_size += self.path(publication, article_slug).stat().st_size
                except OSError:
                    continue
        return LibraryStats(
            publications=len(publications), articles=articles, total_size=total_size
        )


def parse_frontmatter(markdown: str) -> dict[str, Any] | None:
    match = _FRONTMATTER_RE.match(markdown or "")
    if not match:
        return None
    block = match.group(1)
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        log_event(logger, logging.WARNING, "frontmatter_fallback", error=exc.__class__.__name__)
        return _parse_frontmatter_lines(block)
    if not isinstance(data, dict):
        return _parse_frontmatter_lines(block)
    for key in _STRING_KEYS:
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            data[key] = str(value)
    # the slug and tag keys are written as plain scalars, so YAML 1.1 would
    # turn values like yes, null or 0x1f into other types
    raw = _parse_frontmatter_lines(block)
    if "publication_slug" in raw:
        data["publication_slug"] = str(raw["publication_slug"])
    if isinstance(raw.get("tags"), dict):
        data["tags"] = {key: str(value) for key, value in raw["tags"].items()}
    return data


def _unquote(value: str) -> Any:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return _ESCAPE_RE.sub(lambda match: _ESCAPES[match.group(1)], value[1:-1])
    if value.isdigit():
        return int(value)
    return value


def _parse_frontmatter_lines(block: str) -> dict[str, Any]:
    result: dict[str, Any] = {}
    nested: dict[str, Any] | None = None
    for line in block.split("\n"):
        if line.startswith("  ") and nested is not None:
            match = _NESTED_RE.match(line)
            if match:
                nested[match.group(1)] = _unquote(match.group(2))
            continue
        match = _TOP_LEVEL_RE.match(line)
        if not match:
            continue
        key, raw = match.group(1), match.group(2)
        if raw == "":
            nested = {}
            result[key] = nested
            continue
        result[key] = _unquote(raw)
        nested = None
    return result
