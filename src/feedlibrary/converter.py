from __future__ import annotations

import re
from typing import Protocol
from urllib.parse import urlsplit

from bs4 import BeautifulSoup
from markdownify import markdownify

from .models import ArticleMetadata, ConvertedArticle, ExtractedLink, FeedItem, LinkType
from .utils import count_words, estimate_read_time, isoformat_utc

PLATFORM_DOMAIN = "substack.com"

_EMPTY_PARAGRAPH_RE = re.compile(r"<p>\s*</p>", re.IGNORECASE)
_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")
_LINE_BREAK_RE = re.compile(r"\s*\n\s*")
_LANGUAGE_CLASS_RE = re.compile(r"^language-(\w+)")
_POST_SLUG_RE = re.compile(r"([a-z0-9-]+)\.substack\.com/p/([a-z0-9-]+)", re.IGNORECASE)
_SKIPPED_HREF_PREFIXES = ("#", "mailto:", "javascript:")

CTA_CLASSES = ["subscribe-widget", "subscription-widget", "button-wrapper"]
_READING_NOISE_CLASS_RE = re.compile(r"subscri|button-wrapper|share")

FRONTMATTER_DELIMITER = "---"


class Publication(Protocol):
    name: str
    slug: str


def _code_language(pre) -> str | None:
    code = pre.find("code")
    if code is None:
        return None
    for css_class in code.get("class") or []:
        match = _LANGUAGE_CLASS_RE.match(css_class)
        if match:
            return match.group(1)
    return None


def _drop_widgets(soup: BeautifulSoup) -> None:
    for node in soup.find_all(class_=CTA_CLASSES):
        node.decompose()


def _italicize_captions(soup: BeautifulSoup) -> None:
    captions = soup.find_all("figcaption") + soup.find_all("div", class_="image-caption")
    for caption in captions:
        text = caption.get_text(" ", strip=True)
        if not text:
            caption.decompose()
            continue
        paragraph = soup.new_tag("p")
        emphasis = soup.new_tag("em")
        emphasis.string = text
        paragraph.append(emphasis)
        caption.replace_with(paragraph)


def html_to_markdown(html: str) -> str:
    processed = _EMPTY_PARAGRAPH_RE.sub("", html or "")
    processed = _MULTI_NEWLINE_RE.sub("\n\n", processed)
    soup = BeautifulSoup(processed, "html.parser")
    _drop_widgets(soup)
    _italicize_captions(soup)
    markdown = markdownify(
        str(soup),
        heading_style="ATX",
        bullets="-",
        code_language_callback=_code_language,
    )
    return _MULTI_NEWLINE_RE.sub("\n\n", markdown).strip()


def clean_html_for_reading(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for node in soup.find_all("div", class_=_READING_NOISE_CLASS_RE):
        node.decompose()
    for paragraph in soup.find_all("p"):
        if not paragraph.get_text(strip=True) and not paragraph.find(True):
            paragraph.decompose()
    cleaned = _MULTI_NEWLINE_RE.sub("\n\n", str(soup))
    return _LINE_BREAK_RE.sub("\n", cleaned).strip()


def categorize_link(
    link_url: str, source_url: str, platform_domain: str = PLATFORM_DOMAIN
) -> LinkType:
    try:
        link_host = urlsplit(link_url).hostname
        source_host = urlsplit(source_url).hostname
    except ValueError:
        return LinkType.EXTERNAL
    if not link_host or not source_host:
        return LinkType.EXTERNAL
    if link_host == source_host:
        return LinkType.INTERNAL
    if link_host.endswith("." + platform_domain):
        return LinkType.CROSS_PUBLICATION
    return LinkType.EXTERNAL


def extract_links(html: str, source_url: str) -> list[ExtractedLink]:
    links: list[ExtractedLink] = []
    soup = BeautifulSoup(html or "", "html.parser")
    for anchor in soup.find_all("a", href=True):
        url = anchor["href"].strip()
        if not url or url.startswith(_SKIPPED_HREF_PREFIXES):
            continue
        link_type = categorize_link(url, source_url)
        target_slug = None
        if link_type is not LinkType.EXTERNAL:
            match = _POST_SLUG_RE.search(url)
            if match:
                target_slug = f"{match.group(1)}/{match.group(2)}"
        links.append(
            ExtractedLink(
                url=url,
                text=anchor.get_text(strip=True),
                link_type=link_type,
                target_slug=target_slug,
            )
        )
    return links


def escape_yaml_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _quoted(value: str) -> str:
    return f'"{escape_yaml_string(value)}"'


def generate_frontmatter(metadata: ArticleMetadata) -> str:
    lines = [
        FRONTMATTER_DELIMITER,
        f"title: {_quoted(metadata.title)}",
        f"author: {_quoted(metadata.author)}",
        f"publication: {_quoted(metadata.publication)}",
        f"publication_slug: {metadata.publication_slug}",
        f"published_at: {_quoted(metadata.published_at)}",
        f"source_url: {_quoted(metadata.source_url)}",
        f"word_count: {metadata.word_count}",
        f"estimated_read_time: {metadata.estimated_read_time}",
    ]
    if metadata.tags:
        lines.append("tags:")
        for key, value in metadata.tags.items():
            lines.append(f"  {key}: {_quoted(value)}")
    lines.append(FRONTMATTER_DELIMITER)
    return "\n".join(lines)


def generate_markdown_file(article: ConvertedArticle) -> str:
    return f"{generate_frontmatter(article.metadata)}\n\n{article.markdown}"


def convert_feed_item(
    item: FeedItem,
    publication: Publication,
    tags: dict[str, str] | None = None,
) -> ConvertedArticle:
    """Convert one feed item into Markdown plus metadata. Performs no I/O."""
    metadata = ArticleMetadata(
        title=item.title,
        author=item.author,
        publication=publication.name,
        publication_slug=publication.slug,
        published_at=isoformat_utc(item.published_at),
        source_url=item.url,
        word_count=count_words(item.content_html),
        estimated_read_time=estimate_read_time(item.content_html),
        tags=dict(tags) if tags else None,
    )
    return ConvertedArticle(
        metadata=metadata,
        markdown=html_to_markdown(item.content_html),
        html=clean_html_for_reading(item.content_html),
        links=extract_links(item.content_html, item.url),
    )
