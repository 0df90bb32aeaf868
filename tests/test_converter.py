from datetime import datetime, timezone

import pytest

from feedlibrary.converter import (
    categorize_link,
    clean_html_for_reading,
    convert_feed_item,
    escape_yaml_string,
    extract_links,
    generate_frontmatter,
    generate_markdown_file,
    html_to_markdown,
)
from feedlibrary.models import (
    ArticleMetadata,
    ConvertedArticle,
    FeedItem,
    IngestionSource,
    LinkType,
)

SOURCE_URL = "https://a.substack.com/p/source"


def _metadata(**overrides):
    values = {
        "title": "Market Notes",
        "author": "Item Author",
        "publication": "Example Letters",
        "publication_slug": "letters",
        "published_at": "2025-01-01T12:00:00.000Z",
        "source_url": "https://letters.substack.com/p/market-notes",
        "word_count": 420,
        "estimated_read_time": 3,
    }
    values.update(overrides)
    return ArticleMetadata(**values)


def test_markdown_headings_and_inline_formatting():
    markdown = html_to_markdown(
        "<h1>Title</h1><h2>Section</h2><p>Hello <strong>bold</strong> and <em>soft</em> "
        '<a href="https://example.com/page">words</a>.</p>'
    )
    assert markdown.startswith("# Title")
    assert "## Section" in markdown
    assert "**bold**" in markdown
    assert "*soft*" in markdown
    assert "[words](https://example.com/page)" in markdown


def test_markdown_lists_use_hyphen_bullets():
    markdown = html_to_markdown("<ul><li>one</li><li>two</li></ul>")
    assert "- one" in markdown
    assert "- two" in markdown


def test_markdown_code_blocks_keep_language():
    markdown = html_to_markdown('<pre><code class="language-python">print("hi")</code></pre>')
    assert "```python" in markdown
    assert 'print("hi")' in markdown


def test_markdown_drops_empty_paragraphs_and_collapses_blank_lines():
    markdown = html_to_markdown("<p>First</p><p>  </p><p></p>\n\n\n\n<p>Second</p>")
    assert "First" in markdown and "Second" in markdown
    assert "\n\n\n" not in markdown
    assert markdown == markdown.strip()


def test_markdown_removes_subscribe_widgets():
    markdown = html_to_markdown(
        '<p>Body text</p><div class="subscribe-widget"><p>Subscribe now</p></div>'
        '<p class="button-wrapper"><a href="https://x">Share</a></p>'
    )
    assert "Body text" in markdown
    assert "Subscribe now" not in markdown
    assert "Share" not in markdown


def test_markdown_italicizes_captions():
    markdown = html_to_markdown(
        '<figure><img src="https://cdn.example.com/a.png" alt=""/>'
        "<figcaption>A harbor at dawn</figcaption></figure>"
        '<div class="image-caption">Second caption</div>'
    )
    assert "*A harbor at dawn*" in markdown
    assert "*Second caption*" in markdown


def test_markdown_drops_empty_captions():
    markdown = html_to_markdown(
        '<figure><img src="https://cdn.example.com/a.png" alt=""/><figcaption> </figcaption></figure>'
    )
    assert "*" not in markdown


def test_clean_html_for_reading_removes_noise():
    cleaned = clean_html_for_reading(
        '<div class="subscription-widget-wrap">Subscribe</div><p></p><p>Body</p>'
        '<div class="share-dialog">Share this</div>'
    )
    assert cleaned == "<p>Body</p>"


def test_categorize_link():
    assert categorize_link("https://a.substack.com/p/x", SOURCE_URL) is LinkType.INTERNAL
    assert categorize_link("https://b.substack.com/p/y", SOURCE_URL) is LinkType.CROSS_PUBLICATION
    assert categorize_link("https://example.com/z", SOURCE_URL) is LinkType.EXTERNAL
    assert categorize_link("/relative/path", SOURCE_URL) is LinkType.EXTERNAL
    assert categorize_link("http://[invalid", SOURCE_URL) is LinkType.EXTERNAL


def test_extract_links_skips_fragments_and_pseudo_schemes():
    html = (
        '<p><a href="https://a.substack.com/p/x">internal</a> '
        '<a href="https://b.substack.com/p/y">cross</a> '
        '<a href="https://example.com/z">external</a> '
        '<a href="mailto:me@example.com">mail</a> '
        '<a href="#footnote-1">1</a> '
        '<a href="javascript:void(0)">js</a> '
        '<a href="">empty</a></p>'
    )
    links = extract_links(html, SOURCE_URL)

    assert [(link.url, link.text, link.link_type, link.target_slug) for link in links] == [
        ("https://a.substack.com/p/x", "internal", LinkType.INTERNAL, "a/x"),
        ("https://b.substack.com/p/y", "cross", LinkType.CROSS_PUBLICATION, "b/y"),
        ("https://example.com/z", "external", LinkType.EXTERNAL, None),
    ]


def test_escape_yaml_string():
    assert escape_yaml_string('He said "hi"') == 'He said \\"hi\\"'
    assert escape_yaml_string("a\\b") == "a\\\\b"
    assert escape_yaml_string("line\nbreak") == "line\\nbreak"


def test_generate_frontmatter_layout():
    frontmatter = generate_frontmatter(_metadata(title='He said "hi"'))
    assert frontmatter.split("\n") == [
        "---",
        'title: "He said \\"hi\\""',
        'author: "Item Author"',
        'publication: "Example Letters"',
        "publication_slug: letters",
        'published_at: "2025-01-01T12:00:00.000Z"',
        'source_url: "https://letters.substack.com/p/market-notes"',
        "word_count: 420",
        "estimated_read_time: 3",
        "---",
    ]


def test_generate_frontmatter_renders_tags():
    frontmatter = generate_frontmatter(_metadata(tags={"topic": "markets", "tone": 'dry "wit"'}))
    lines = frontmatter.split("\n")
    assert lines[-4:] == [
        "tags:",
        '  topic: "markets"',
        '  tone: "dry \\"wit\\""',
        "---",
    ]


def test_generate_markdown_file_joins_frontmatter_and_body():
    article = ConvertedArticle(metadata=_metadata(), markdown="Body", html="<p>Body</p>", links=[])
    content = generate_markdown_file(article)
    assert content.endswith("---\n\nBody")
    assert content.startswith("---\ntitle: ")


def test_convert_feed_item():
    item = FeedItem(
        title="Market Notes",
        url="https://letters.substack.com/p/market-notes",
        published_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        author="Item Author",
        content_html='<p>One two <a href="https://letters.substack.com/p/older">three</a></p>',
    )
    source = IngestionSource(name="Example Letters", slug="letters", feed_url="https://x/feed")

    article = convert_feed_item(item, source, tags={"topic": "markets"})

    assert article.metadata == ArticleMetadata(
        title="Market Notes",
        author="Item Author",
        publication="Example Letters",
        publication_slug="letters",
        published_at="2025-01-01T00:00:00.000Z",
        source_url="https://letters.substack.com/p/market-notes",
        word_count=3,
        estimated_read_time=1,
        tags={"topic": "markets"},
    )
    assert "[three](https://letters.substack.com/p/older)" in article.markdown
    assert article.links[0].link_type is LinkType.INTERNAL
    assert article.links[0].target_slug == "letters/older"


@pytest.mark.parametrize("html", ["", "<p></p>"])
def test_convert_empty_body(html):
    item = FeedItem(
        title="Empty",
        url="https://letters.substack.com/p/empty",
        published_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        author="Item Author",
        content_html=html,
    )
    source = IngestionSource(name="Example Letters", slug="letters", feed_url="https://x/feed")
    article = convert_feed_item(item, source)
    assert article.markdown == ""
    assert article.metadata.word_count == 0
    assert article.links == []
