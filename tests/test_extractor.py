"""Tests for mdcrawl.extractor module."""

from __future__ import annotations

from mdcrawl.extractor import (
    BODY_SELECTOR,
    extract_content,
    sanitize_text,
    title_from_url,
)

BASE = "https://example.com/guide/intro"
LONG_TEXT = "This paragraph carries the actual article content for the reader. " * 3


class TestSelectorFallthrough:
    def test_short_main_falls_through_to_article(self):
        html = (
            "<html><body>"
            "<main><p>Only twenty chars!!</p></main>"
            f"<article><p>{LONG_TEXT}</p></article>"
            "</body></html>"
        )
        content = extract_content(html, BASE)
        assert content.selector == "article"
        assert "actual article content" in content.body_text
        assert "twenty chars" not in content.body_text
        assert content.degraded is False

    def test_main_wins_when_long_enough(self):
        html = f"<main><p>{LONG_TEXT}</p></main><article><p>{LONG_TEXT}</p></article>"
        assert extract_content(html, BASE).selector == "main"

    def test_later_matches_of_same_selector_are_checked(self):
        html = (
            "<div class='content'>tiny</div>"
            f"<div class='content'><p>{LONG_TEXT}</p></div>"
        )
        content = extract_content(html, BASE)
        assert content.selector == ".content"
        assert content.body_text.startswith("This paragraph")

    def test_threshold_is_configurable(self):
        html = "<main><p>Only twenty chars!!</p></main>"
        content = extract_content(html, BASE, min_content_length=5)
        assert content.selector == "main"

    def test_body_fallback_is_degraded(self):
        html = "<html><body><p>Short body text only.</p></body></html>"
        content = extract_content(html, BASE)
        assert content.selector == BODY_SELECTOR
        assert content.fell_back is True
        assert content.degraded is True
        assert content.body_text == "Short body text only."


class TestCleaning:
    def test_strips_scripts_and_styles(self):
        html = (
            "<main>"
            "<script>var secret = 1;</script><style>p{}</style>"
            "<noscript>enable js</noscript>"
            f"<p>{LONG_TEXT}</p></main>"
        )
        content = extract_content(html, BASE)
        assert "secret" not in content.body_text
        assert "enable js" not in content.body_text
        assert "<script" not in content.content_html

    def test_sanitize_text(self):
        raw = "  one\t  two \r\n\r\n\r\n\r\nthree  \n\n\n"
        assert sanitize_text(raw) == "one two\n\nthree"

    def test_empty_page_sets_marker(self):
        content = extract_content("<html><body>   </body></html>", BASE)
        assert content.empty is True
        assert content.body_text == ""

    def test_malformed_html_does_not_raise(self):
        content = extract_content("<div><p>unclosed <b>tags <main>", BASE)
        assert isinstance(content.body_text, str)

    def test_none_html(self):
        content = extract_content(None, BASE)
        assert content.empty is True


class TestMetadata:
    def test_og_title_preferred(self):
        html = (
            "<head><title>Doc Title</title>"
            '<meta property="og:title" content="OG Title">'
            '<meta name="description" content="About things">'
            '<meta name="author" content="Ada">'
            '<meta property="article:published_time" content="2024-03-01">'
            '<meta property="og:site_name" content="Example Docs">'
            '<link rel="canonical" href="/guide/intro">'
            "</head><body><h1>Heading</h1></body>"
        )
        content = extract_content(html, BASE)
        assert content.title == "OG Title"
        assert content.description == "About things"
        assert content.author == "Ada"
        assert content.published == "2024-03-01"
        assert content.site_name == "Example Docs"
        assert content.canonical_url == "https://example.com/guide/intro"
        assert list(content.metadata()) == [
            "description",
            "author",
            "published",
            "site_name",
            "canonical_url",
        ]

    def test_title_then_h1(self):
        assert extract_content("<title> Page </title>", BASE).title == "Page"
        assert extract_content("<h1>Heading</h1>", BASE).title == "Heading"

    def test_title_from_url(self):
        assert extract_content("<p>x</p>", "https://example.com/getting-started.html").title == (
            "Getting started"
        )
        assert title_from_url("https://example.com/") == "example.com"


class TestImagesAndLinks:
    def test_images_resolved_and_deduplicated(self):
        html = (
            f"<main><p>{LONG_TEXT}</p>"
            '<img src="/img/a.png" alt="First">'
            '<img data-src="img/b.png">'
            '<img src="/img/a.png" alt="Again">'
            '<img src="data:image/png;base64,AAAA">'
            "</main>"
            '<footer><img src="/img/outside.png"></footer>'
        )
        content = extract_content(html, BASE)
        assert [img.url for img in content.images] == [
            "https://example.com/img/a.png",
            "https://example.com/guide/img/b.png",
        ]
        assert content.images[0].alt == "First"

    def test_links_same_host_only(self):
        html = (
            '<a href="/docs">Docs</a>'
            '<a href="/docs#part">Docs again</a>'
            '<a href="https://other.org/x">Other</a>'
            '<a href="javascript:alert(1)">JS</a>'
            '<a href="mailto:a@example.com">Mail</a>'
            '<a href="https://example.com/about">About</a>'
        )
        content = extract_content(html, BASE)
        assert content.links == [
            "https://example.com/docs",
            "https://example.com/about",
        ]

    def test_allowed_hosts(self):
        html = '<a href="https://partner.org/x">Partner</a>'
        content = extract_content(html, BASE, allowed_hosts=["partner.org"])
        assert content.links == ["https://partner.org/x"]

    def test_subdomain_links(self):
        html = '<a href="https://blog.example.com/post">Blog</a>'
        assert extract_content(html, BASE).links == []
        content = extract_content(html, BASE, include_subdomains=True)
        assert content.links == ["https://blog.example.com/post"]

    def test_malformed_urls_dropped(self):
        html = (
            '<head><link rel="canonical" href="http://[oops/"></head>'
            f"<main><p>{LONG_TEXT}</p>"
            '<a href="http://[oops/x">Broken</a><a href="/ok">Ok</a>'
            '<img src="http://[oops/x.png"><img src="/img/ok.png">'
            "</main>"
        )
        content = extract_content(html, BASE)
        assert content.links == ["https://example.com/ok"]
        assert [img.url for img in content.images] == ["https://example.com/img/ok.png"]
        assert content.canonical_url is None
        assert "Broken" in content.body_text


class TestDeterminism:
    def test_same_input_same_output(self):
        html = (
            "<head><title>T</title></head>"
            f"<main><p>{LONG_TEXT}</p><img src='/a.png'><a href='/b'>b</a></main>"
        )
        first = extract_content(html, BASE)
        second = extract_content(html, BASE)
        assert first == second
