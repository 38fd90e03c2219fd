"""Main-content extraction from rendered HTML.

Selectors from :data:`~mdcrawl.config.CONTENT_SELECTORS` are tried in order;
the first element whose cleaned text is longer than ``min_content_length``
wins, otherwise the whole ``<body>`` is used.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag

from .config import CONTENT_SELECTORS
from .document import ImageRef
from .urls import is_http_url, is_in_scope, join_url, resolve_link

LOGGER = logging.getLogger(__name__)

STRIP_TAGS = ("script", "style", "noscript", "template")
BODY_SELECTOR = "body"

_INLINE_WS = re.compile(r"[ \t\f\v\u00a0]+")
_LINE_BREAKS = re.compile(r"\r\n?")
_BLANK_LINES = re.compile(r"\n{3,}")


@dataclass(frozen=True, slots=True)
class ExtractedContent:
    """What the extractor found on one page."""

    title: str
    selector: str
    body_text: str
    content_html: str
    description: Optional[str] = None
    author: Optional[str] = None
    published: Optional[str] = None
    site_name: Optional[str] = None
    canonical_url: Optional[str] = None
    images: List[ImageRef] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    fell_back: bool = False
    empty: bool = False

    @property
    def degraded(self) -> bool:
        return self.fell_back or self.empty

    def metadata(self) -> dict:
        """Non-empty metadata fields, in frontmatter order."""
        values = (
            ("description", self.description),
            ("author", self.author),
            ("published", self.published),
            ("site_name", self.site_name),
            ("canonical_url", self.canonical_url),
        )
        return {key: value for key, value in values if value}


def sanitize_text(text: str) -> str:
    """Collapse whitespace, normalise line breaks and drop empty paragraphs."""
    text = _LINE_BREAKS.sub("\n", text or "")
    lines = [_INLINE_WS.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def _element_text(element: Tag) -> str:
    return sanitize_text(element.get_text("\n"))


def _meta(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"property": name})
        if tag is None:
            tag = soup.find("meta", attrs={"name": name})
        if tag is not None:
            content = sanitize_text(str(tag.get("content") or ""))
            if content:
                return content
    return None


def title_from_url(url: str) -> str:
    """Readable fallback title built from the last path segment or the host."""
    parsed = urlparse(url)
    segments = [seg for seg in parsed.path.split("/") if seg]
    if segments:
        name = unquote(segments[-1])
        name = re.sub(r"\.[A-Za-z0-9]{1,5}$", "", name)
        name = re.sub(r"[-_]+", " ", name).strip()
        if name:
            return name[:1].upper() + name[1:]
    return parsed.netloc or "Untitled"


def _extract_title(soup: BeautifulSoup, base_url: str) -> str:
    title = _meta(soup, "og:title", "twitter:title")
    if title:
        return title
    if soup.title is not None:
        text = sanitize_text(soup.title.get_text(" "))
        if text:
            return text
    h1 = soup.find("h1")
    if h1 is not None:
        text = sanitize_text(h1.get_text(" "))
        if text:
            return text
    return title_from_url(base_url)


def _canonical(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "canonical" in [value.lower() for value in rel]:
            resolved = join_url(base_url, str(link["href"]).strip())
            return resolved if resolved and is_http_url(resolved) else None
    return _meta(soup, "og:url")


def select_main_content(
    soup: BeautifulSoup,
    min_content_length: int = 100,
    selectors: Sequence[str] = CONTENT_SELECTORS,
) -> Tuple[Optional[Tag], str, str]:
    """Return ``(element, selector, text)`` of the first qualifying element.

    Falls back to ``<body>`` (or the document) when nothing passes the
    length threshold.
    """
    for selector in selectors:
        try:
            candidates = soup.select(selector)
        except Exception as exc:
            LOGGER.debug("Skipping selector %s: %s", selector, exc)
            continue
        for element in candidates:
            text = _element_text(element)
            if len(text) > min_content_length:
                return element, selector, text

    body = soup.body if soup.body is not None else soup
    return body, BODY_SELECTOR, _element_text(body)


def _image_source(img: Tag) -> str:
    for attr in ("src", "data-src", "data-lazy-src", "data-original"):
        value = str(img.get(attr) or "").strip()
        if value and not value.lower().startswith("data:"):
            return value
    return ""


def extract_images(element: Tag, base_url: str) -> List[ImageRef]:
    """Images inside ``element`` with resolved, de-duplicated URLs."""
    images: List[ImageRef] = []
    seen = set()
    for img in element.find_all("img"):
        src = _image_source(img)
        if not src:
            continue
        resolved = join_url(base_url, src)
        if resolved is None or not is_http_url(resolved) or resolved in seen:
            continue
        seen.add(resolved)
        images.append(ImageRef(url=resolved, alt=sanitize_text(str(img.get("alt") or ""))))
    return images


def extract_links(
    soup: BeautifulSoup,
    base_url: str,
    allowed_hosts: Optional[Iterable[str]] = None,
    include_subdomains: bool = False,
) -> List[str]:
    """Outbound ``<a href>`` targets on the same host or an allowed host."""
    allowed = tuple(allowed_hosts or ())
    links: List[str] = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        resolved = resolve_link(str(anchor["href"]), base_url)
        if resolved is None or resolved in seen:
            continue
        if not is_in_scope(
            resolved,
            base_url,
            include_subdomains=include_subdomains,
            allowed_domains=allowed,
        ):
            continue
        seen.add(resolved)
        links.append(resolved)
    return links


def extract_content(
    html: str,
    base_url: str,
    *,
    min_content_length: int = 100,
    allowed_hosts: Optional[Iterable[str]] = None,
    include_subdomains: bool = False,
) -> ExtractedContent:
    """Extract title, metadata, main content, images and links from ``html``.

    Never raises on malformed markup. ``empty`` is set when no text at all
    could be found.
    """
    try:
        soup = BeautifulSoup(html or "", "html.parser")
    except Exception as exc:
        LOGGER.warning("Could not parse HTML from %s: %s", base_url, exc)
        soup = BeautifulSoup("", "html.parser")

    title = _extract_title(soup, base_url)
    description = _meta(soup, "description", "og:description", "twitter:description")
    author = _meta(soup, "author", "article:author")
    published = _meta(soup, "article:published_time", "date", "pubdate")
    site_name = _meta(soup, "og:site_name", "application-name")
    canonical = _canonical(soup, base_url)
    links = extract_links(soup, base_url, allowed_hosts, include_subdomains)

    for tag in soup(list(STRIP_TAGS)):
        tag.decompose()

    element, selector, text = select_main_content(soup, min_content_length)
    images = extract_images(element, base_url) if element is not None else []
    content_html = element.decode_contents() if element is not None else ""

    return ExtractedContent(
        title=title,
        selector=selector,
        body_text=text,
        content_html=content_html,
        description=description,
        author=author,
        published=published,
        site_name=site_name,
        canonical_url=canonical,
        images=images,
        links=links,
        fell_back=selector == BODY_SELECTOR,
        empty=not text,
    )
