"""HTML-to-Markdown conversion and page document assembly."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from bs4 import BeautifulSoup
from crawl4ai.markdown_generation_strategy import DefaultMarkdownGenerator

from .urls import join_url, resolve_link

NO_CONTENT_NOTE = "_No content could be extracted from this page._"

_FRONTMATTER_SAFE = re.compile(r"^[A-Za-z0-9 _./:,()+-]+$")
# Plain scalars a YAML loader would read back as numbers, booleans or null.
_YAML_TYPED = re.compile(
    r"^(?:[-+]?(?:\d[\d_]*\.?[\d_]*|\.\d[\d_]*)(?:[eE][-+]?\d+)?"
    r"|[-+]?\d[\d_]*(?::[0-5]?\d)+(?:\.[\d_]*)?|0x[0-9a-f_]+|0o?[0-7_]+"
    r"|\d{4}-\d\d?-\d\d?(?:[Tt ].*)?|[-+]?\.inf|\.nan"
    r"|true|false|yes|no|on|off|y|n|null|~)$",
    re.IGNORECASE,
)
_IMAGE_SRC_ATTRS = ("data-src", "data-lazy-src", "data-original", "srcset", "sizes")


def build_markdown_generator() -> DefaultMarkdownGenerator:
    """Markdown generator that keeps images and does not hard-wrap lines."""
    return DefaultMarkdownGenerator(
        options={
            "citations": False,
            "body_width": 0,
            "ignore_images": False,
            "ignore_links": False,
            "escape_html": False,
        },
    )


def html_to_markdown(
    html: str, generator: Optional[DefaultMarkdownGenerator] = None
) -> str:
    """Convert already-localised HTML into Markdown.

    ``base_url`` is left empty so relative ``assets/`` paths stay relative;
    links are made absolute beforehand by :func:`localize_content`.
    """
    if not (html or "").strip():
        return ""
    generator = generator or build_markdown_generator()
    generated = generator.generate_markdown(
        html,
        base_url="",
        options=generator.options,
        citations=False,
    )
    return (getattr(generated, "raw_markdown", "") or "").strip()


def localize_content(
    html: str,
    base_url: str,
    image_map: Optional[Mapping[str, str]] = None,
    *,
    keep_images: bool = True,
) -> str:
    """Make links absolute and point downloaded images at their local copy.

    Images without a local copy keep their absolute remote URL. With
    ``keep_images=False`` every image is dropped.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    image_map = image_map or {}

    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"])
        if join_url(base_url, href) is None:
            del anchor["href"]
            continue
        resolved = resolve_link(href, base_url)
        if resolved is not None:
            anchor["href"] = resolved

    for img in soup.find_all("img"):
        src = ""
        for attr in ("src", "data-src", "data-lazy-src", "data-original"):
            value = str(img.get(attr) or "").strip()
            if value and not value.lower().startswith("data:"):
                src = value
                break
        if not src or not keep_images:
            img.decompose()
            continue
        absolute = join_url(base_url, src)
        if absolute is None:
            img.decompose()
            continue
        img["src"] = image_map.get(absolute, absolute)
        for attr in _IMAGE_SRC_ATTRS:
            if attr in img.attrs:
                del img[attr]

    return str(soup)


# ---------------------------------------------------------------------------
# Duplicate sections
# ---------------------------------------------------------------------------


def _normalize_section(section: str) -> str:
    lines = [line.rstrip() for line in section.replace("\r\n", "\n").split("\n")]
    return "\n".join(lines).strip()


def split_sections(markdown: str) -> List[str]:
    """Split on blank lines and heading boundaries, keeping fenced code whole."""
    text = (markdown or "").replace("\r\n", "\n").replace("\r", "\n").strip()
    if not text:
        return []

    blocks: List[str] = []
    current: List[str] = []
    in_fence = False
    for line in text.split("\n"):
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
        if not in_fence and not line.strip():
            if current:
                blocks.append("\n".join(current))
                current = []
            continue
        current.append(line)
    if current:
        blocks.append("\n".join(current))

    sections: List[str] = []
    for block in blocks:
        if block.lstrip().startswith("```"):
            sections.append(_normalize_section(block))
            continue
        parts = re.split(r"(?m)(?=^\s{0,3}#{1,6}\s+\S)", block)
        sections.extend(_normalize_section(part) for part in parts if part.strip())
    return sections


def dedup_sections(markdown: str) -> Tuple[str, int]:
    """Remove exact repeats of a section (first one wins).

    Returns the cleaned Markdown and the number of sections removed.
    """
    seen = set()
    kept: List[str] = []
    removed = 0
    for section in split_sections(markdown):
        fingerprint = hashlib.sha256(section.encode("utf-8")).hexdigest()
        if fingerprint in seen:
            removed += 1
            continue
        seen.add(fingerprint)
        kept.append(section)
    return "\n\n".join(kept), removed


# ---------------------------------------------------------------------------
# Page document
# ---------------------------------------------------------------------------


def _frontmatter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("\n", " ").strip()
    if (
        text
        and _FRONTMATTER_SAFE.match(text)
        and ": " not in text
        and not text.endswith(":")
        and text[0] not in "-:"
        and not _YAML_TYPED.match(text)
    ):
        return text
    return json.dumps(text, ensure_ascii=False)


def format_frontmatter(metadata: Mapping[str, Any]) -> str:
    """YAML frontmatter block; ``None`` and empty values are skipped."""
    lines = ["---"]
    for key, value in metadata.items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, (list, tuple)):
            lines.append(f"{key}:")
            lines.extend(f"  - {_frontmatter_value(item)}" for item in value)
        else:
            lines.append(f"{key}: {_frontmatter_value(value)}")
    lines.append("---")
    return "\n".join(lines)


def assemble_page(
    title: str,
    body: str,
    *,
    metadata: Optional[Dict[str, Any]] = None,
    include_meta: bool = True,
) -> str:
    """Frontmatter (optional), ``# Title`` and body; never an empty body."""
    lines: List[str] = []
    if include_meta and metadata:
        lines.append(format_frontmatter(metadata))
        lines.append("")
    lines.append(f"# {title}" if title else "# Untitled")
    lines.append("")
    lines.append(body.strip() if body and body.strip() else NO_CONTENT_NOTE)
    lines.append("")
    return "\n".join(lines)
