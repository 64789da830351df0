"""HTML to structured page content, with a readability-style main-content pass."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

BOILERPLATE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside", "form", "iframe"]
MAIN_CONTENT_SELECTORS = ("main", "article", "[role=main]")
MIN_MAIN_WORDS = 25
MIN_DENSE_BLOCK_CHARS = 200
MAX_CONTENT_CHARS = 50_000

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class ExtractedPage:
    url: str
    title: str = ""
    description: str = ""
    meta_tags: dict[str, str] = field(default_factory=dict)
    structured_data: list[dict[str, Any]] = field(default_factory=list)
    headings: list[dict[str, Any]] = field(default_factory=list)
    links: list[dict[str, Any]] = field(default_factory=list)
    images: list[dict[str, Any]] = field(default_factory=list)
    main_content: str = ""
    word_count: int = 0
    extraction_method: str = "body"


def _clean(text: str | None) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def _node_text(node: Tag) -> str:
    return _clean(node.get_text(separator=" ", strip=True))


def _attr(node: Tag, name: str) -> str:
    value = node.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return value or ""


def _extract_structured_data(soup: BeautifulSoup) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        candidates = parsed if isinstance(parsed, list) else [parsed]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            graph = candidate.get("@graph")
            if isinstance(graph, list):
                records.extend(item for item in graph if isinstance(item, dict))
            else:
                records.append(candidate)
    return records


def _extract_meta_tags(soup: BeautifulSoup) -> dict[str, str]:
    tags: dict[str, str] = {}
    for meta in soup.find_all("meta"):
        key = _attr(meta, "name") or _attr(meta, "property")
        content = _attr(meta, "content")
        if key and content:
            tags[key.strip().lower()] = content.strip()
    return tags


def _extract_links(soup: BeautifulSoup, page_url: str) -> list[dict[str, Any]]:
    base_domain = urlparse(page_url).netloc
    links: list[dict[str, Any]] = []
    for anchor in soup.find_all("a", href=True):
        href = _attr(anchor, "href").strip()
        if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        absolute = urljoin(page_url, href)
        links.append(
            {
                "text": _node_text(anchor),
                "href": absolute,
                "internal": urlparse(absolute).netloc == base_domain,
            }
        )
    return links


def _extract_images(soup: BeautifulSoup, page_url: str) -> list[dict[str, Any]]:
    images: list[dict[str, Any]] = []
    for image in soup.find_all("img"):
        src = _attr(image, "src").strip()
        if not src:
            continue
        images.append(
            {
                "src": urljoin(page_url, src),
                "alt": _attr(image, "alt").strip(),
                "title": _attr(image, "title").strip(),
            }
        )
    return images


def _densest_block(soup: BeautifulSoup) -> Tag | None:
    """Parent element holding the most paragraph text."""
    scores: dict[int, int] = {}
    nodes: dict[int, Tag] = {}
    for paragraph in soup.find_all("p"):
        parent = paragraph.parent
        if not isinstance(parent, Tag):
            continue
        key = id(parent)
        nodes[key] = parent
        scores[key] = scores.get(key, 0) + len(_node_text(paragraph))
    if not scores:
        return None
    best_key = max(scores, key=scores.__getitem__)
    if scores[best_key] < MIN_DENSE_BLOCK_CHARS:
        return None
    return nodes[best_key]


def _extract_main_content(soup: BeautifulSoup) -> tuple[str, str]:
    for element in soup(BOILERPLATE_TAGS):
        element.decompose()

    for selector in MAIN_CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            text = _node_text(node)
            if len(text.split()) >= MIN_MAIN_WORDS:
                return text, selector

    dense = _densest_block(soup)
    if dense is not None:
        return _node_text(dense), "densest_block"

    body = soup.body or soup
    return _node_text(body), "body"


def extract_page_content(html: str, url: str) -> ExtractedPage:
    """Parse raw HTML into the fields stored for a page."""
    soup = BeautifulSoup(html, "lxml")

    meta_tags = _extract_meta_tags(soup)
    title = _clean(soup.title.get_text()) if soup.title else ""
    if not title:
        title = meta_tags.get("og:title", "")
    description = meta_tags.get("description") or meta_tags.get("og:description", "")

    headings = [
        {"level": level, "text": _node_text(heading)}
        for level in range(1, 7)
        for heading in soup.find_all(f"h{level}")
        if _node_text(heading)
    ]

    page = ExtractedPage(
        url=url,
        title=title,
        description=description,
        meta_tags=meta_tags,
        structured_data=_extract_structured_data(soup),
        headings=headings,
        links=_extract_links(soup, url),
        images=_extract_images(soup, url),
    )

    main_content, method = _extract_main_content(soup)
    page.main_content = main_content[:MAX_CONTENT_CHARS]
    page.word_count = len(page.main_content.split())
    page.extraction_method = method
    return page
