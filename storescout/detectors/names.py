from __future__ import annotations

import re

from bs4 import BeautifulSoup

TITLE_SEPARATOR_RE = re.compile(r"\s+[|–—\-:]\s+")
GENERIC_TITLE_SEGMENTS = {"home", "homepage", "home page", "welcome", "shop", "official site", "official store"}
HERO_HEADING_SELECTORS = (
    ".hero h1",
    ".banner h1",
    ".slideshow h1",
    "header h1",
    ".site-header__logo",
)
MAX_NAME_LENGTH = 200


def detect_display_name(soup: BeautifulSoup) -> str | None:
    """Best human-readable store name in the page, or None."""
    site_name = _meta_content(soup, property_name="og:site_name")
    if site_name:
        return site_name

    if soup.title and soup.title.string:
        name = _clean_title(soup.title.string)
        if name:
            return name

    og_title = _meta_content(soup, property_name="og:title")
    if og_title:
        name = _clean_title(og_title)
        if name:
            return name

    for selector in HERO_HEADING_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            name = _clean_text(node.get_text(" ", strip=True))
            if name:
                return name

    first_heading = soup.find("h1")
    if first_heading is not None:
        return _clean_text(first_heading.get_text(" ", strip=True))
    return None


def _meta_content(soup: BeautifulSoup, *, property_name: str) -> str | None:
    node = soup.find("meta", attrs={"property": property_name}) or soup.find("meta", attrs={"name": property_name})
    if node is None:
        return None
    content = node.get("content")
    if not isinstance(content, str):
        return None
    return _clean_text(content)


def _clean_title(raw: str) -> str | None:
    segments = [segment for segment in (_clean_text(part) for part in TITLE_SEPARATOR_RE.split(raw)) if segment]
    meaningful = [segment for segment in segments if segment.lower() not in GENERIC_TITLE_SEGMENTS]
    if not meaningful:
        return None
    if len(meaningful) > 1 and len(segments) > len(meaningful):
        return meaningful[-1]
    return meaningful[0]


def _clean_text(raw: str) -> str | None:
    collapsed = " ".join(raw.split())
    if not collapsed:
        return None
    return collapsed[:MAX_NAME_LENGTH]
