from __future__ import annotations

import re

from bs4 import BeautifulSoup

FREE_THEMES = (
    "dawn",
    "refresh",
    "sense",
    "craft",
    "studio",
    "taste",
    "origin",
    "debut",
    "brooklyn",
    "minimal",
    "supply",
    "venture",
    "simple",
)
PAID_THEMES = (
    "impulse",
    "motion",
    "prestige",
    "empire",
    "expanse",
    "warehouse",
    "enterprise",
    "symmetry",
    "modular",
    "palo alto",
    "loft",
    "blockshop",
    "flow",
    "avenue",
    "broadcast",
    "pipeline",
    "envy",
    "streamline",
    "fashionopolism",
    "district",
    "venue",
    "editorial",
    "focal",
    "chronicle",
    "galleria",
)
KNOWN_THEMES = FREE_THEMES + PAID_THEMES

SHOPIFY_THEME_NAME_RE = re.compile(r"Shopify\.theme\s*=\s*\{[^}]*?[\"']?name[\"']?\s*:\s*[\"']([^\"']+)[\"']")
ASSET_PATH_TEMPLATES = ("/themes/{slug}/", "/theme/{slug}/", "theme-{slug}", "/{slug}/assets")
MIN_PARTIAL_MATCH_LENGTH = 4


def detect_theme(soup: BeautifulSoup, html: str) -> str | None:
    """Name of the storefront theme, title-cased for known themes.

    A custom theme announced through ``Shopify.theme`` is returned as
    declared; markup without any theme evidence yields None.
    """
    declared = _declared_theme_name(html)
    if declared is not None:
        return match_known_theme(declared) or declared

    for node in soup.find_all(["link", "script"]):
        reference = node.get("href") or node.get("src")
        if not isinstance(reference, str):
            continue
        lowered = reference.lower()
        for theme in KNOWN_THEMES:
            slug = theme.replace(" ", "-")
            if any(template.format(slug=slug) in lowered for template in ASSET_PATH_TEMPLATES):
                return format_theme_name(theme)

    for node in soup.find_all(attrs={"data-theme": True}):
        known = match_known_theme(str(node.get("data-theme")))
        if known is not None:
            return known

    body = soup.find("body")
    if body is not None:
        classes = body.get("class") or []
        for css_class in classes:
            for theme in KNOWN_THEMES:
                slug = theme.replace(" ", "-")
                if css_class.lower() in {f"theme-{slug}", f"{slug}-theme"}:
                    return format_theme_name(theme)
    return None


def match_known_theme(raw_name: str) -> str | None:
    name = raw_name.strip().lower().replace("_", " ").replace("-", " ")
    for theme in KNOWN_THEMES:
        if name in {theme, f"{theme} theme", f"theme {theme}"}:
            return format_theme_name(theme)
    for theme in KNOWN_THEMES:
        if len(theme) >= MIN_PARTIAL_MATCH_LENGTH and re.search(rf"\b{re.escape(theme)}\b", name):
            return format_theme_name(theme)
    return None


def format_theme_name(theme: str) -> str:
    return " ".join(word.capitalize() for word in theme.split(" "))


def _declared_theme_name(html: str) -> str | None:
    match = SHOPIFY_THEME_NAME_RE.search(html)
    if not match:
        return None
    declared = " ".join(match.group(1).split())
    return declared or None
