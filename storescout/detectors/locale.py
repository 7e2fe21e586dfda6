from __future__ import annotations

import re

from bs4 import BeautifulSoup

from storescout.core.urls import host_of

COUNTRY_CODE_PATTERNS = (
    re.compile(r"Shopify\.country\s*=\s*[\"']([A-Za-z]{2})[\"']"),
    re.compile(r"[\"']country_?code[\"']\s*:\s*[\"']([A-Za-z]{2})[\"']", re.IGNORECASE),
    re.compile(r"data-country(?:-code)?\s*=\s*[\"']([A-Za-z]{2})[\"']", re.IGNORECASE),
)
ACTIVE_CURRENCY_RE = re.compile(r"Shopify\.currency\s*=\s*\{[^}]*[\"']active[\"']\s*:\s*[\"']([A-Za-z]{3})[\"']")
CURRENCY_META_SELECTOR = 'meta[property="product:price:currency"], meta[property="og:price:currency"]'

# Currencies used by a single country; EUR and similar are ambiguous and skipped.
CURRENCY_COUNTRIES = {
    "USD": "US",
    "CAD": "CA",
    "GBP": "GB",
    "AUD": "AU",
    "NZD": "NZ",
    "MXN": "MX",
    "BRL": "BR",
    "ARS": "AR",
    "CLP": "CL",
    "COP": "CO",
    "PEN": "PE",
    "SEK": "SE",
    "NOK": "NO",
    "DKK": "DK",
    "CHF": "CH",
    "PLN": "PL",
    "CZK": "CZ",
    "HUF": "HU",
    "RON": "RO",
    "JPY": "JP",
    "KRW": "KR",
    "CNY": "CN",
    "SGD": "SG",
    "HKD": "HK",
    "TWD": "TW",
    "MYR": "MY",
    "THB": "TH",
    "IDR": "ID",
    "PHP": "PH",
    "VND": "VN",
    "INR": "IN",
    "ZAR": "ZA",
    "ILS": "IL",
    "AED": "AE",
    "SAR": "SA",
    "TRY": "TR",
}
COUNTRY_TLDS = {
    "uk": "GB",
    "au": "AU",
    "ca": "CA",
    "nz": "NZ",
    "ie": "IE",
    "de": "DE",
    "fr": "FR",
    "it": "IT",
    "es": "ES",
    "nl": "NL",
    "be": "BE",
    "at": "AT",
    "ch": "CH",
    "se": "SE",
    "no": "NO",
    "dk": "DK",
    "fi": "FI",
    "pl": "PL",
    "pt": "PT",
    "jp": "JP",
    "in": "IN",
    "sg": "SG",
    "za": "ZA",
    "br": "BR",
    "mx": "MX",
}
COUNTRY_ALIASES = {"UK": "GB"}


def detect_locale(soup: BeautifulSoup, html: str, canonical_url: str) -> str | None:
    """ISO 3166-1 alpha-2 country code of the storefront, or None."""
    for pattern in COUNTRY_CODE_PATTERNS:
        match = pattern.search(html)
        if match:
            return _normalize_code(match.group(1))

    html_tag = soup.find("html")
    lang = html_tag.get("lang") if html_tag is not None else None
    if isinstance(lang, str):
        _, separator, region = lang.replace("_", "-").partition("-")
        if separator and len(region) == 2 and region.isalpha():
            return _normalize_code(region)

    tld = host_of(canonical_url).rsplit(".", 1)[-1]
    if tld in COUNTRY_TLDS:
        return COUNTRY_TLDS[tld]

    currency = _detect_currency(soup, html)
    if currency is not None:
        return CURRENCY_COUNTRIES.get(currency)
    return None


def _detect_currency(soup: BeautifulSoup, html: str) -> str | None:
    match = ACTIVE_CURRENCY_RE.search(html)
    if match:
        return match.group(1).upper()
    node = soup.select_one(CURRENCY_META_SELECTOR)
    if node is not None:
        content = node.get("content")
        if isinstance(content, str) and len(content.strip()) == 3:
            return content.strip().upper()
    return None


def _normalize_code(raw: str) -> str:
    code = raw.upper()
    return COUNTRY_ALIASES.get(code, code)
