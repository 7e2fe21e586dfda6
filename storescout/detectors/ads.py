from __future__ import annotations

import re

AD_PIXEL_PATTERNS = {
    "meta": re.compile(r"connect\.facebook\.net|fbevents\.js|facebook\.com/tr\?|\bfbq\(", re.IGNORECASE),
    "tiktok": re.compile(r"analytics\.tiktok\.com|\bttq\.(?:load|page|track)", re.IGNORECASE),
    "google_ads": re.compile(r"googleadservices\.com|googlesyndication\.com|gtag\([^)]*['\"]AW-", re.IGNORECASE),
    "pinterest": re.compile(r"s\.pinimg\.com/ct/core\.js|\bpintrk\(", re.IGNORECASE),
    "snapchat": re.compile(r"sc-static\.net/scevent|\bsnaptr\(", re.IGNORECASE),
}


def detect_ad_networks(html: str) -> list[str]:
    return [network for network, pattern in AD_PIXEL_PATTERNS.items() if pattern.search(html)]


def is_advertising(html: str) -> bool:
    return bool(detect_ad_networks(html))
