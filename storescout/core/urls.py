from __future__ import annotations

import re
from urllib.parse import urlparse

HOSTED_PLATFORM_SUFFIX = ".myshopify.com"
DEFAULT_PORTS = {80, 443}
HOST_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


class InvalidURLError(ValueError):
    """Raised when a raw URL cannot be reduced to a canonical storefront URL."""

    reason = "invalid_url"


def canonicalize_url(raw_url: object) -> str:
    """Reduce a raw storefront URL to its identity key.

    The key is ``https://<host>[:<port>]``: scheme forced to https, host
    lower-cased, default ports, userinfo, path, query and fragment dropped,
    and a leading ``www.`` removed unless the host is a hosted platform
    subdomain. Applying the function to its own output returns the same value.
    """
    if not isinstance(raw_url, str):
        raise InvalidURLError("url must be a string")
    candidate = raw_url.strip()
    if not candidate:
        raise InvalidURLError("url is empty")

    if candidate.startswith("//"):
        candidate = f"https:{candidate}"
    elif "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise InvalidURLError(f"unsupported scheme: {parsed.scheme}")

    try:
        port = parsed.port
    except ValueError as exc:
        raise InvalidURLError("invalid port") from exc

    host = _normalize_host(parsed.hostname)
    while host.startswith("www.") and host.count(".") >= 2 and not is_hosted_platform_host(host):
        host = host[4:]

    if port is not None and port not in DEFAULT_PORTS:
        return f"https://{host}:{port}"
    return f"https://{host}"


def is_hosted_platform_host(host: str) -> bool:
    return host.lower().endswith(HOSTED_PLATFORM_SUFFIX)


def host_of(canonical_url: str) -> str:
    return urlparse(canonical_url).hostname or ""


def display_name_from_url(canonical_url: str) -> str:
    host = host_of(canonical_url)
    if host.startswith("www."):
        host = host[4:]
    if is_hosted_platform_host(host):
        host = host[: -len(HOSTED_PLATFORM_SUFFIX)]
    return host


def _normalize_host(hostname: str | None) -> str:
    if not hostname:
        raise InvalidURLError("url has no host")
    host = hostname.strip().rstrip(".").lower()
    try:
        host = host.encode("idna").decode("ascii")
    except UnicodeError as exc:
        raise InvalidURLError("invalid host") from exc

    labels = host.split(".")
    if len(labels) < 2:
        raise InvalidURLError("host must contain a domain suffix")
    if not all(HOST_LABEL_RE.match(label) for label in labels):
        raise InvalidURLError("invalid host")
    return host
