from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx

from storescout.core.config import Settings

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}


class FetchError(Exception):
    """Raised when a page cannot be fetched at all (transport failure, timeout, redirect limit)."""

    def __init__(self, message: str, *, reason: str = "fetch_failed") -> None:
        super().__init__(message)
        self.reason = reason


@dataclass(slots=True)
class FetchResponse:
    url: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    text: str = ""
    redirect_hop_count: int = 0
    via: str = "direct"

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").lower()

    def json(self) -> Any:
        return json.loads(self.text)


class RenderingServiceFetcher:
    """Fetches pages through a third-party scraping endpoint when direct access fails."""

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def get(self, url: str) -> FetchResponse:
        params = {"api_key": self.api_key, "url": url, "render": "false"}
        try:
            if self._client is not None:
                response = await self._client.get(self.endpoint, params=params, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as temp_client:
                    response = await temp_client.get(self.endpoint, params=params)
        except httpx.HTTPError as exc:
            raise FetchError(f"rendering service request failed: {exc}", reason="rendering_service_failed") from exc

        if response.status_code != 200:
            raise FetchError(
                f"rendering service returned status={response.status_code}",
                reason="rendering_service_failed",
            )
        return FetchResponse(url=url, status_code=200, text=response.text, via="rendering_service")


class StorefrontFetcher:
    """HTTP access for storefront probes.

    Redirects are followed manually up to ``max_redirects`` hops with loop
    detection. Non-2xx responses are returned, not raised; only transport
    failures raise ``FetchError``. When a rendering service is configured it
    is tried after a direct transport failure.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 8.0,
        max_redirects: int = 5,
        user_agent: str = "storescout/1.0",
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        fallback: RenderingServiceFetcher | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_redirects = max(0, max_redirects)
        self.user_agent = user_agent
        self.fallback = fallback
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=False,
            transport=transport,
        )

    async def __aenter__(self) -> StorefrontFetcher:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get(
        self,
        url: str,
        *,
        timeout_seconds: float | None = None,
        allow_fallback: bool = True,
        headers: dict[str, str] | None = None,
    ) -> FetchResponse:
        try:
            return await self._get_direct(url, timeout_seconds=timeout_seconds, headers=headers)
        except FetchError as exc:
            if not allow_fallback or self.fallback is None:
                raise
            logger.info("direct fetch failed url=%s reason=%s; trying rendering service", url, exc.reason)
            return await self.fallback.get(url)

    async def _get_direct(
        self,
        url: str,
        *,
        timeout_seconds: float | None,
        headers: dict[str, str] | None,
    ) -> FetchResponse:
        request_headers = {"User-Agent": self.user_agent, "Accept": "*/*"}
        if headers:
            request_headers.update(headers)
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds

        current_url = url
        seen_urls: set[str] = set()
        hops = 0
        while True:
            if urlparse(current_url).scheme.lower() not in {"http", "https"}:
                raise FetchError(f"unsupported scheme for url={current_url}", reason="unsupported_scheme")
            if current_url in seen_urls:
                raise FetchError(f"redirect loop at url={current_url}", reason="redirect_loop_detected")
            seen_urls.add(current_url)

            try:
                response = await self._client.get(current_url, headers=request_headers, timeout=timeout)
            except httpx.TimeoutException as exc:
                raise FetchError(f"timeout fetching url={current_url}", reason="timeout") from exc
            except httpx.HTTPError as exc:
                raise FetchError(f"transport error fetching url={current_url}: {exc}", reason="transport_error") from exc

            location = response.headers.get("location")
            if response.status_code in REDIRECT_STATUS_CODES and location:
                if hops >= self.max_redirects:
                    raise FetchError(f"redirect limit exceeded for url={url}", reason="redirect_hop_limit_exceeded")
                current_url = urljoin(str(response.url), location)
                hops += 1
                continue

            return FetchResponse(
                url=str(response.url),
                status_code=int(response.status_code),
                headers={key.lower(): value for key, value in response.headers.items()},
                text=response.text,
                redirect_hop_count=hops,
            )


def build_fetcher(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StorefrontFetcher:
    fallback: RenderingServiceFetcher | None = None
    if settings.rendering_service_api_key:
        fallback = RenderingServiceFetcher(
            endpoint=settings.rendering_service_url,
            api_key=settings.rendering_service_api_key,
            timeout_seconds=settings.rendering_service_timeout_seconds,
        )
    return StorefrontFetcher(
        timeout_seconds=settings.probe_timeout_seconds,
        max_redirects=settings.max_redirects,
        user_agent=settings.user_agent,
        transport=transport,
        fallback=fallback,
    )
