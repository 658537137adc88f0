"""Static HTTP fetcher backed by httpx."""

from __future__ import annotations

import logging

import httpx

from pricehunt.config.settings import BrowserConfig
from pricehunt.errors import TransportError

logger = logging.getLogger(__name__)


def browser_headers(locale: str, user_agent: str | None = None) -> dict[str, str]:
    """Browser-like request headers carrying the delivery locale as a cookie."""
    headers = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-IN,en;q=0.9",
        "Cookie": f"pincode={locale}; location={locale}",
    }
    if user_agent:
        headers["User-Agent"] = user_agent
    return headers


class HttpxStaticFetcher:
    """Plain GET with redirects followed. Non-2xx responses raise ``TransportError``."""

    def __init__(
        self,
        config: BrowserConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._config = config or BrowserConfig()
        self._transport = transport
        self._timeout = httpx.Timeout(timeout_s)

    async def get(self, url: str, headers: dict[str, str]) -> tuple[int, str]:
        merged = dict(headers)
        if self._config.user_agent:
            merged.setdefault("User-Agent", self._config.user_agent)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers=merged)
        except httpx.HTTPError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code} for {url}", status_code=response.status_code
            )
        logger.debug("Fetched %s (%d chars)", url, len(response.text))
        return response.status_code, response.text
