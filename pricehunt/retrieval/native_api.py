"""Native API collaborators.

``JsonApiClient`` calls a source's JSON search endpoint (when the source
declares one) and walks the response for product-shaped records.
"""

from __future__ import annotations

import logging

import httpx

from pricehunt.config.settings import ExtractionConfig, OrchestratorConfig
from pricehunt.config.sources import Source
from pricehunt.extraction.embedded_state import find_candidates_in_json
from pricehunt.extraction.models import ExtractionMethod
from pricehunt.retrieval.protocols import (
    ApiFailure,
    ApiNoItems,
    ApiNotSupported,
    ApiOutcome,
    ApiSuccess,
)
from pricehunt.retrieval.static import browser_headers

logger = logging.getLogger(__name__)


class NoNativeApi:
    """For deployments without any native API access."""

    async def call(self, source: Source, query: str, locale: str) -> ApiOutcome:
        return ApiNotSupported()


class JsonApiClient:
    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        extraction: ExtractionConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._extraction = extraction or ExtractionConfig()
        self._transport = transport
        self._timeout = httpx.Timeout(timeout_s)

    async def call(self, source: Source, query: str, locale: str) -> ApiOutcome:
        url = source.api_url(query)
        if url is None:
            return ApiNotSupported()

        headers = browser_headers(locale)
        headers["Accept"] = "application/json"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True, transport=self._transport
            ) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            return ApiFailure(reason=f"{type(exc).__name__}: {exc}")

        if not response.is_success:
            return ApiFailure(reason=f"HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError:
            return ApiFailure(reason="Response was not JSON")

        items = find_candidates_in_json(
            payload,
            source.base_url,
            confidence=self._config.native_api_confidence,
            method=ExtractionMethod.NATIVE_API,
            config=self._extraction,
            max_results=self._extraction.max_candidates,
        )
        if not items:
            return ApiNoItems()
        logger.debug("Native API for %s returned %d items", source.id, len(items))
        return ApiSuccess(items=items)
