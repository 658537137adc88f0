"""Embedded-state tier: product data inside hydration payloads.

Finds ``__NEXT_DATA__``, ``__NUXT__``, ``window.__INITIAL_STATE__``,
``window.__PRELOADED_STATE__`` and ``application/json`` script payloads,
walks them for name+price shaped objects, and falls back to a key-pair
regex scan when a payload is not valid JSON.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterator

from bs4 import BeautifulSoup

from pricehunt.config.settings import ExtractionConfig
from pricehunt.extraction.models import ExtractionCandidate, ExtractionMethod
from pricehunt.extraction.validation import build_candidate, parse_number

MAX_DEPTH = 8
MAX_RESULTS = 15

NAME_KEYS = ("name", "title", "productName", "display_name", "product_name")
PRICE_KEYS = (
    "price", "sellingPrice", "selling_price", "salePrice", "sale_price",
    "discountedPrice", "finalPrice", "mrp",
)
ORIGINAL_PRICE_KEYS = ("mrp", "originalPrice", "original_price", "listPrice")
IMAGE_KEYS = ("image", "imageUrl", "image_url", "thumbnail", "thumbnailUrl", "product_image")
URL_KEYS = ("url", "productUrl", "product_url", "link", "pdpLink")

_STATE_ASSIGNMENTS = re.compile(
    r"window\.(__INITIAL_STATE__|__PRELOADED_STATE__|__NUXT__)\s*=\s*"
)

KEY_PAIR_PATTERN = re.compile(
    r'"(?:name|display_name|product_name|title)"\s*:\s*"([^"]{5,100})"[^}]*?'
    r'"(?:price|sp|selling_price|offer_price)"\s*:\s*"?(\d+(?:\.\d+)?)"?'
)


def _first_value(obj: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = obj.get(key)
        if value is not None and value != "":
            return value
    return None


def _image_value(obj: dict[str, Any]) -> Any:
    value = _first_value(obj, IMAGE_KEYS)
    if value is None:
        images = obj.get("images")
        if isinstance(images, list) and images:
            value = images[0]
    if isinstance(value, dict):
        value = value.get("url")
    return value


def looks_like_product(obj: dict[str, Any]) -> bool:
    has_name = isinstance(_first_value(obj, NAME_KEYS), str)
    has_price = parse_number(_first_value(obj, PRICE_KEYS)) is not None
    return has_name and has_price


def find_candidates_in_json(
    payload: Any,
    base_url: str,
    *,
    confidence: float,
    method: ExtractionMethod,
    config: ExtractionConfig | None = None,
    max_results: int = MAX_RESULTS,
) -> list[ExtractionCandidate]:
    """Depth-bounded walk for product-shaped objects, in document order."""
    cfg = config or ExtractionConfig()
    results: list[ExtractionCandidate] = []

    def walk(node: Any, depth: int) -> None:
        if depth > MAX_DEPTH or len(results) >= max_results:
            return
        if isinstance(node, list):
            for item in node:
                walk(item, depth + 1)
            return
        if not isinstance(node, dict):
            return
        if looks_like_product(node):
            candidate = build_candidate(
                name=_first_value(node, NAME_KEYS),
                price=_first_value(node, PRICE_KEYS),
                original_price=_first_value(node, ORIGINAL_PRICE_KEYS),
                image_url=_image_value(node),
                url=_first_value(node, URL_KEYS),
                method=method,
                confidence=confidence,
                base_url=base_url,
                config=cfg,
            )
            if candidate is not None:
                results.append(candidate)
                return
        for value in node.values():
            if isinstance(value, (dict, list)):
                walk(value, depth + 1)

    walk(payload, 0)
    return results


class EmbeddedStateExtractor:
    """Scans inlined application state for product-shaped records."""

    def __init__(self, config: ExtractionConfig | None = None) -> None:
        self._config = config or ExtractionConfig()

    def extract(self, soup: BeautifulSoup, base_url: str) -> list[ExtractionCandidate]:
        results: list[ExtractionCandidate] = []
        for raw in self._payloads(soup):
            try:
                payload = json.loads(raw)
            except ValueError:
                found = self._scan_key_pairs(raw, base_url)
            else:
                found = self._walk(self._narrow(payload), base_url)
            results.extend(found)
            if len(results) >= MAX_RESULTS:
                break
        return results

    def _walk(self, payload: Any, base_url: str) -> list[ExtractionCandidate]:
        return find_candidates_in_json(
            payload,
            base_url,
            confidence=self._config.embedded_state_confidence,
            method=ExtractionMethod.EMBEDDED_STATE,
            config=self._config,
        )

    @staticmethod
    def _narrow(payload: Any) -> Any:
        # Next.js keeps page data under props.pageProps
        if isinstance(payload, dict):
            props = payload.get("props")
            if isinstance(props, dict) and isinstance(props.get("pageProps"), dict):
                return props["pageProps"]
        return payload

    @staticmethod
    def _payloads(soup: BeautifulSoup) -> Iterator[str]:
        next_data = soup.select_one("script#__NEXT_DATA__")
        if next_data is not None:
            yield next_data.string or next_data.get_text()

        decoder = json.JSONDecoder()
        for script in soup.find_all("script"):
            if script is next_data:
                continue
            text = script.string or script.get_text()
            if not text:
                continue
            if script.get("type") == "application/json":
                yield text
                continue
            for match in _STATE_ASSIGNMENTS.finditer(text):
                start = match.end()
                try:
                    _, end = decoder.raw_decode(text, start)
                except ValueError:
                    # Not strict JSON (e.g. a Nuxt IIFE); hand the tail to the regex scan
                    yield text[start:]
                    continue
                yield text[start:end]

    def _scan_key_pairs(self, raw: str, base_url: str) -> list[ExtractionCandidate]:
        results: list[ExtractionCandidate] = []
        for match in KEY_PAIR_PATTERN.finditer(raw):
            candidate = build_candidate(
                name=match.group(1),
                price=match.group(2),
                method=ExtractionMethod.EMBEDDED_STATE,
                confidence=self._config.embedded_state_confidence,
                base_url=base_url,
                config=self._config,
            )
            if candidate is not None:
                results.append(candidate)
            if len(results) >= MAX_RESULTS:
                break
        return results
