"""Structured-data tier: product data the page labels explicitly.

Covers JSON-LD blocks (``Product``, ``ItemList``, ``@graph`` and
``WebPage``/``SearchResultsPage`` wrappers), schema.org microdata and
Open Graph / ``product:*`` meta tags.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from bs4 import BeautifulSoup, Tag

from pricehunt.config.settings import ExtractionConfig
from pricehunt.extraction.models import ExtractionCandidate, ExtractionMethod
from pricehunt.extraction.validation import build_candidate, parse_number, select_price

logger = logging.getLogger(__name__)

MICRODATA_CONTAINERS = (
    "[itemtype*='schema.org/Product'], "
    "[itemtype*='schema.org/IndividualProduct'], "
    "[itemtype*='schema.org/ProductModel']"
)

MAX_MICRODATA_CONTAINERS = 15
MAX_LOOSE_PAIRS = 10


def _type_names(node: dict[str, Any]) -> set[str]:
    raw = node.get("@type")
    if isinstance(raw, str):
        return {raw}
    if isinstance(raw, list):
        return {t for t in raw if isinstance(t, str)}
    return set()


def _first_offer(offers: Any) -> dict[str, Any] | None:
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    return offers if isinstance(offers, dict) else None


def _schema_image(image: Any) -> str | None:
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url")
    return image if isinstance(image, str) else None


class StructuredDataExtractor:
    """Reads JSON-LD, microdata and Open Graph product data from a parsed page."""

    def __init__(self, config: ExtractionConfig | None = None) -> None:
        self._config = config or ExtractionConfig()

    def extract(self, soup: BeautifulSoup, base_url: str) -> list[ExtractionCandidate]:
        results: list[ExtractionCandidate] = []
        results.extend(self.from_json_ld(soup, base_url))
        results.extend(self.from_microdata(soup, base_url))
        results.extend(self.from_open_graph(soup, base_url))
        return results

    def _candidate(
        self, method: ExtractionMethod, base_url: str, **fields: Any
    ) -> ExtractionCandidate | None:
        return build_candidate(
            method=method,
            confidence=self._config.structured_confidence,
            base_url=base_url,
            config=self._config,
            **fields,
        )

    # --- JSON-LD ---

    def from_json_ld(self, soup: BeautifulSoup, base_url: str) -> list[ExtractionCandidate]:
        results: list[ExtractionCandidate] = []
        for script in soup.select("script[type='application/ld+json']"):
            text = script.string or script.get_text()
            if not text or not text.strip():
                continue
            try:
                payload = json.loads(text)
            except ValueError:
                logger.debug("Skipping unparseable JSON-LD block")
                continue
            for node in payload if isinstance(payload, list) else [payload]:
                if isinstance(node, dict):
                    self._walk_json_ld(node, base_url, results)
        return results

    def _walk_json_ld(
        self, node: dict[str, Any], base_url: str, results: list[ExtractionCandidate]
    ) -> None:
        types = _type_names(node)
        if "ItemList" in types:
            for element in node.get("itemListElement") or []:
                if isinstance(element, dict):
                    item = element.get("item")
                    self._add_schema_product(
                        item if isinstance(item, dict) else element, base_url, results
                    )
        if "Product" in types:
            self._add_schema_product(node, base_url, results)
        if types & {"WebPage", "SearchResultsPage"}:
            entity = node.get("mainEntity")
            if isinstance(entity, dict):
                self._walk_json_ld(entity, base_url, results)
            for part in node.get("hasPart") or []:
                if isinstance(part, dict):
                    self._walk_json_ld(part, base_url, results)
        graph = node.get("@graph")
        if isinstance(graph, list):
            for item in graph:
                if isinstance(item, dict):
                    self._walk_json_ld(item, base_url, results)

    def _add_schema_product(
        self, node: dict[str, Any], base_url: str, results: list[ExtractionCandidate]
    ) -> None:
        offer = _first_offer(node.get("offers")) or {}
        price = offer.get("price")
        if parse_number(price) is None:
            price = offer.get("lowPrice")
        url = offer.get("url") if isinstance(offer.get("url"), str) else node.get("url")
        candidate = self._candidate(
            ExtractionMethod.JSON_LD,
            base_url,
            name=node.get("name") or node.get("title"),
            price=price,
            original_price=offer.get("highPrice"),
            image_url=_schema_image(node.get("image")),
            url=url,
        )
        if candidate is not None:
            results.append(candidate)

    # --- Microdata ---

    def from_microdata(self, soup: BeautifulSoup, base_url: str) -> list[ExtractionCandidate]:
        results: list[ExtractionCandidate] = []
        for container in soup.select(MICRODATA_CONTAINERS)[:MAX_MICRODATA_CONTAINERS]:
            name_el = container.select_one("[itemprop='name'], [itemprop='title']")
            price_el = container.select_one("[itemprop='price']")
            low_el = container.select_one("[itemprop='lowPrice']")
            high_el = container.select_one("[itemprop='highPrice']")
            image_el = container.select_one("[itemprop='image']")
            url_el = container.select_one("[itemprop='url']") or container.select_one("a[href]")

            price = self._microdata_price(price_el)
            if price is None:
                price = self._microdata_price(low_el)
            candidate = self._candidate(
                ExtractionMethod.MICRODATA,
                base_url,
                name=name_el.get_text(" ", strip=True) if name_el else None,
                price=price,
                original_price=high_el.get("content") if high_el else None,
                image_url=self._first_attr(image_el, "src", "content", "href"),
                url=self._first_attr(url_el, "href", "content"),
            )
            if candidate is not None:
                results.append(candidate)

        if results:
            return results

        # Loose itemprop pairs not nested in an itemtype container
        names = soup.select("[itemprop='name']")
        prices = soup.select("[itemprop='price'], [itemprop='lowPrice']")
        if len(names) >= 3 and len(prices) >= 3:
            for name_el, price_el in list(zip(names, prices))[:MAX_LOOSE_PAIRS]:
                candidate = self._candidate(
                    ExtractionMethod.MICRODATA,
                    base_url,
                    name=name_el.get_text(" ", strip=True),
                    price=self._microdata_price(price_el),
                )
                if candidate is not None:
                    results.append(candidate)
        return results

    def _microdata_price(self, element: Tag | None) -> float | None:
        if element is None:
            return None
        content = parse_number(element.get("content"))
        if content is not None:
            return content
        text = element.get_text(" ", strip=True)
        return select_price(text, self._config) or parse_number(text)

    @staticmethod
    def _first_attr(element: Tag | None, *attrs: str) -> str | None:
        if element is None:
            return None
        for attr in attrs:
            value = element.get(attr)
            if isinstance(value, str) and value.strip():
                return value
        return None

    # --- Open Graph ---

    def from_open_graph(self, soup: BeautifulSoup, base_url: str) -> list[ExtractionCandidate]:
        results: list[ExtractionCandidate] = []

        def meta(*properties: str) -> str | None:
            for prop in properties:
                tag = soup.select_one(f"meta[property='{prop}']")
                if tag is not None and tag.get("content"):
                    return tag["content"]
            return None

        candidate = self._candidate(
            ExtractionMethod.OPEN_GRAPH,
            base_url,
            name=meta("og:title", "product:title"),
            price=meta("product:price:amount", "og:price:amount"),
            image_url=meta("og:image", "product:image"),
            url=meta("og:url"),
        )
        if candidate is not None:
            results.append(candidate)

        # product:item:* tags describe several products in sequence
        name = price = image = None
        for tag in soup.select("meta[property^='product:item']"):
            prop = tag.get("property", "")
            content = tag.get("content")
            if "name" in prop or "title" in prop:
                name = content
            elif "price" in prop:
                price = content
            elif "image" in prop:
                image = content
            if name and parse_number(price):
                candidate = self._candidate(
                    ExtractionMethod.OPEN_GRAPH,
                    base_url,
                    name=name,
                    price=price,
                    image_url=image,
                )
                if candidate is not None:
                    results.append(candidate)
                name = price = image = None
        return results
