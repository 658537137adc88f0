"""DOM heuristics: product discovery without any page-provided labels.

Three sub-strategies, each yielding ``(candidate, element)`` pairs so the
caller can learn a selector from a strong match:

- repeated structures: sibling-like elements sharing a structural signature
- price/image proximity: smallest ancestor of a product image holding a price
- detail-link patterns: anchors shaped like product-detail URLs

Confidence is compositional: name and price are required, image and detail
URL are bonuses.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, NavigableString, Tag

from pricehunt.config.settings import ExtractionConfig
from pricehunt.extraction.models import ExtractionCandidate, ExtractionMethod
from pricehunt.extraction.validation import (
    has_currency_amount,
    is_valid_name,
    resolve_url,
    select_original_price,
    select_price,
)

PRODUCT_LINK_PATTERNS = ("/p/", "/pd/", "/product/", "/prn/", "/prid/", "/dp/", "/item/", "/buy/")
PRODUCT_LINK_SELECTOR = ", ".join(f"a[href*='{p}']" for p in PRODUCT_LINK_PATTERNS)
PRODUCT_IMAGE_SELECTOR = "img[src*='cdn'], img[src*='image'], img[data-src], img[alt]"
NAME_CLASS_SELECTOR = "[class*='name'], [class*='title'], [class*='product']"
HEADING_SELECTOR = "h1, h2, h3, h4, h5"

MAX_STRUCTURE_DEPTH = 8
MIN_GROUP_SIZE = 3
MAX_PER_GROUP = 15
MAX_IMAGES = 30
MAX_LINKS = 30
MAX_RESULTS = 15

Match = tuple[ExtractionCandidate, Tag]


def _children(element: Tag) -> list[Tag]:
    return [c for c in element.children if isinstance(c, Tag)]


def _own_text(element: Tag) -> str:
    parts = [
        str(s) for s in element.children if type(s) is NavigableString and str(s).strip()
    ]
    return " ".join(" ".join(parts).split())


def _first(element: Tag, selector: str) -> Tag | None:
    """First match of ``selector`` including ``element`` itself."""
    if element.css.match(selector):
        return element
    return element.select_one(selector)


class HeuristicExtractor:
    """Finds product cards by structure alone."""

    def __init__(self, config: ExtractionConfig | None = None) -> None:
        self._config = config or ExtractionConfig()
        self._text_cache: dict[int, str] = {}

    # --- Text helpers ---

    def text_of(self, element: Tag) -> str:
        key = id(element)
        text = self._text_cache.get(key)
        if text is None:
            text = self._text_cache[key] = " ".join(element.get_text(" ").split())
        return text

    def reset(self) -> None:
        self._text_cache.clear()

    # --- Element to candidate ---

    def extract_name(self, element: Tag) -> str | None:
        cfg = self._config

        img = _first(element, "img[alt]")
        if img is not None and is_valid_name(img.get("alt", ""), cfg):
            return img["alt"].strip()

        heading = _first(element, HEADING_SELECTOR)
        if heading is not None:
            text = self.text_of(heading)
            if is_valid_name(text, cfg):
                return text

        link = _first(element, "a")
        if link is not None:
            text = self.text_of(link)
            if is_valid_name(text, cfg):
                return text

        for named in element.select(NAME_CLASS_SELECTOR):
            text = _own_text(named)
            if is_valid_name(text, cfg):
                return text

        aria = (element.get("aria-label") or "").strip()
        if is_valid_name(aria, cfg):
            return aria
        return None

    @staticmethod
    def extract_image(element: Tag) -> str:
        img = _first(element, "img")
        if img is None:
            return ""
        for attr in ("src", "data-src", "data-lazy-src"):
            value = (img.get(attr) or "").strip()
            if value:
                return value
        return ""

    @staticmethod
    def extract_product_url(element: Tag, base_url: str) -> str:
        link = _first(element, PRODUCT_LINK_SELECTOR) or _first(element, "a[href]")
        if link is None:
            return ""
        return resolve_url(link.get("href"), base_url)

    def candidate_from_element(
        self,
        element: Tag,
        base_url: str,
        method: ExtractionMethod,
        url_override: str | None = None,
    ) -> ExtractionCandidate | None:
        cfg = self._config
        name = self.extract_name(element)
        if name is None:
            return None
        text = self.text_of(element)
        price = select_price(text, cfg)
        if price is None:
            return None
        confidence = cfg.name_bonus + cfg.price_bonus

        image_url = resolve_url(self.extract_image(element), base_url)
        if image_url:
            confidence += cfg.image_bonus

        url = url_override or self.extract_product_url(element, base_url)
        if url and url != base_url:
            confidence += cfg.url_bonus

        return ExtractionCandidate(
            name=name,
            price=price,
            original_price=select_original_price(text, price, cfg),
            image_url=image_url or None,
            url=url or None,
            confidence=round(min(confidence, 1.0), 4),
            method=method,
        )

    # --- Sub-strategies ---

    def _is_card(self, element: Tag) -> bool:
        text = self.text_of(element)
        return (
            20 <= len(text) <= 800
            and has_currency_amount(text)
            and element.find("img") is not None
        )

    def repeated_structures(self, soup: BeautifulSoup, base_url: str) -> list[Match]:
        """Sibling cards sharing a tag, child count and leading classes."""
        if soup.body is None:
            return []

        matches: list[Match] = []
        stack = [(soup.body, 0)]
        while stack:
            parent, depth = stack.pop()
            if depth > MAX_STRUCTURE_DEPTH:
                continue
            children = _children(parent)
            groups: dict[str, list[Tag]] = {}
            for child in children:
                if not self._is_card(child):
                    continue
                classes = "_".join(sorted(child.get("class") or [])[:2])
                signature = f"{child.name}_{len(_children(child))}_{classes}"
                groups.setdefault(signature, []).append(child)

            for members in groups.values():
                if len(members) < MIN_GROUP_SIZE:
                    continue
                for element in members[:MAX_PER_GROUP]:
                    candidate = self.candidate_from_element(
                        element, base_url, ExtractionMethod.REPEATED_STRUCTURE
                    )
                    if candidate is not None:
                        matches.append((candidate, element))
            stack.extend((child, depth + 1) for child in reversed(children))
        return matches

    def price_image_proximity(self, soup: BeautifulSoup, base_url: str) -> list[Match]:
        matches: list[Match] = []
        processed: set[int] = set()

        images = []
        for img in soup.select(PRODUCT_IMAGE_SELECTOR):
            src = (img.get("src") or "").strip() or (img.get("data-src") or "").strip()
            alt = img.get("alt") or ""
            lowered = src.lower()
            if not src or any(word in lowered for word in ("logo", "icon", "banner")):
                continue
            if alt and len(alt) <= 3:
                continue
            images.append(img)

        for img in images[:MAX_IMAGES]:
            container = None
            for parent in img.parents:
                if not isinstance(parent, Tag) or parent.name == "[document]":
                    break
                if id(parent) in processed:
                    continue
                text = self.text_of(parent)
                if has_currency_amount(text) and len(text) <= 600:
                    container = parent
                    break
            if container is None:
                continue
            processed.add(id(container))

            candidate = self.candidate_from_element(
                container, base_url, ExtractionMethod.PRICE_IMAGE_PROXIMITY
            )
            if candidate is not None:
                matches.append((candidate, container))
            if len(matches) >= MAX_RESULTS:
                break
        return matches

    def link_patterns(self, soup: BeautifulSoup, base_url: str) -> list[Match]:
        matches: list[Match] = []
        seen_hrefs: set[str] = set()

        for link in soup.select(PRODUCT_LINK_SELECTOR)[:MAX_LINKS]:
            href = link.get("href", "")
            if href in seen_hrefs:
                continue
            seen_hrefs.add(href)

            container = link
            for parent in link.parents:
                if not isinstance(parent, Tag) or parent.name == "[document]":
                    break
                text = self.text_of(parent)
                if has_currency_amount(text) and len(text) < 600:
                    container = parent
                    break

            candidate = self.candidate_from_element(
                container,
                base_url,
                ExtractionMethod.LINK_PATTERN,
                url_override=resolve_url(href, base_url),
            )
            if candidate is not None:
                matches.append((candidate, container))
            if len(matches) >= MAX_RESULTS:
                break
        return matches


def build_selector(element: Tag) -> str:
    """Derive a replayable selector, preferring stable identifying attributes."""
    tag = element.name
    test_id = element.get("data-testid")
    if test_id:
        return f"{tag}[data-testid='{test_id}']"
    if element.get("data-id"):
        return f"{tag}[data-id]"
    item_prop = element.get("itemprop")
    if item_prop:
        return f"{tag}[itemprop='{item_prop}']"
    for cls in element.get("class") or []:
        if len(cls) <= 3:
            continue
        if re.fullmatch(r"[a-z]{1,3}[A-Z][a-z0-9]{4,}", cls):
            continue
        if re.fullmatch(r"[a-z]+_[a-f0-9]{4,}", cls):
            continue
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_-]*", cls):
            continue
        return f"{tag}.{cls}"
    return ""
