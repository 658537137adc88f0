"""Sanity rules applied to every candidate before acceptance.

Rejected candidates are dropped silently and logged at debug level.
"""

from __future__ import annotations

import logging
import re

from pricehunt.config.settings import ExtractionConfig
from pricehunt.extraction.models import ExtractionCandidate, ExtractionMethod

logger = logging.getLogger(__name__)

PRICE_PATTERN = re.compile(
    r"(?:₹|Rs\.?|INR|MRP:?\s*₹?)\s*((?:\d{1,3}(?:,\d{2,3})+|\d+)(?:\.\d{1,2})?)",
    re.IGNORECASE,
)

_PLAIN_NUMBER = re.compile(r"\d+(?:,\d{2,3})*(?:\.\d+)?")

# Matched against the whole trimmed name.
INVALID_NAME_PATTERNS = (
    re.compile(r"\d+(-\d+)?\s*(mins?|minutes?|hours?|hr|days?)", re.IGNORECASE),
    re.compile(r"(add|buy|view|cart|login|sign|search|filter|sort|home|menu)", re.IGNORECASE),
    re.compile(r"(free delivery|express|same day|next day|delivery)", re.IGNORECASE),
    re.compile(r"(out of stock|sold out|unavailable|coming soon|notify)(\W.*)?", re.IGNORECASE),
    re.compile(r"[₹\d,.\s%off]+", re.IGNORECASE),
)

INVALID_EXACT_NAMES = frozenset(
    {
        "search", "results", "search results", "products", "items", "loading",
        "add to cart", "add", "buy now", "view", "see more", "show more",
        "filter", "sort", "home", "menu", "cart", "login", "sign in",
        "register", "wishlist", "compare", "share", "notify", "notify me",
        "out of stock", "sold out", "unavailable", "coming soon", "view all",
        "load more", "next", "previous", "back",
    }
)

_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*:", re.IGNORECASE)


def is_valid_name(name: str | None, config: ExtractionConfig | None = None) -> bool:
    cfg = config or ExtractionConfig()
    if not name:
        return False
    trimmed = name.strip()
    if not cfg.min_name_length <= len(trimmed) <= cfg.max_name_length:
        return False
    if not any(ch.isalpha() for ch in trimmed):
        return False
    if trimmed.lower() in INVALID_EXACT_NAMES:
        return False
    return not any(p.fullmatch(trimmed) for p in INVALID_NAME_PATTERNS)


def parse_number(raw: object) -> float | None:
    """Coerce a JSON scalar or a bare numeric string to a float."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        match = _PLAIN_NUMBER.search(raw)
        if match:
            return float(match.group(0).replace(",", ""))
    return None


def currency_amounts(text: str) -> list[float]:
    """Every currency-prefixed amount in ``text``, in order of appearance."""
    return [float(m.group(1).replace(",", "")) for m in PRICE_PATTERN.finditer(text)]


def has_currency_amount(text: str) -> bool:
    return PRICE_PATTERN.search(text) is not None


def select_price(text: str, config: ExtractionConfig | None = None) -> float | None:
    """Lowest in-bounds amount, which is usually the selling price."""
    cfg = config or ExtractionConfig()
    prices = [p for p in currency_amounts(text) if cfg.min_price <= p <= cfg.max_price]
    return min(prices) if prices else None


def select_original_price(
    text: str, price: float, config: ExtractionConfig | None = None
) -> float | None:
    """Largest second amount in ``(price, ratio * price]``."""
    cfg = config or ExtractionConfig()
    upper = price * cfg.max_original_price_ratio
    prices = [p for p in currency_amounts(text) if price < p <= upper]
    return max(prices) if prices else None


def accept_original_price(
    price: float, original: float | None, config: ExtractionConfig | None = None
) -> float | None:
    cfg = config or ExtractionConfig()
    if original is None:
        return None
    if price < original <= price * cfg.max_original_price_ratio:
        return original
    return None


def resolve_url(href: str | None, base_url: str) -> str:
    """Resolve ``href`` against a source's base URL; blank stays blank."""
    if not href:
        return ""
    href = href.strip()
    if not href:
        return ""
    if href.startswith("//"):
        return "https:" + href
    if _SCHEME.match(href):
        return href
    base = base_url.rstrip("/")
    if href.startswith("/"):
        return base + href
    return f"{base}/{href}"


def _optional_url(raw: object, base_url: str) -> str | None:
    if not isinstance(raw, str):
        return None
    return resolve_url(raw, base_url) or None


def build_candidate(
    *,
    name: object,
    price: object,
    method: ExtractionMethod,
    confidence: float,
    base_url: str,
    original_price: object = None,
    image_url: object = None,
    url: object = None,
    config: ExtractionConfig | None = None,
) -> ExtractionCandidate | None:
    """Assemble a candidate from loosely typed fields, or ``None`` if it fails validation.

    An implausible original price is dropped rather than failing the candidate.
    """
    cfg = config or ExtractionConfig()
    if not isinstance(name, str):
        return None
    parsed_price = parse_number(price)
    if parsed_price is None:
        return None
    original = accept_original_price(parsed_price, parse_number(original_price), cfg)
    candidate = ExtractionCandidate(
        name=" ".join(name.split()),
        price=parsed_price,
        original_price=original,
        image_url=_optional_url(image_url, base_url),
        url=_optional_url(url, base_url),
        confidence=confidence,
        method=method,
    )
    return candidate if validate_candidate(candidate, cfg) else None


def validate_candidate(
    candidate: ExtractionCandidate, config: ExtractionConfig | None = None
) -> bool:
    cfg = config or ExtractionConfig()
    reason = None
    if not is_valid_name(candidate.name, cfg):
        reason = "name"
    elif not cfg.min_price <= candidate.price <= cfg.max_price:
        reason = "price"
    elif candidate.original_price is not None and (
        accept_original_price(candidate.price, candidate.original_price, cfg) is None
    ):
        reason = "original_price"
    if reason:
        logger.debug(
            "ValidationRejected",
            extra={
                "rejected_field": reason,
                "candidate_name": candidate.name,
                "candidate_price": candidate.price,
            },
        )
        return False
    return True
