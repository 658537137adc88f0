"""Source catalogue: static per-source retrieval templates.

Sources are created once at startup and shared read-only by every component.
"""

from __future__ import annotations

import json
from pathlib import Path
from urllib.parse import quote_plus

from pydantic import BaseModel, Field, field_validator


class Source(BaseModel):
    """One product origin and the templates used to reach it."""

    id: str
    base_url: str
    search_path: str
    alternate_paths: list[str] = Field(default_factory=list)
    api_template: str | None = None
    requires_rendering: bool = False
    wait_selector: str | None = None
    quick_commerce: bool = False

    model_config = {"frozen": True}

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be absolute: {value}")
        return value.rstrip("/")

    @field_validator("search_path")
    @classmethod
    def _validate_search_path(cls, value: str) -> str:
        if "{query}" not in value:
            raise ValueError("search_path must contain a {query} placeholder")
        return value

    def search_url(self, query: str) -> str:
        return self.base_url + self.search_path.format(query=quote_plus(query))

    def alternate_urls(self, query: str) -> list[str]:
        encoded = quote_plus(query)
        return [self.base_url + path.format(query=encoded) for path in self.alternate_paths]

    def api_url(self, query: str) -> str | None:
        if not self.api_template:
            return None
        return self.api_template.format(query=quote_plus(query))


DEFAULT_SOURCES: tuple[Source, ...] = (
    Source(
        id="zepto",
        base_url="https://www.zeptonow.com",
        search_path="/search?query={query}",
        alternate_paths=["/s/{query}"],
        api_template=(
            "https://www.zeptonow.com/api/v3/search/?query={query}"
            "&pageNumber=1&mode=AUTOSUGGEST"
        ),
        requires_rendering=True,
        quick_commerce=True,
    ),
    Source(
        id="blinkit",
        base_url="https://blinkit.com",
        search_path="/s/?q={query}",
        alternate_paths=["/search/{query}"],
        api_template="https://blinkit.com/v2/search?q={query}",
        requires_rendering=True,
        quick_commerce=True,
    ),
    Source(
        id="bigbasket",
        base_url="https://www.bigbasket.com",
        search_path="/ps/?q={query}",
        alternate_paths=["/search?q={query}"],
        api_template=(
            "https://www.bigbasket.com/listing-svc/v2/products?type=ps&slug={query}&page=1"
        ),
        quick_commerce=True,
    ),
    Source(
        id="instamart",
        base_url="https://www.swiggy.com/instamart",
        search_path="/search?custom_back=true&query={query}",
        requires_rendering=True,
        quick_commerce=True,
    ),
    Source(
        id="amazon_fresh",
        base_url="https://www.amazon.in",
        search_path="/s?k={query}&i=nowstore",
        alternate_paths=["/s?k={query}&rh=n:2454178031"],
        quick_commerce=True,
    ),
    Source(
        id="amazon",
        base_url="https://www.amazon.in",
        search_path="/s?k={query}",
    ),
    Source(
        id="flipkart",
        base_url="https://www.flipkart.com",
        search_path="/search?q={query}",
        alternate_paths=["/grocery-supermart-store?q={query}"],
    ),
    Source(
        id="flipkart_minutes",
        base_url="https://www.flipkart.com",
        search_path="/search?q={query}&marketplace=GROCERY",
        quick_commerce=True,
    ),
    Source(
        id="jiomart",
        base_url="https://www.jiomart.com",
        search_path="/search/{query}",
        alternate_paths=["/catalogsearch/result/?q={query}"],
    ),
    Source(
        id="jiomart_quick",
        base_url="https://www.jiomart.com",
        search_path="/search/{query}?deliveryType=express",
        quick_commerce=True,
    ),
)


def load_sources(path: Path | None = None) -> list[Source]:
    """Load sources from a JSON array file, or return the built-in catalogue."""
    if path is None:
        return list(DEFAULT_SOURCES)
    with open(path) as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"Sources file must contain a JSON array: {path}")
    sources = [Source.model_validate(entry) for entry in raw]
    ids = [s.id for s in sources]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValueError(f"Duplicate source ids: {', '.join(duplicates)}")
    return sources
