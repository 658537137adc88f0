"""Collaborator interfaces consumed by the orchestrator.

Native API outcomes are a tagged union of small dataclasses, told apart by
``kind``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol, Union

from pricehunt.config.sources import Source
from pricehunt.errors import EscalationError
from pricehunt.extraction.models import ExtractionCandidate


@dataclass
class ApiSuccess:
    items: list[ExtractionCandidate]
    kind: Literal["success"] = field(default="success", init=False)


@dataclass
class ApiNoItems:
    kind: Literal["no_items"] = field(default="no_items", init=False)


@dataclass
class ApiNotSupported:
    kind: Literal["not_supported"] = field(default="not_supported", init=False)


@dataclass
class ApiFailure:
    reason: str
    kind: Literal["failure"] = field(default="failure", init=False)


ApiOutcome = Union[ApiSuccess, ApiNoItems, ApiNotSupported, ApiFailure]


class NativeApiClient(Protocol):
    async def call(self, source: Source, query: str, locale: str) -> ApiOutcome: ...


class StaticFetcher(Protocol):
    async def get(self, url: str, headers: dict[str, str]) -> tuple[int, str]:
        """Fetch ``url``. Raises ``TransportError`` on non-2xx or connection failure."""
        ...


class Renderer(Protocol):
    async def render(
        self, url: str, locale: str, wait_selector: str | None, timeout_s: float
    ) -> str | None:
        """Render ``url`` with scripts enabled. Raises ``RenderError``.

        ``timeout_s`` bounds the render itself, not time spent queued for a
        browser slot; exceeding it raises ``asyncio.TimeoutError``.
        """
        ...


class EscalationClient(Protocol):
    async def extract(
        self, markup: str, source: Source, query: str, base_url: str
    ) -> list[ExtractionCandidate]: ...

    async def extract_many(
        self, batch: list[tuple[Source, str, str]], query: str
    ) -> dict[str, list[ExtractionCandidate] | EscalationError]: ...


class ResultCache(Protocol):
    def get(
        self, query: str, source_id: str, locale: str
    ) -> tuple[list[ExtractionCandidate] | None, bool]: ...

    def set(
        self, query: str, source_id: str, locale: str, items: list[ExtractionCandidate]
    ) -> None: ...
