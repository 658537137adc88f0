"""Escalation client backed by Vertex AI Gemini.

Last resort for sources whose every retrieval tier came back empty. The
model reads retained markup and returns product records as JSON; every
record is put through the same validation rules as extractor output.

The client is optional. Without a configured project it reports itself
unavailable and every call raises ``EscalationError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pricehunt.config.settings import ExtractionConfig, OrchestratorConfig, VertexConfig
from pricehunt.config.sources import Source
from pricehunt.errors import EscalationError
from pricehunt.extraction.models import ExtractionCandidate, ExtractionMethod
from pricehunt.extraction.validation import build_candidate
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

PRODUCT_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "price": {"type": "number"},
        "original_price": {"type": "number", "nullable": True},
        "image_url": {"type": "string", "nullable": True},
        "product_url": {"type": "string", "nullable": True},
        "confidence": {"type": "number", "nullable": True},
    },
    "required": ["name", "price"],
}

SINGLE_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {"products": {"type": "array", "items": PRODUCT_SCHEMA}},
    "required": ["products"],
}

BATCH_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "source_id": {"type": "string"},
                    "products": {"type": "array", "items": PRODUCT_SCHEMA},
                },
                "required": ["source_id", "products"],
            },
        },
    },
    "required": ["results"],
}

EXTRACTION_RULES = (
    "Extraction rules:\n"
    "  1. Return one record per distinct product listed in the search results.\n"
    "  2. price is the current selling price in rupees as a JSON number.\n"
    "  3. original_price is the struck-through MRP when shown, otherwise null.\n"
    "  4. Ignore navigation, banners, delivery-time badges and buttons.\n"
    "  5. Resolve relative URLs against the base URL.\n"
    "  6. confidence is your certainty in [0, 1] that the record is a real product.\n"
)


class VertexEscalationClient:
    """Sends retained markup to Gemini and validates the returned products."""

    def __init__(
        self,
        config: VertexConfig | None = None,
        extraction: ExtractionConfig | None = None,
        orchestrator: OrchestratorConfig | None = None,
    ) -> None:
        self._config = config or VertexConfig()
        self._extraction = extraction or ExtractionConfig()
        self._default_confidence = (orchestrator or OrchestratorConfig()).ai_default_confidence
        self._client: Any = None
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialise the Vertex AI client. Returns False when unavailable."""
        if not self._config.project_id:
            return False

        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(
                project=self._config.project_id,
                location=self._config.location,
            )
            self._client = GenerativeModel(self._config.flash_model)
            self._initialized = True
            return True
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.AI_INITIALIZATION_FAILED,
                message=str(exc),
                suppressed=True,
            )
            self._initialized = False
            return False

    @property
    def is_available(self) -> bool:
        return self._initialized and self._client is not None

    def _truncate(self, markup: str) -> str:
        return markup[: self._config.max_markup_chars]

    async def _generate(self, prompt: str, schema: dict[str, Any]) -> dict[str, Any]:
        if not self.is_available:
            raise EscalationError("AI escalation is not configured")
        try:
            from vertexai.generative_models import GenerationConfig

            response = await self._client.generate_content_async(
                prompt,
                generation_config=GenerationConfig(
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
            data = json.loads(response.text)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.AI_ESCALATION_FAILED,
                message=str(exc),
                suppressed=False,
            )
            raise EscalationError(str(exc)) from exc
        if not isinstance(data, dict):
            raise EscalationError("AI response was not a JSON object")
        return data

    def parse_products(self, products: Any, base_url: str) -> list[ExtractionCandidate]:
        """Validate raw product records into candidates, dropping implausible ones."""
        candidates: list[ExtractionCandidate] = []
        seen: set[str] = set()
        if not isinstance(products, list):
            return candidates
        for item in products:
            if not isinstance(item, dict):
                continue
            confidence = item.get("confidence")
            if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
                confidence = self._default_confidence
            candidate = build_candidate(
                name=item.get("name"),
                price=item.get("price"),
                original_price=item.get("original_price"),
                image_url=item.get("image_url"),
                url=item.get("product_url") or item.get("url"),
                method=ExtractionMethod.AI,
                confidence=float(confidence),
                base_url=base_url,
                config=self._extraction,
            )
            if candidate is None or candidate.normalized_name() in seen:
                continue
            seen.add(candidate.normalized_name())
            candidates.append(candidate)
            if len(candidates) >= self._extraction.max_candidates:
                break
        return candidates

    async def extract(
        self, markup: str, source: Source, query: str, base_url: str
    ) -> list[ExtractionCandidate]:
        prompt = (
            "You are an expert e-commerce data extraction specialist. Extract the "
            f"products shown for the search query {query!r} from the HTML below.\n\n"
            f"Source: {source.id}\n"
            f"Base URL: {base_url}\n\n"
            f"{EXTRACTION_RULES}\n"
            f"HTML:\n{self._truncate(markup)}"
        )
        data = await self._generate(prompt, SINGLE_RESPONSE_SCHEMA)
        return self.parse_products(data.get("products"), base_url)

    async def extract_many(
        self, batch: list[tuple[Source, str, str]], query: str
    ) -> dict[str, list[ExtractionCandidate] | EscalationError]:
        """One model call covering every source in ``batch``."""
        if not batch:
            return {}
        sections = []
        for source, markup, base_url in batch:
            sections.append(
                f"=== SOURCE {source.id} (base URL {base_url}) ===\n{self._truncate(markup)}\n"
            )
        prompt = (
            "You are an expert e-commerce data extraction specialist. Each section "
            "below is the HTML of one shop's search results for the query "
            f"{query!r}. Extract the products of every section separately and return "
            "one entry per source_id.\n\n"
            f"{EXTRACTION_RULES}\n"
            + "\n".join(sections)
        )
        data = await self._generate(prompt, BATCH_RESPONSE_SCHEMA)

        by_source: dict[str, Any] = {}
        for entry in data.get("results") or []:
            if isinstance(entry, dict) and isinstance(entry.get("source_id"), str):
                by_source[entry["source_id"]] = entry.get("products")

        results: dict[str, list[ExtractionCandidate] | EscalationError] = {}
        for source, _, base_url in batch:
            if source.id not in by_source:
                results[source.id] = EscalationError(f"No AI result for {source.id}")
                continue
            results[source.id] = self.parse_products(by_source[source.id], base_url)
        return results
