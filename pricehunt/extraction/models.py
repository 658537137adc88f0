"""Extraction data models: product candidates with confidence and provenance."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ExtractionMethod(str, Enum):
    """Which strategy produced a candidate."""

    LEARNED_SELECTOR = "learned_selector"
    JSON_LD = "json_ld"
    MICRODATA = "microdata"
    OPEN_GRAPH = "open_graph"
    EMBEDDED_STATE = "embedded_state"
    REPEATED_STRUCTURE = "repeated_structure"
    PRICE_IMAGE_PROXIMITY = "price_image_proximity"
    LINK_PATTERN = "link_pattern"
    NATIVE_API = "native_api"
    AI = "ai"


class ExtractionCandidate(BaseModel):
    """One product found in markup. Immutable once created."""

    name: str
    price: float
    original_price: float | None = None
    image_url: str | None = None
    url: str | None = None
    confidence: float = 0.0
    method: ExtractionMethod

    model_config = {"frozen": True}

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return max(0.0, min(1.0, value))

    @property
    def discount_percent(self) -> int | None:
        if self.original_price is None or self.original_price <= self.price:
            return None
        return int((self.original_price - self.price) / self.original_price * 100)

    def normalized_name(self) -> str:
        return normalize_name(self.name)


def normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


class StructureFingerprint(BaseModel):
    """Content-independent hash of a document's tag/class skeleton."""

    value: str
    depth: int = 10

    model_config = {"frozen": True}


class LearnedSelector(BaseModel):
    """A cached extraction rule replayed before any other tier."""

    source_id: str
    selector: str
    success_count: int = 0
    failure_count: int = 0
    consecutive_misses: int = 0
    learned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExtractionHints(BaseModel):
    """Per-call context the orchestrator knows about the markup."""

    base_url: str | None = None
