"""Event definitions for the orchestrator's progressive result stream."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from pricehunt.extraction.models import ExtractionCandidate


class SearchEvent(BaseModel):
    """Common envelope. Events are immutable once emitted."""

    sequence: int = Field(description="Monotonic sequence number within the run")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str

    model_config = {"frozen": True}


class Started(SearchEvent):
    kind: Literal["started"] = "started"
    query: str
    source_count: int


class Skipped(SearchEvent):
    kind: Literal["skipped"] = "skipped"
    source: str
    reason: str


class Result(SearchEvent):
    kind: Literal["result"] = "result"
    source: str
    items: list[ExtractionCandidate]
    confidence: float
    from_cache: bool = False
    is_stale: bool = False
    ai_derived: bool = False


class Failed(SearchEvent):
    kind: Literal["failed"] = "failed"
    source: str
    reason: str
    failure_kind: str | None = None


class Completed(SearchEvent):
    kind: Literal["completed"] = "completed"
    success_count: int
    total_count: int
    disabled_sources: list[str] = Field(default_factory=list)


Event = Annotated[
    Union[Started, Skipped, Result, Failed, Completed], Field(discriminator="kind")
]

EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)
