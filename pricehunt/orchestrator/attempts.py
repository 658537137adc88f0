"""Outcome of one source's retrieval chain."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

from pricehunt.errors import FailureKind
from pricehunt.extraction.models import ExtractionCandidate, StructureFingerprint


@dataclass
class ScrapeSuccess:
    candidates: list[ExtractionCandidate]
    avg_confidence: float
    tier: str
    fingerprint: StructureFingerprint | None = None
    kind: Literal["success"] = field(default="success", init=False)


@dataclass
class ScrapeFailure:
    failure_kind: FailureKind
    reason: str
    markup: str | None = None
    kind: Literal["failure"] = field(default="failure", init=False)

    @property
    def escalatable(self) -> bool:
        return self.markup is not None


ScrapeAttempt = Union[ScrapeSuccess, ScrapeFailure]


def mean_confidence(candidates: list[ExtractionCandidate], default: float = 0.0) -> float:
    if not candidates:
        return default
    return sum(c.confidence for c in candidates) / len(candidates)
