"""Adaptive Extractor: markup to confidence-scored product candidates.

Tier chain, stopping once enough de-duplicated candidates exist:

1. learned-selector replay
2. structured data (JSON-LD, microdata, Open Graph)
3. embedded application state
4. DOM heuristics (repeated structures, price/image proximity, detail links)

Extraction is synchronous and never escalates to a remote service; when
every tier comes back empty the result is an empty list. A tier that raises
is reported as a structured error and treated as empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from bs4 import BeautifulSoup

from pricehunt.config.settings import ExtractionConfig
from pricehunt.config.sources import Source
from pricehunt.extraction.embedded_state import EmbeddedStateExtractor
from pricehunt.extraction.fingerprint import compute_fingerprint
from pricehunt.extraction.heuristics import HeuristicExtractor, Match, build_selector
from pricehunt.extraction.models import (
    ExtractionCandidate,
    ExtractionHints,
    ExtractionMethod,
    StructureFingerprint,
)
from pricehunt.extraction.selectors import LearnedSelectorTable
from pricehunt.extraction.structured import StructuredDataExtractor
from pricehunt.extraction.validation import validate_candidate
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

MAX_REPLAY_MATCHES = 20


@dataclass
class ExtractionReport:
    candidates: list[ExtractionCandidate]
    fingerprint: StructureFingerprint
    tiers: list[str] = field(default_factory=list)

    @property
    def average_confidence(self) -> float:
        if not self.candidates:
            return 0.0
        return sum(c.confidence for c in self.candidates) / len(self.candidates)


class _CandidateSet:
    """Accepted candidates in discovery order, unique by normalised name."""

    def __init__(self, config: ExtractionConfig) -> None:
        self._config = config
        self._seen: set[str] = set()
        self.items: list[ExtractionCandidate] = []

    def add(self, candidates: list[ExtractionCandidate]) -> None:
        for candidate in candidates:
            if candidate.confidence < self._config.min_confidence:
                continue
            if not validate_candidate(candidate, self._config):
                continue
            key = candidate.normalized_name()
            if key in self._seen:
                continue
            self._seen.add(key)
            self.items.append(candidate)

    def enough(self) -> bool:
        return len(self.items) >= self._config.enough_candidates


class AdaptiveExtractor:
    """Runs the tier chain for one source's markup."""

    def __init__(
        self,
        config: ExtractionConfig | None = None,
        selectors: LearnedSelectorTable | None = None,
    ) -> None:
        self._config = config or ExtractionConfig()
        self._selectors = (
            selectors
            if selectors is not None
            else LearnedSelectorTable(eviction_misses=self._config.selector_eviction_misses)
        )
        self._structured = StructuredDataExtractor(self._config)
        self._embedded = EmbeddedStateExtractor(self._config)

    @property
    def selectors(self) -> LearnedSelectorTable:
        return self._selectors

    def extract(
        self, markup: str, source: Source, hints: ExtractionHints | None = None
    ) -> list[ExtractionCandidate]:
        return self.extract_with_report(markup, source, hints).candidates

    def extract_with_report(
        self, markup: str, source: Source, hints: ExtractionHints | None = None
    ) -> ExtractionReport:
        cfg = self._config
        base_url = (hints.base_url if hints and hints.base_url else None) or source.base_url
        soup = BeautifulSoup(markup or "", "html.parser")
        heuristics = HeuristicExtractor(cfg)
        found = _CandidateSet(cfg)
        tiers: list[str] = []

        def run(tier: str, fn: Callable[[], list[ExtractionCandidate]]) -> None:
            tiers.append(tier)
            found.add(self._guarded(tier, source.id, fn))

        if self._selectors.get(source.id) is not None:
            run("learned_selector", lambda: self._replay(soup, source.id, base_url, heuristics))

        if not found.enough():
            run("structured", lambda: self._structured.extract(soup, base_url))
        if not found.enough():
            run("embedded_state", lambda: self._embedded.extract(soup, base_url))

        if not found.enough():
            matches: list[Match] = []
            strategies = (
                ("repeated_structure", heuristics.repeated_structures),
                ("price_image_proximity", heuristics.price_image_proximity),
                ("link_pattern", heuristics.link_patterns),
            )
            for tier, strategy in strategies:
                if found.enough():
                    break
                tier_matches = self._guarded(tier, source.id, lambda s=strategy: s(soup, base_url))
                tiers.append(tier)
                matches.extend(tier_matches)
                found.add([candidate for candidate, _ in tier_matches])
            self._learn(source.id, matches)

        ranked = sorted(found.items, key=lambda c: c.confidence, reverse=True)
        candidates = ranked[: cfg.max_candidates]
        fingerprint = compute_fingerprint(soup, cfg.fingerprint_depth)
        logger.debug(
            "Extraction finished",
            extra={"source_id": source.id, "tiers": tiers, "count": len(candidates)},
        )
        return ExtractionReport(candidates=candidates, fingerprint=fingerprint, tiers=tiers)

    def _guarded(self, tier: str, source_id: str, fn: Callable[[], list]) -> list:
        try:
            return fn()
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.EXTRACTION_TIER_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=source_id,
                tier=tier,
            )
            return []

    def _replay(
        self,
        soup: BeautifulSoup,
        source_id: str,
        base_url: str,
        heuristics: HeuristicExtractor,
    ) -> list[ExtractionCandidate]:
        learned = self._selectors.get(source_id)
        if learned is None:
            return []
        try:
            elements = soup.select(learned.selector, limit=MAX_REPLAY_MATCHES)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SELECTOR_REPLAY_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=source_id,
                details={"selector": learned.selector},
            )
            elements = []

        results = []
        for element in elements:
            candidate = heuristics.candidate_from_element(
                element, base_url, ExtractionMethod.LEARNED_SELECTOR
            )
            if candidate is not None:
                results.append(candidate)
        self._selectors.record_replay(source_id, hit=bool(results))
        return results

    def _learn(self, source_id: str, matches: list[Match]) -> None:
        for candidate, element in matches:
            if candidate.confidence < self._config.learn_threshold:
                continue
            selector = build_selector(element)
            if not selector:
                continue
            current = self._selectors.get(source_id)
            if current is None or current.selector != selector:
                self._selectors.learn(source_id, selector)
            return
