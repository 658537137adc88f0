"""Learned selector table.

Holds at most one selector per source. A selector is learned from a
high-confidence heuristic match and replayed before every other tier on
later extractions for that source. Replays that come back empty count as
misses; a selector that misses too many times in a row is evicted.

When a path is given the table is persisted as a single JSON document,
written atomically.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from pricehunt.extraction.models import LearnedSelector
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class LearnedSelectorTable:
    def __init__(self, path: Path | None = None, eviction_misses: int = 3) -> None:
        self._path = path
        self._eviction_misses = eviction_misses
        self._selectors: dict[str, LearnedSelector] = {}
        self._lock = threading.Lock()
        if path is not None:
            self._load()

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text())
            for item in raw:
                selector = LearnedSelector.model_validate(item)
                self._selectors[selector.source_id] = selector
        except (OSError, ValueError, TypeError, ValidationError) as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SELECTOR_PERSIST_FAILED,
                message=f"Could not load learned selectors: {exc}",
                suppressed=True,
                details={"path": str(self._path)},
            )
            self._selectors = {}

    def _persist(self) -> None:
        if self._path is None:
            return
        payload = [s.model_dump(mode="json") for s in self._selectors.values()]
        temp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w") as f:
                json.dump(payload, f, indent=2)
            temp_path.replace(self._path)
        except OSError as exc:
            if temp_path.exists():
                temp_path.unlink()
            emit_structured_error(
                logger,
                code=ErrorCode.SELECTOR_PERSIST_FAILED,
                message=str(exc),
                suppressed=True,
                details={"path": str(self._path)},
            )

    def get(self, source_id: str) -> LearnedSelector | None:
        with self._lock:
            selector = self._selectors.get(source_id)
            return selector.model_copy() if selector else None

    def all(self) -> list[LearnedSelector]:
        with self._lock:
            return [s.model_copy() for s in self._selectors.values()]

    def learn(self, source_id: str, selector: str) -> LearnedSelector:
        """Store ``selector`` for ``source_id``, replacing any previous one."""
        with self._lock:
            learned = LearnedSelector(source_id=source_id, selector=selector)
            self._selectors[source_id] = learned
            self._persist()
        logger.info("Learned selector for %s: %s", source_id, selector)
        return learned.model_copy()

    def record_replay(self, source_id: str, hit: bool) -> bool:
        """Record a replay outcome. Returns True when the selector was evicted."""
        with self._lock:
            selector = self._selectors.get(source_id)
            if selector is None:
                return False
            if hit:
                selector.success_count += 1
                selector.consecutive_misses = 0
                self._persist()
                return False
            selector.failure_count += 1
            selector.consecutive_misses += 1
            evicted = selector.consecutive_misses > self._eviction_misses
            if evicted:
                del self._selectors[source_id]
            self._persist()
        if evicted:
            logger.info("Evicted learned selector for %s", source_id)
        return evicted

    def remove(self, source_id: str) -> bool:
        with self._lock:
            removed = self._selectors.pop(source_id, None) is not None
            if removed:
                self._persist()
            return removed
