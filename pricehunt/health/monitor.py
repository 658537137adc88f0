"""Health Monitor: per-source reliability tracking and circuit breaking.

Every source has a rolling window of outcome samples and a circuit
breaker. An OPEN circuit skips the source until an exponential backoff
has elapsed, after which a single probe attempt is allowed (HALF_OPEN).

Contract:
- Unknown sources are fail-open: they are treated as CLOSED with no history.
- A success is a successful fetch *and* a non-zero item count, unless
  ``empty_result_is_failure`` is switched off.
- ``record_outcome`` never raises; persistence failures are reported as
  structured errors and suppressed.
- Mutations for one source are serialised by that source's lock.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from pricehunt.config.settings import HealthConfig
from pricehunt.health.circuit import VALID_TRANSITIONS, CircuitError, CircuitState
from pricehunt.health.models import HealthRecord, HealthView
from pricehunt.health.store import HealthStore, InMemoryHealthStore
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Tracks reliability for every source and decides whether to attempt it."""

    def __init__(
        self,
        store: HealthStore | None = None,
        config: HealthConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or HealthConfig()
        self._store = store if store is not None else InMemoryHealthStore()
        self._clock = clock
        self._records: dict[str, HealthRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._load()

    @property
    def config(self) -> HealthConfig:
        return self._config

    # --- Locking / persistence ---

    def _lock_for(self, source_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(source_id)
            if lock is None:
                lock = self._locks[source_id] = threading.Lock()
            return lock

    def _load(self) -> None:
        try:
            self._records = dict(self._store.load())
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.HEALTH_LOAD_FAILED,
                message=str(exc),
                suppressed=True,
            )
            self._records = {}
        logger.info("Loaded health data for %d sources", len(self._records))

    def _persist(self, record: HealthRecord) -> None:
        try:
            self._store.save(record.source_id, record.model_copy())
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.HEALTH_PERSIST_FAILED,
                message=str(exc),
                suppressed=True,
                source_id=record.source_id,
            )

    def _transition(self, record: HealthRecord, to_state: CircuitState, why: str) -> None:
        """Move a record's circuit along a declared edge.

        Every circuit state change MUST go through this method.
        """
        if to_state not in VALID_TRANSITIONS.get(record.circuit_state, set()):
            raise CircuitError(
                f"Invalid transition: {record.circuit_state.value} -> {to_state.value}"
            )
        from_state = record.circuit_state
        record.circuit_state = to_state
        logger.info(
            "%s: circuit %s -> %s (%s)",
            record.source_id,
            from_state.value,
            to_state.value,
            why,
        )

    # --- Backoff ---

    def backoff_seconds(self, consecutive_failures: int) -> float:
        """Backoff before an OPEN circuit may be probed again."""
        exponent = max(consecutive_failures - 1, 0)
        backoff = self._config.initial_backoff_s * self._config.backoff_multiplier**exponent
        return min(backoff, self._config.max_backoff_s)

    # --- Outcomes ---

    def record_outcome(
        self,
        source_id: str,
        success: bool,
        item_count: int,
        fingerprint: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Fold one attempt into the source's window and update its circuit."""
        with self._lock_for(source_id):
            record = self._records.get(source_id)
            if record is None:
                record = self._records[source_id] = HealthRecord(source_id=source_id)

            now = self._clock()
            succeeded = success and (item_count > 0 or not self._config.empty_result_is_failure)
            record.total_samples += 1
            if succeeded:
                record.successful_samples += 1
                record.consecutive_failures = 0
                record.last_success_at = now
                record.last_item_count = item_count
                if fingerprint is not None:
                    record.last_fingerprint = fingerprint
            else:
                record.consecutive_failures += 1
                record.last_failure_at = now
                record.last_item_count = 0
                if reason:
                    record.last_failure_reason = reason
                elif success:
                    record.last_failure_reason = "No products found"
                else:
                    record.last_failure_reason = "Unknown"

            self._fold_window(record)
            self._update_circuit(record)
            self._persist(record)

        logger.debug(
            "%s: %s (%.0f%% success, %d consecutive failures, state=%s)",
            source_id,
            "success" if succeeded else "failure",
            record.success_rate * 100,
            record.consecutive_failures,
            record.circuit_state.value,
        )

    def _fold_window(self, record: HealthRecord) -> None:
        # Preserve the success ratio rather than dropping the oldest samples.
        max_samples = self._config.max_samples
        if record.total_samples > max_samples:
            ratio = record.successful_samples / record.total_samples
            record.total_samples = max_samples
            record.successful_samples = int(max_samples * ratio)

    def _update_circuit(self, record: HealthRecord) -> None:
        cfg = self._config
        if record.circuit_state == CircuitState.CLOSED:
            if record.consecutive_failures >= cfg.consecutive_failure_threshold:
                self._transition(
                    record,
                    CircuitState.OPEN,
                    f"{record.consecutive_failures} consecutive failures",
                )
            elif (
                record.total_samples >= cfg.min_samples_for_decision
                and record.success_rate < cfg.success_rate_threshold
            ):
                self._transition(
                    record,
                    CircuitState.OPEN,
                    f"success rate {record.success_rate:.0%} below "
                    f"{cfg.success_rate_threshold:.0%}",
                )
        elif record.circuit_state == CircuitState.HALF_OPEN:
            if record.consecutive_failures == 0:
                self._transition(record, CircuitState.CLOSED, "probe succeeded")
            else:
                self._transition(record, CircuitState.OPEN, "probe failed")
        # OPEN: counters move, state waits for should_attempt.

    # --- Decisions ---

    def should_attempt(self, source_id: str) -> bool:
        """Whether the source may be attempted now.

        An OPEN circuit whose backoff has elapsed is advanced to HALF_OPEN.
        """
        with self._lock_for(source_id):
            record = self._records.get(source_id)
            if record is None:
                return True
            if record.circuit_state != CircuitState.OPEN:
                return True

            backoff = self.backoff_seconds(record.consecutive_failures)
            elapsed = self._clock() - record.last_failure_at
            if elapsed >= backoff:
                self._transition(
                    record, CircuitState.HALF_OPEN, f"backoff of {backoff:.0f}s elapsed"
                )
                self._persist(record)
                return True

        logger.info("%s: circuit OPEN, skipping (retry in %.0fs)", source_id, backoff - elapsed)
        return False

    def current_state(self, source_id: str) -> CircuitState:
        record = self._records.get(source_id)
        return record.circuit_state if record else CircuitState.CLOSED

    def has_structure_changed(self, source_id: str, fingerprint: str) -> bool:
        """Compare ``fingerprint`` against the last stored one for the source."""
        with self._lock_for(source_id):
            record = self._records.get(source_id)
            if record is None or record.last_fingerprint is None:
                return False
            if record.last_fingerprint == fingerprint:
                return False
            record.structure_change_count += 1
            self._persist(record)
        logger.warning(
            "%s: structure change detected (old=%s new=%s)",
            source_id,
            record.last_fingerprint,
            fingerprint,
        )
        return True

    # --- Maintenance ---

    def reset(self, source_id: str) -> None:
        with self._lock_for(source_id):
            record = self._records[source_id] = HealthRecord(source_id=source_id)
            self._persist(record)
        logger.info("%s: health reset manually", source_id)

    def reset_all(self) -> None:
        for source_id in list(self._records):
            self.reset(source_id)

    # --- Views ---

    def get_record(self, source_id: str) -> HealthRecord | None:
        record = self._records.get(source_id)
        return record.model_copy() if record else None

    def all_records(self) -> dict[str, HealthRecord]:
        return {k: v.model_copy() for k, v in self._records.items()}

    def disabled_sources(self) -> list[str]:
        return sorted(
            k for k, v in self._records.items() if v.circuit_state == CircuitState.OPEN
        )

    def healthy_sources(self) -> list[str]:
        return sorted(
            k for k, v in self._records.items() if v.circuit_state == CircuitState.CLOSED
        )

    def snapshot(self) -> list[HealthView]:
        now = self._clock()
        views = []
        for source_id in sorted(self._records):
            record = self._records[source_id]
            retry_in = 0.0
            if record.circuit_state == CircuitState.OPEN:
                backoff = self.backoff_seconds(record.consecutive_failures)
                retry_in = max(backoff - (now - record.last_failure_at), 0.0)
            views.append(
                HealthView(
                    source_id=source_id,
                    enabled=record.circuit_state != CircuitState.OPEN,
                    circuit_state=record.circuit_state,
                    success_rate=record.success_rate,
                    total_samples=record.total_samples,
                    consecutive_failures=record.consecutive_failures,
                    last_success_at=record.last_success_at,
                    last_failure_at=record.last_failure_at,
                    last_failure_reason=record.last_failure_reason,
                    retry_in_s=retry_in,
                )
            )
        return views
