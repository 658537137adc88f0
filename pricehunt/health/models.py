"""Health record models."""

from __future__ import annotations

from pydantic import BaseModel

from pricehunt.health.circuit import CircuitState


class HealthRecord(BaseModel):
    """Rolling reliability state for one source.

    Timestamps are epoch seconds; ``0.0`` means the event never happened.
    """

    source_id: str
    total_samples: int = 0
    successful_samples: int = 0
    consecutive_failures: int = 0
    circuit_state: CircuitState = CircuitState.CLOSED
    last_success_at: float = 0.0
    last_failure_at: float = 0.0
    last_failure_reason: str | None = None
    last_item_count: int = 0
    last_fingerprint: str | None = None
    structure_change_count: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_samples == 0:
            return 0.0
        return self.successful_samples / self.total_samples


class HealthView(BaseModel):
    """Read-only per-source view served to API consumers."""

    source_id: str
    enabled: bool
    circuit_state: CircuitState
    success_rate: float
    total_samples: int
    consecutive_failures: int
    last_success_at: float
    last_failure_at: float
    last_failure_reason: str | None = None
    retry_in_s: float = 0.0
