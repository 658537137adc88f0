"""Circuit breaker states and the transitions allowed between them."""

from __future__ import annotations

from enum import Enum


class CircuitState(str, Enum):
    """Per-source circuit breaker state."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


# Each key maps to the set of states it can move to.
VALID_TRANSITIONS: dict[CircuitState, set[CircuitState]] = {
    CircuitState.CLOSED: {CircuitState.OPEN},
    CircuitState.OPEN: {CircuitState.HALF_OPEN},
    CircuitState.HALF_OPEN: {CircuitState.CLOSED, CircuitState.OPEN},
}


class CircuitError(Exception):
    """Raised on an attempt to move a circuit along an undeclared edge."""
