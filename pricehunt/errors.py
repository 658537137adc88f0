"""Error taxonomy for the extraction core.

Collaborator failures are raised as exceptions; per-source outcomes are
tagged with a ``FailureKind`` and never raised across a source pipeline.
"""

from __future__ import annotations

from enum import Enum


class PriceHuntError(Exception):
    """Base class for collaborator failures."""


class TransportError(PriceHuntError):
    """Non-2xx response or connection failure from a network collaborator."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RenderError(PriceHuntError):
    """Rendering engine failure or empty output."""


class EscalationError(PriceHuntError):
    """Remote AI extraction failure."""


class FailureKind(str, Enum):
    TRANSPORT = "TRANSPORT"
    RENDER = "RENDER"
    EXTRACTION_EMPTY = "EXTRACTION_EMPTY"
    BLOCKED = "BLOCKED"
    TIMEOUT = "TIMEOUT"
    UNEXPECTED = "UNEXPECTED"
    ESCALATION = "ESCALATION"
