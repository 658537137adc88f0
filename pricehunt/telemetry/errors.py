"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    HEALTH_PERSIST_FAILED = "HEALTH_PERSIST_FAILED"
    HEALTH_LOAD_FAILED = "HEALTH_LOAD_FAILED"
    SELECTOR_PERSIST_FAILED = "SELECTOR_PERSIST_FAILED"
    SELECTOR_REPLAY_FAILED = "SELECTOR_REPLAY_FAILED"
    EXTRACTION_TIER_FAILED = "EXTRACTION_TIER_FAILED"
    RETRIEVAL_TIER_FAILED = "RETRIEVAL_TIER_FAILED"
    CACHE_OPERATION_FAILED = "CACHE_OPERATION_FAILED"
    AI_INITIALIZATION_FAILED = "AI_INITIALIZATION_FAILED"
    AI_ESCALATION_FAILED = "AI_ESCALATION_FAILED"
    EVENT_SUBSCRIBER_FAILURE = "EVENT_SUBSCRIBER_FAILURE"
    API_WEBSOCKET_SEND_FAILED = "API_WEBSOCKET_SEND_FAILED"
    BROWSER_CLEANUP_FAILED = "BROWSER_CLEANUP_FAILED"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    source_id: str | None = None,
    tier: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "pricehunt_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "source_id": source_id,
            "tier": tier,
            "details": details or {},
        },
    )
