"""Logging configuration for PriceHunt processes."""

from __future__ import annotations

import logging

_STRUCTURED_FIELDS = ("error_code", "suppressed", "source_id", "tier", "details")


class StructuredFormatter(logging.Formatter):
    """Appends the structured ``extra`` payload of telemetry records to the line."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        parts = []
        for name in _STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value in (None, {}):
                continue
            if hasattr(value, "value"):
                value = value.value
            parts.append(f"{name}={value}")
        message = getattr(record, "error_message", None)
        if message:
            parts.append(f"error_message={message!r}")
        return f"{base} [{' '.join(parts)}]" if parts else base


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the ``pricehunt`` logger."""
    root = logging.getLogger("pricehunt")
    root.setLevel(level.upper())
    if any(getattr(h, "_pricehunt", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler._pricehunt = True  # type: ignore[attr-defined]
    root.addHandler(handler)
