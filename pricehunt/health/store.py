"""Durable health record stores.

Contract: a save is atomic per source. A record is written to a temporary
file and renamed into place, so a reader never observes a torn record and
writes for different sources never share a file.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from pricehunt.health.models import HealthRecord
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class HealthStore(Protocol):
    def load(self) -> dict[str, HealthRecord]: ...

    def save(self, source_id: str, record: HealthRecord) -> None: ...


class InMemoryHealthStore:
    """Process-local store, used in tests and when no data dir is configured."""

    def __init__(self) -> None:
        self._records: dict[str, HealthRecord] = {}
        self._lock = threading.Lock()

    def load(self) -> dict[str, HealthRecord]:
        with self._lock:
            return {k: v.model_copy() for k, v in self._records.items()}

    def save(self, source_id: str, record: HealthRecord) -> None:
        with self._lock:
            self._records[source_id] = record.model_copy()


class JsonHealthStore:
    """One JSON document per source inside ``directory``."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, source_id: str) -> Path:
        return self._directory / f"{_UNSAFE_FILENAME_CHARS.sub('_', source_id)}.json"

    def load(self) -> dict[str, HealthRecord]:
        records: dict[str, HealthRecord] = {}
        for path in sorted(self._directory.glob("*.json")):
            try:
                record = HealthRecord.model_validate_json(path.read_text())
            except (OSError, ValidationError) as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.HEALTH_LOAD_FAILED,
                    message=str(exc),
                    suppressed=True,
                    details={"path": str(path)},
                )
                continue
            records[record.source_id] = record
        return records

    def save(self, source_id: str, record: HealthRecord) -> None:
        target = self.path_for(source_id)
        temp_path = target.with_suffix(".tmp")
        try:
            with open(temp_path, "w") as f:
                f.write(record.model_dump_json(indent=2))
            temp_path.replace(target)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise
