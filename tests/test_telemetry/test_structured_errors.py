"""Tests for structured error telemetry and the log formatter."""

import logging

from pricehunt.telemetry.errors import ErrorCode, emit_structured_error
from pricehunt.telemetry.log_setup import StructuredFormatter, configure_logging


class TestEmitStructuredError:
    def test_record_fields(self, caplog):
        logger = logging.getLogger("pricehunt.test")
        emit_structured_error(
            logger,
            code=ErrorCode.CACHE_OPERATION_FAILED,
            message="disk full",
            suppressed=True,
            source_id="zepto",
            tier="static",
        )
        (record,) = caplog.records
        assert record.levelno == logging.ERROR
        assert record.getMessage() == "pricehunt_error"
        assert record.error_code == ErrorCode.CACHE_OPERATION_FAILED
        assert record.error_message == "disk full"
        assert record.suppressed is True
        assert record.source_id == "zepto"
        assert record.tier == "static"
        assert record.details == {}


class TestStructuredFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("pricehunt.x", logging.ERROR, __file__, 1, "pricehunt_error", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_appends_structured_fields(self):
        line = StructuredFormatter("%(message)s").format(
            self._record(
                error_code=ErrorCode.AI_ESCALATION_FAILED,
                suppressed=False,
                source_id="blinkit",
                error_message="quota",
            )
        )
        assert line == (
            "pricehunt_error [error_code=AI_ESCALATION_FAILED suppressed=False "
            "source_id=blinkit error_message='quota']"
        )

    def test_plain_record_unchanged(self):
        assert StructuredFormatter("%(message)s").format(self._record()) == "pricehunt_error"


class TestConfigureLogging:
    def test_single_handler(self):
        logger = logging.getLogger("pricehunt")
        before = list(logger.handlers)
        try:
            configure_logging("debug")
            configure_logging("info")
            added = [h for h in logger.handlers if h not in before]
            assert len(added) <= 1
            assert logger.level == logging.INFO
        finally:
            for handler in logger.handlers[:]:
                if handler not in before:
                    logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
