"""Tests for the structured logging system (program_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from program_kernel.exceptions import MarginFloorViolationError
from program_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
    timed_operation,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        (record,) = _parse_all_logs(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "program_kernel.test"
        assert "ts" in record

    def test_extra_fields_and_decimals(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "program_recalculated", extra={"item_count": 2, "margin": Decimal("0.6500")}
        )

        (record,) = _parse_all_logs(stream)
        assert record["item_count"] == 2
        assert record["margin"] == "0.6500"

    def test_bound_context_is_restored(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        program_id = uuid4()

        with LogContext.bind(program_id=program_id, actor_id=None):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["program_id"] == str(program_id)
        assert "actor_id" not in inside
        assert "program_id" not in outside

    def test_program_finance_error_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        program_id = uuid4()
        try:
            raise MarginFloorViolationError(program_id, Decimal("-0.25"), Decimal("-80"))
        except MarginFloorViolationError:
            get_logger("test").error("item_request_failed", exc_info=True)

        (record,) = _parse_all_logs(stream)
        assert record["exc_code"] == "FINANCE_CHARGES_MARGIN_FLOOR"
        assert record["exc_type"] == "MarginFloorViolationError"
        assert record["exc_program_id"] == str(program_id)
        assert record["exc_margin"] == "-0.25"
        assert "traceback" in record


class TestConfigureLogging:
    def test_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        get_logger("test").warning("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)

        get_logger("test").info("dropped")

        assert stream.getvalue() == ""


class TestLogContext:
    def test_unknown_field_is_rejected(self):
        with pytest.raises(ValueError):
            LogContext.bind(programme_id="typo")
        with pytest.raises(ValueError):
            LogContext.set(member="x")

    def test_nested_binds_restore_outer_values(self):
        outer, inner = uuid4(), uuid4()

        with LogContext.bind(program_id=outer):
            with LogContext.bind(program_id=inner, item_id=7):
                assert LogContext.get_all() == {"program_id": str(inner), "item_id": "7"}
            assert LogContext.get_all() == {"program_id": str(outer)}
        assert LogContext.get_all() == {}


class TestTimedOperation:
    def test_completed_record_carries_context_and_summary(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        job_id = uuid4()

        with timed_operation(logger, "progress_import", import_job_id=job_id) as summary:
            logger.info("inside")
            summary["total_rows"] = 10

        inside, done = _parse_all_logs(stream)
        assert inside["operation"] == "progress_import"
        assert inside["import_job_id"] == str(job_id)
        assert done["message"] == "operation_completed"
        assert done["total_rows"] == 10
        assert done["duration_ms"] >= 0
        assert "operation" not in LogContext.get_all()

    def test_failure_is_logged_with_code_and_reraised(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        program_id = uuid4()

        with pytest.raises(MarginFloorViolationError):
            with timed_operation(get_logger("test"), "create_item", program_id=program_id):
                raise MarginFloorViolationError(program_id, Decimal("-0.1"), Decimal("-20"))

        (record,) = _parse_all_logs(stream)
        assert record["message"] == "operation_failed"
        assert record["level"] == "WARNING"
        assert record["operation"] == "create_item"
        assert record["error_type"] == "MarginFloorViolationError"
        assert record["error_code"] == "FINANCE_CHARGES_MARGIN_FLOOR"
