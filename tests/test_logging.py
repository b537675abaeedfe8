"""Tests for the structured logging system (stock_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.domain.dtos import Direction
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
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
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        (record,) = _parse_all_logs(stream)
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "stock_kernel.test"
        assert "ts" in record

    def test_extra_fields_are_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        product_id = uuid4()
        get_logger("test").info(
            "aggregate_applied",
            extra={
                "product_id": product_id,
                "direction": Direction.OUT,
                "price": Decimal("1.50"),
            },
        )

        (record,) = _parse_all_logs(stream)
        assert record["product_id"] == str(product_id)
        assert record["direction"] == "OUT"
        assert record["price"] == "1.50"

    def test_exception_fields_include_code_and_attributes(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientStockError("p-1", available=5, required=10)
        except InsufficientStockError:
            get_logger("test").error("movement_rolled_back", exc_info=True)

        (record,) = _parse_all_logs(stream)
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_shortfall"] == 5
        assert "traceback" in record


class TestLogContext:
    def test_bound_fields_appear_and_are_restored(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")

        with LogContext.bind(correlation_id="c-1", scan_code="1234567890123"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["correlation_id"] == "c-1"
        assert inside["scan_code"] == "1234567890123"
        assert "correlation_id" not in outside
        assert "scan_code" not in outside

    def test_nested_bind_restores_outer_value(self):
        with LogContext.bind(actor="outer"):
            with LogContext.bind(actor="inner"):
                assert LogContext.get_all()["actor"] == "inner"
            assert LogContext.get_all()["actor"] == "outer"
        assert "actor" not in LogContext.get_all()

    def test_set_ignores_none(self):
        LogContext.set(actor="a", product_id=None)
        assert LogContext.get_all() == {"actor": "a"}


class TestConfigureLogging:
    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        second, _ = _make_handler()
        configure_logging(handler=second)

        handlers = logging.getLogger("stock_kernel").handlers
        assert [h for h in handlers if h is handler] == [handler]
        assert second not in handlers
        structured = [h for h in handlers if isinstance(h.formatter, StructuredFormatter)]
        assert structured == [handler]

    def test_string_level(self):
        handler, stream = _make_handler()
        configure_logging(level="warning", handler=handler)
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]
