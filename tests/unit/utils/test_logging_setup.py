"""Unit tests for logging setup."""

from __future__ import annotations

import json
import logging
import sys

import pytest
from rich.logging import RichHandler

from tunnelport.models import LogLevel, ObservabilityConfig
from tunnelport.utils.logging_config import (
    CorrelationFilter,
    StructuredFormatter,
    get_correlation_id,
    set_correlation_id,
    setup_logging,
)

pytestmark = [pytest.mark.unit]


def test_setup_logging_console_only():
    """Test a Rich console handler is attached at the configured level."""
    setup_logging(ObservabilityConfig(log_level=LogLevel.WARNING))

    tunnelport_logger = logging.getLogger("tunnelport")
    assert tunnelport_logger.level == logging.WARNING
    assert tunnelport_logger.propagate is False
    assert [type(h) for h in tunnelport_logger.handlers] == [RichHandler]
    console = tunnelport_logger.handlers[0]
    assert console.level == logging.WARNING
    assert any(isinstance(f, CorrelationFilter) for f in console.filters)
    assert get_correlation_id() is not None


def test_setup_logging_structured_file(tmp_path):
    """Test structured file logging writes one JSON object per record."""
    log_file = tmp_path / "logs" / "tunnelport.log"
    setup_logging(
        ObservabilityConfig(
            log_level=LogLevel.DEBUG,
            log_file=str(log_file),
            structured_logging=True,
        )
    )
    set_correlation_id("session-1")

    logging.getLogger("tunnelport.nat.keeper").info(
        "port forwarded is %d", 4000, extra={"port": 4000}
    )
    for handler in logging.getLogger("tunnelport").handlers:
        handler.flush()

    entry = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
    assert entry["message"] == "port forwarded is 4000"
    assert entry["logger"] == "tunnelport.nat.keeper"
    assert entry["level"] == "INFO"
    assert entry["correlation_id"] == "session-1"
    assert entry["port"] == 4000


def test_correlation_filter_tags_record():
    """Test records are tagged with the current correlation ID."""
    set_correlation_id("abc")
    record = logging.LogRecord("tunnelport", logging.INFO, __file__, 1, "x", (), None)

    assert CorrelationFilter().filter(record) is True
    assert record.correlation_id == "abc"


def test_structured_formatter_exception():
    """Test exceptions are serialized in the JSON entry."""
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord(
            "tunnelport", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
        )

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["message"] == "failed"
    assert "RuntimeError: boom" in entry["exception"]
