"""Unit tests for the structured logging helpers in ``darp.observability``."""

from __future__ import annotations

import logging

import pytest

from darp.observability import TRACE_ID, bind_trace_id, enable_console_logging, get_logger, log_info, make_event


def test_null_handler_present() -> None:
    """The package logger stays silent until a handler is attached."""

    logger = get_logger()
    assert any(isinstance(handler, logging.NullHandler) for handler in logger.handlers)


def test_trace_id_in_log(caplog: pytest.LogCaptureFixture) -> None:
    """Structured logs carry the bound trace identifier next to the fields."""

    caplog.set_level(logging.INFO, logger="darp")
    bind_trace_id("trace-123")
    log_info("domain_added", entity="domain", key="src")
    record = caplog.records[-1]
    assert record.getMessage() == "domain_added"
    assert getattr(record, "context") == {"trace_id": "trace-123", "entity": "domain", "key": "src"}


def test_bind_trace_id_clears_context() -> None:
    bind_trace_id("trace-temp")
    bind_trace_id(None)
    assert TRACE_ID.get() is None


def test_make_event_merges_optional_payload() -> None:
    assert make_event("service", "src.api", {"created": True}) == {
        "entity": "service",
        "key": "src.api",
        "created": True,
    }


def test_console_logging_renders_context(capsys: pytest.CaptureFixture[str]) -> None:
    """``--verbose`` output shows level, logger, message, and the context mapping."""

    logger = get_logger()
    previous_level = logger.level
    handler = enable_console_logging()
    try:
        bind_trace_id("abc")
        log_info("deploy_complete", services=4)
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous_level)

    err = capsys.readouterr().err
    assert "INFO darp deploy_complete" in err
    assert "'services': 4" in err
