"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO
from logging.handlers import RotatingFileHandler

import pytest

from app.core.config import LogSettings
from app.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    configure_logging,
    set_request_id,
)


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_client_addresses():
    """Client addresses never reach the log output in clear text."""

    logger, stream = _capture("test_redaction")

    logger.info(
        "rate_limit.allowed",
        extra={
            "client_ip": "203.0.113.7",
            "x-forwarded-for": "198.51.100.2, 10.0.0.1",
            "key_hash": "abc123",
        },
    )

    output = stream.getvalue()

    assert "203.0.113.7" not in output
    assert "198.51.100.2" not in output
    assert "[REDACTED]" in output
    assert "abc123" in output


def test_sensitive_filter_redacts_document_content():
    """Uploaded file names and extracted text are redacted."""

    logger, stream = _capture("test_content_redaction")

    logger.info(
        "document.converted",
        extra={
            "file_name": "salary-review-jane-doe.xlsx",
            "text_content": "Jane Doe, 120000",
            "output_bytes": 2048,
        },
    )

    output = stream.getvalue()

    assert "jane-doe" not in output
    assert "120000" not in output
    assert "output_bytes" in output


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""

    logger, stream = _capture("test_safe_fields")

    logger.info(
        "request.completed",
        extra={
            "route": "/v1/images/convert",
            "status": 200,
            "duration_ms": 150.5,
        },
    )

    payload = json.loads(stream.getvalue())

    assert payload["message"] == "request.completed"
    assert payload["route"] == "/v1/images/convert"
    assert payload["status"] == 200
    assert "[REDACTED]" not in stream.getvalue()


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""

    logger, stream = _capture("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "authorization": "Bearer secret-token",
                "user-agent": "pytest",
            },
        },
    )

    output = stream.getvalue()

    assert "secret-token" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_request_id_is_attached_from_context():
    logger, stream = _capture("test_request_id")

    set_request_id("req-42")
    try:
        logger.info("size_search.finished", extra={"attempts": 3})
    finally:
        clear_request_id()

    payload = json.loads(stream.getvalue())
    assert payload["request_id"] == "req-42"
    assert payload["attempts"] == 3


def test_binary_payloads_are_summarised():
    logger, stream = _capture("test_binary")

    logger.info(
        "image.converted",
        extra={"output": b"\x89PNG" + b"\x00" * 96, "parts": [bytearray(b"abc")]},
    )

    payload = json.loads(stream.getvalue())
    assert payload["output"] == "<100 bytes>"
    assert payload["parts"] == ["<3 bytes>"]


def test_exception_is_rendered_in_payload():
    logger, stream = _capture("test_exception")

    try:
        raise RuntimeError("encoder crashed")
    except RuntimeError:
        logger.error("image.conversion_failed", exc_info=True, extra={"format": "webp"})

    payload = json.loads(stream.getvalue())
    assert payload["format"] == "webp"
    assert "RuntimeError: encoder crashed" in payload["exception"]


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_debug_flag_forces_debug_level(restore_root_logger):
    configure_logging(LogSettings(level="WARNING"), debug=True)

    assert restore_root_logger.level == logging.DEBUG
    assert logging.getLogger("PIL").level == logging.INFO


def test_level_comes_from_settings_without_debug(restore_root_logger):
    configure_logging(LogSettings(level="WARNING"), debug=False)

    assert restore_root_logger.level == logging.WARNING


def test_file_output_uses_rotating_handler(restore_root_logger, tmp_path):
    log_file = tmp_path / "logs" / "converter.log"

    configure_logging(LogSettings(output="file", file_path=str(log_file)), debug=False)
    logging.getLogger("test_file_output").warning("rate_limit.exceeded", extra={"key_hash": "abc"})

    (handler,) = restore_root_logger.handlers
    assert isinstance(handler, RotatingFileHandler)
    handler.flush()
    handler.close()
    payload = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert payload["message"] == "rate_limit.exceeded"
    assert payload["key_hash"] == "abc"
