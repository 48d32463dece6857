"""
Unit tests for the structured JSON logger and audit events.

Run with:
    pytest tests/test_logging.py -v
"""

from __future__ import annotations

import io
import json
import logging
import uuid

from sessionsync.logger import StructuredLogger
from sessionsync.utils.audit import log_audit_event


def _make_logger() -> tuple[StructuredLogger, io.StringIO]:
    stream = io.StringIO()
    logger = StructuredLogger(
        name=f"sessionsync.test.{uuid.uuid4().hex}",
        level=logging.DEBUG,
        stream=stream,
    )
    return logger, stream


def test_lines_are_json_with_extra_fields():
    logger, stream = _make_logger()

    logger.info("Resolved %s", "u1", extra={"event": "RESOLVE_DONE", "user_id": "u1"})

    line = json.loads(stream.getvalue().strip())
    assert line["level"] == "INFO"
    assert line["message"] == "Resolved u1"
    assert line["extra"] == {"event": "RESOLVE_DONE", "user_id": "u1"}


def test_exception_is_serialised():
    logger, stream = _make_logger()

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.error("Failed", exc_info=True)

    line = json.loads(stream.getvalue().strip())
    assert "RuntimeError: boom" in line["exception"]


def test_audit_event_is_logged_and_returned():
    logger, stream = _make_logger()

    event = log_audit_event(
        logger,
        action="SIGN_OUT",
        entity_type="Session",
        entity_id="u1",
        user_id="u1",
        details={"sandbox": False},
    )

    assert event.action == "SIGN_OUT"
    line = json.loads(stream.getvalue().strip())
    assert line["message"].startswith("AUDIT: ")
    payload = json.loads(line["message"][len("AUDIT: "):])
    assert payload["entity_id"] == "u1"
    assert payload["details"] == {"sandbox": False}
