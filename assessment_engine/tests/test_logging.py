"""
Tests for the logging helpers and error serialization.
"""

import json
import logging

from assessment_engine.common.error_handling import SessionNotFoundError, StoreError
from assessment_engine.common.logger import JsonFormatter, configure_logger, with_context


def test_json_formatter_merges_context():
    logger = logging.getLogger("assessment_engine.tests.json")
    adapter = with_context(logger, session_id="s-1")
    msg, kwargs = adapter.process("Answer recorded", {})
    record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, msg, (), None, extra=kwargs["extra"])

    data = json.loads(JsonFormatter().format(record))

    assert data["session_id"] == "s-1"
    assert data["level"] == "INFO"
    assert data["message"] == "Answer recorded [session_id=s-1]"


def test_context_can_be_extended():
    adapter = with_context(session_id="s-1").with_context(question_id="q-1")
    assert adapter.extra == {"session_id": "s-1", "question_id": "q-1"}


def test_configure_logger_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "engine.log"
    logger = configure_logger("assessment_engine.tests.file", "debug", log_file=str(log_file),
                              console_output=False)
    logger.debug("hello")
    for handler in logger.handlers:
        handler.flush()
    assert "hello" in log_file.read_text()


def test_error_to_dict():
    error = StoreError("Failed to save session", cause=RuntimeError("disk full"))
    data = error.to_dict()
    assert data["code"] == "store_error"
    assert data["details"]["cause"]["type"] == "RuntimeError"


def test_not_found_carries_identifier():
    error = SessionNotFoundError("s-9")
    assert error.details["session_id"] == "s-9"
    assert "s-9" in str(error)
