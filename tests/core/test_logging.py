"""Tests for log formatting and the rollback audit sink."""
import json

import pytest
from loguru import logger

from src.release_guard.core import logging as release_logging
from src.release_guard.core.logging import json_formatter, trace_id


@pytest.fixture
def captured():
    """Collect JSON-formatted records emitted while the fixture is active."""
    lines = []
    handler_id = logger.add(lines.append, format=json_formatter, level="DEBUG")
    yield lines
    logger.remove(handler_id)


def test_json_line_carries_deployment_and_trace(captured):
    token = trace_id.set("corr-42")
    try:
        logger.bind(deployment_id="deploy-1").info("Rolled back {not a placeholder}")
    finally:
        trace_id.reset(token)

    entry = json.loads(captured[0])
    assert entry["message"] == "Rolled back {not a placeholder}"
    assert entry["deployment_id"] == "deploy-1"
    assert entry["trace_id"] == "corr-42"
    assert entry["level"] == "INFO"


def test_extra_fields_are_flattened(captured):
    logger.bind(audit=True, latency_ms=12.5).warning("slow")

    entry = json.loads(captured[0])
    assert entry["audit"] is True
    assert entry["latency_ms"] == 12.5
    assert entry["deployment_id"] is None


def test_exception_is_summarised(captured):
    try:
        raise IOError("disk full")
    except IOError:
        logger.exception("write failed")

    entry = json.loads(captured[0])
    assert entry["error"] == {"type": "OSError", "message": "disk full"}


def test_audit_sink_only_receives_audit_records(tmp_path, monkeypatch):
    audit_path = tmp_path / "audit.jsonl"
    monkeypatch.setattr(release_logging.settings, "AUDIT_LOG_PATH", str(audit_path))

    release_logging.setup_logging()
    try:
        logger.info("routine")
        logger.bind(deployment_id="deploy-9", audit=True).info("Recorded rollback")
        logger.complete()
    finally:
        monkeypatch.setattr(release_logging.settings, "AUDIT_LOG_PATH", None)
        release_logging.setup_logging()

    [line] = audit_path.read_text().splitlines()
    assert json.loads(line)["deployment_id"] == "deploy-9"
