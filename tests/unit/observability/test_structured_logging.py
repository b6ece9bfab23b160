"""
intentforge — unit tests for structured logging

File: tests/unit/observability/test_structured_logging.py
Last updated: 2026-10-18

Purpose
- Validate JSON-lines log files, correlation fields, and secret redaction.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pytest
import structlog

from intentforge.observability.logging import (
    configure_logging,
    correlation_scope,
    get_active_logging_handle,
    redact_event,
    shutdown_logging,
)

pytestmark = pytest.mark.unit


def _events(path: Path) -> list[dict[str, Any]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def test_events_are_written_as_json_lines_per_build(tmp_path: Path) -> None:
    handle = configure_logging(
        {"log_level": "INFO", "log_dir": str(tmp_path)}, build_id="build_0123456789abcdef"
    )
    logger = structlog.get_logger("intentforge.tests")

    logger.info("stage_started", stage="init")
    logger.debug("hidden_detail")
    handle.flush()

    assert handle.log_path == tmp_path / "build_0123456789abcdef" / "intentforge.jsonl"
    [event] = _events(handle.log_path)
    assert event["event"] == "stage_started"
    assert event["stage"] == "init"
    assert event["level"] == "info"
    assert event["logger"] == "intentforge.tests"
    assert "timestamp" in event


def test_correlation_scope_binds_fields(tmp_path: Path) -> None:
    handle = configure_logging(build_id="run-1", log_dir=tmp_path)
    logger = structlog.get_logger("intentforge.tests")

    with correlation_scope(build_id="build_0123456789abcdef", stage="package"):
        logger.info("stage_committed")
    logger.info("outside_scope")
    handle.flush()

    inside, outside = _events(handle.log_path)
    assert (inside["build_id"], inside["stage"]) == ("build_0123456789abcdef", "package")
    assert "build_id" not in outside


def test_secrets_are_redacted(tmp_path: Path) -> None:
    handle = configure_logging(build_id="run-2", log_dir=tmp_path)
    logger = structlog.get_logger("intentforge.tests")

    logger.warning("collaborator_called", api_key="abc123", detail="sent Bearer xyz.1")
    handle.flush()

    [event] = _events(handle.log_path)
    assert event["api_key"] == "***REDACTED***"
    assert "xyz.1" not in event["detail"]


def test_redaction_handles_nested_values() -> None:
    event = {"event": "x", "config": {"password": "p"}, "note": "token=abc"}

    redacted = redact_event(None, "info", event)

    assert redacted["config"] == {"password": "***REDACTED***"}
    assert redacted["note"] == "token=***REDACTED***"


def test_reconfiguring_replaces_the_active_handle(tmp_path: Path) -> None:
    first = configure_logging(build_id="run-a", log_dir=tmp_path)
    second = configure_logging(build_id="run-b", log_dir=tmp_path)

    assert get_active_logging_handle() is second
    assert first.log_path != second.log_path
    root_handlers = logging.getLogger("intentforge").handlers
    assert not any(handler in root_handlers for handler in first.handlers)
    assert all(handler in root_handlers for handler in second.handlers)
    file_handlers = [h for h in root_handlers if isinstance(h, logging.FileHandler)]
    assert file_handlers == list(second.handlers)

    shutdown_logging()
    assert get_active_logging_handle() is None


@pytest.mark.parametrize("build_id", ["", "a/b"])
def test_invalid_build_directory_names_are_rejected(tmp_path: Path, build_id: str) -> None:
    with pytest.raises(ValueError, match="build_id"):
        configure_logging(build_id=build_id, log_dir=tmp_path)


def test_unknown_log_level_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="unsupported logging level"):
        configure_logging({"log_level": "CHATTY"}, build_id="run-3", log_dir=tmp_path)
