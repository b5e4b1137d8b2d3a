from __future__ import annotations

import io
import json
from decimal import Decimal
from pathlib import Path

import pytest

from invoice_downloader.json_logger import JsonLogger, log_event, timed_event


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_events_carry_run_id_and_serialise_decimals() -> None:
    stream = io.StringIO()
    logger = JsonLogger(run_id="run-1", stream=stream)

    log_event(logger=logger, phase="report", message="Generated transaction report", total=Decimal("12.30"))

    event = _events(stream)[0]
    assert event["run_id"] == "run-1"
    assert event["phase"] == "report"
    assert event["status"] == "ok"
    assert event["total"] == "12.30"
    assert "ts" in event


def test_bound_logger_adds_context_and_shares_close_state() -> None:
    stream = io.StringIO()
    parent = JsonLogger(run_id="run-2", stream=stream)
    child = parent.bind(order_id="111-0000000-0000001")

    child.warn(phase="crawl", message="Skipping existing invoice")
    parent.close()
    child.info(phase="crawl", message="dropped after close")

    events = _events(stream)
    assert len(events) == 1
    assert events[0]["order_id"] == "111-0000000-0000001"
    assert events[0]["status"] == "warn"
    assert child.closed


def test_closing_a_bound_logger_does_not_close_parent() -> None:
    stream = io.StringIO()
    parent = JsonLogger(stream=stream)

    parent.bind(order_id="x").close()
    parent.info(phase="crawl", message="still open")

    assert _events(stream)[0]["message"] == "still open"


def test_debug_events_require_verbose() -> None:
    stream = io.StringIO()

    JsonLogger(stream=stream).debug(phase="throttle", message="hidden")
    JsonLogger(stream=stream, verbose=True).debug(phase="throttle", message="shown")

    assert [event["message"] for event in _events(stream)] == ["shown"]


def test_log_file_receives_a_copy(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "run.jsonl"
    logger = JsonLogger(stream=io.StringIO(), log_file_path=str(log_file))

    logger.info(phase="init", message="Browser session opened")
    logger.close()

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0])["message"] == "Browser session opened"


def test_timed_event_records_duration() -> None:
    stream = io.StringIO()
    logger = JsonLogger(stream=stream)

    with timed_event(logger=logger, phase="login", message="Signed in"):
        pass

    event = _events(stream)[0]
    assert event["message"] == "Signed in"
    assert event["duration_ms"] >= 0


def test_timed_event_logs_and_reraises_failures() -> None:
    stream = io.StringIO()
    logger = JsonLogger(stream=stream)

    with pytest.raises(ValueError):
        with timed_event(logger=logger, phase="init", message="Browser session ready"):
            raise ValueError("launch failed")

    event = _events(stream)[0]
    assert event["status"] == "error"
    assert event["message"] == "Browser session ready failed"
    assert event["error"] == "launch failed"
    assert event["exc_type"] == "ValueError"
    assert "extras" not in event
