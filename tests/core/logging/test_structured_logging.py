"""Tests for structured logging with trace propagation."""

from __future__ import annotations

import io
import json
from pathlib import Path

from marketcharts.core.logging import bind, configure_logging, log_context, logger


def _read_records(stream: io.StringIO) -> list[dict[str, object]]:
    stream.seek(0)
    lines = [line for line in stream.getvalue().splitlines() if line.strip()]
    return [json.loads(line) for line in lines]


def test_structured_log_contains_trace_and_context() -> None:
    buffer = io.StringIO()
    configure_logging(console_stream=buffer)

    with log_context(trace_id="trace-123", index_name="S&P 500"):
        bind(provider="alpha_vantage", error_code="RATE_LIMITED").warning("primary provider failed")

    records = _read_records(buffer)
    assert len(records) == 1
    record = records[0]
    assert record["level"] == "WARNING"
    assert record["trace_id"] == "trace-123"
    assert record["provider"] == "alpha_vantage"
    assert record["error_code"] == "RATE_LIMITED"
    assert record["index_name"] == "S&P 500"
    assert "context" not in record


def test_trace_id_propagates_within_context() -> None:
    buffer = io.StringIO()
    configure_logging(console_stream=buffer)

    with log_context() as trace_id:
        logger.info("first event")
        logger.info("second event")

    logger.info("outside context")

    records = _read_records(buffer)
    assert len(records) == 3
    assert records[0]["trace_id"] == records[1]["trace_id"] == trace_id
    assert records[2]["trace_id"] != trace_id


def test_level_filters_lower_records() -> None:
    buffer = io.StringIO()
    configure_logging(level="WARNING", console_stream=buffer)

    logger.info("hidden")
    logger.warning("shown")

    records = _read_records(buffer)
    assert [record["message"] for record in records] == ["shown"]


def test_trace_id_generated_when_missing() -> None:
    buffer = io.StringIO()
    configure_logging(console_stream=buffer)

    logger.info("single message")

    records = _read_records(buffer)
    trace_id = records[0]["trace_id"]
    assert isinstance(trace_id, str)
    assert len(trace_id) == 32
    assert all(character in "0123456789abcdef" for character in trace_id)


def test_unpromoted_fields_are_grouped_under_context() -> None:
    buffer = io.StringIO()
    configure_logging(console_stream=buffer)

    with log_context(operation="check_and_update_data"):
        bind(gap_start="2025-01-06").info("fetching gap")

    record = _read_records(buffer)[0]
    assert record["operation"] == "check_and_update_data"
    assert record["provider"] is None
    assert record["context"] == {"gap_start": "2025-01-06"}


def test_file_output_writes_json_lines(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "marketcharts.jsonl"
    configure_logging(console_output=False, file_output=True, file_path=str(log_file))

    bind(provider="stockdata").error("backup failed")
    logger.remove()

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["provider"] == "stockdata"
    assert payload["level"] == "ERROR"
