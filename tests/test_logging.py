"""Tests for perf_proof.utils.logging."""

from __future__ import annotations

import json
import logging

from perf_proof.config import LoggingConfig
from perf_proof.utils.logging import _JsonFormatter, configure_logging, format_counters


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("perf_proof.test", logging.INFO, __file__, 1, "ran %s", ("ok",), None)
    for key, val in extra.items():
        setattr(record, key, val)
    return record


def test_format_counters_keeps_order():
    assert format_counters({"b": 2, "a": 1}) == "b=2 a=1"


def test_json_formatter_includes_extra_fields():
    line = _JsonFormatter().format(_record(user_id="user-1", snapshots_checked=3))
    payload = json.loads(line)
    assert payload["msg"] == "ran ok"
    assert payload["level"] == "INFO"
    assert payload["user_id"] == "user-1"
    assert payload["snapshots_checked"] == 3


def test_configure_logging_writes_file(tmp_path):
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    log_file = tmp_path / "logs" / "perf.log"
    try:
        configure_logging(LoggingConfig(level="INFO", log_file=str(log_file)))
        logging.getLogger("perf_proof.test").info("hello")
        for handler in root.handlers:
            handler.flush()
        assert "hello" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)
