from __future__ import annotations

import json
import logging

import pytest

from procbatch.observability.logging import JsonFormatter, configure_logging, debug_enabled


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord("procbatch.unit", logging.INFO, __file__, 1, "unit_started", (), None)
    record.unit_id = 7
    record.pid = 1234

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "unit_started"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "procbatch.unit"
    assert payload["unit_id"] == 7
    assert payload["pid"] == 1234
    assert "lineno" not in payload


@pytest.mark.parametrize("value,expected", [("1", True), ("yes", True), ("TRUE", True), ("0", False), ("", False)])
def test_debug_env_toggle(value: str, expected: bool) -> None:
    assert debug_enabled({"DEBUG": value}) is expected


def test_debug_env_forces_debug_level(monkeypatch: pytest.MonkeyPatch) -> None:
    root = logging.getLogger()
    saved_level, saved_handlers = root.level, list(root.handlers)
    monkeypatch.setenv("DEBUG", "true")
    try:
        configure_logging(level="WARNING")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
