"""Tests for logging helpers."""

import logging

import pytest
import structlog
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer

from shopledger import logger as logger_module


def test_select_renderer_uses_console_in_debug(monkeypatch) -> None:
    monkeypatch.setattr(logger_module.settings, "debug", True)
    renderer = logger_module._select_renderer()
    assert isinstance(renderer, ConsoleRenderer)


def test_select_renderer_uses_json_in_production(monkeypatch) -> None:
    monkeypatch.setattr(logger_module.settings, "debug", False)
    renderer = logger_module._select_renderer()
    assert isinstance(renderer, JSONRenderer)


class RecordingLogger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict]] = []

    def info(self, event, **kwargs):
        self.calls.append(("info", event, kwargs))

    def warning(self, event, **kwargs):
        self.calls.append(("warning", event, kwargs))

    def error(self, event, **kwargs):
        self.calls.append(("error", event, kwargs))


def test_log_timing_records_duration_and_context() -> None:
    recorder = RecordingLogger()

    with logger_module.log_timing("auto_match", logger=recorder, user_id="u1") as ctx:
        ctx["matched_count"] = 3

    level, event, fields = recorder.calls[0]
    assert level == "info"
    assert event == "auto_match completed"
    assert fields["user_id"] == "u1"
    assert fields["matched_count"] == 3
    assert fields["duration_ms"] >= 0
    assert ctx["duration_ms"] == fields["duration_ms"]


@pytest.mark.asyncio
async def test_async_log_timing_logs_even_on_error() -> None:
    recorder = RecordingLogger()

    with pytest.raises(RuntimeError):
        async with logger_module.async_log_timing("bulk_write", logger=recorder, level="warning"):
            raise RuntimeError("boom")

    assert recorder.calls[0][:2] == ("warning", "bulk_write completed")


def test_log_exception_includes_error_details() -> None:
    recorder = RecordingLogger()
    exc = ValueError("bad amount")

    logger_module.log_exception(recorder, exc, "Row rejected", include_traceback=False, row=4)

    level, event, fields = recorder.calls[0]
    assert (level, event) == ("error", "Row rejected")
    assert fields == {
        "error": "bad amount",
        "error_type": "ValueError",
        "error_module": "builtins",
        "row": 4,
    }


def test_log_exception_attaches_traceback() -> None:
    recorder = RecordingLogger()
    exc = KeyError("amount")

    logger_module.log_exception(recorder, exc, "Row rejected", level="warning")

    level, _, fields = recorder.calls[0]
    assert level == "warning"
    assert fields["exc_info"] is exc


def test_configure_logging_sets_level(monkeypatch) -> None:
    calls = {}
    monkeypatch.setattr(logger_module.settings, "debug", False)
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.update(kwargs))
    monkeypatch.setattr(logger_module.structlog, "configure", lambda **kwargs: calls.update(structlog=kwargs))

    logger_module.configure_logging()

    assert calls["level"] == logging.INFO
    assert len(calls["handlers"]) == 1
    assert calls["structlog"]["processors"][-1] is structlog.stdlib.ProcessorFormatter.wrap_for_formatter
