"""Tests for the CloudWatch pipeline log filter."""

import logging

import pytest

from src.core.cloudwatch_logging import PipelineLogFilter, setup_cloudwatch_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "message", None, None)


class TestPipelineLogFilter:
    @pytest.mark.parametrize(
        "name",
        ["src.tasks.story_tasks", "src.services.orchestrator", "src.services.story_workflow", "src.core.provider"],
    )
    def test_pipeline_info_passes(self, name):
        assert PipelineLogFilter().filter(_record(name, logging.INFO))

    def test_other_info_is_dropped(self):
        assert not PipelineLogFilter().filter(_record("src.api.routes.health", logging.INFO))

    def test_debug_is_dropped(self):
        assert not PipelineLogFilter().filter(_record("src.services.orchestrator", logging.DEBUG))

    def test_errors_always_pass(self):
        assert PipelineLogFilter().filter(_record("uvicorn.error", logging.ERROR))


def test_disabled_by_default(monkeypatch):
    monkeypatch.delenv("CLOUDWATCH_ENABLED", raising=False)
    assert setup_cloudwatch_logging() is False


def test_enabled_attaches_filtered_handler(monkeypatch):
    class FakeHandler(logging.Handler):
        def emit(self, record):
            pass

    monkeypatch.setenv("CLOUDWATCH_ENABLED", "true")
    monkeypatch.setenv("CLOUDWATCH_LEVEL", "warning")
    handler = FakeHandler()
    monkeypatch.setattr("src.core.cloudwatch_logging._build_handler", lambda group, stream: handler)
    root = logging.getLogger()
    try:
        assert setup_cloudwatch_logging() is True
        assert handler in root.handlers
        assert handler.level == logging.WARNING
        assert any(isinstance(f, PipelineLogFilter) for f in handler.filters)
    finally:
        root.removeHandler(handler)


def test_missing_handler_disables(monkeypatch):
    monkeypatch.setenv("CLOUDWATCH_ENABLED", "true")
    monkeypatch.setattr("src.core.cloudwatch_logging._build_handler", lambda group, stream: None)
    assert setup_cloudwatch_logging() is False
