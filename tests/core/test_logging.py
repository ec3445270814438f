"""Tests for logging processors and scoped context."""

from __future__ import annotations

import structlog

from envspine.core.errors import EnvironmentNotFoundError, ProviderError
from envspine.core.logging import LogContext, _ecs_field_names, _flatten_error


class TestLogContext:
    def test_binds_and_unbinds(self):
        with LogContext(job_id="j1", job_type="delete_task"):
            assert structlog.contextvars.get_contextvars() == {"job_id": "j1", "job_type": "delete_task"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_nested_scope_restores_outer_value(self):
        with LogContext(job_id="outer"):
            with LogContext(job_id="inner", entity_id="prod1"):
                assert structlog.contextvars.get_contextvars()["job_id"] == "inner"
            assert structlog.contextvars.get_contextvars() == {"job_id": "outer"}
        assert structlog.contextvars.get_contextvars() == {}


class TestProcessors:
    def test_provider_error_is_flattened(self):
        exc = ProviderError("AccessDenied", "not allowed", operation="ecs.create_cluster")
        event = _flatten_error(None, "error", {"event": "job.failed", "exc": exc})

        assert "exc" not in event
        assert event["error"] == "AccessDenied: not allowed"
        assert event["error.code"] == "AccessDenied"
        assert event["error.category"] == exc.category.value
        assert event["operation"] == "ecs.create_cluster"

    def test_explicit_error_text_wins(self):
        exc = EnvironmentNotFoundError("prod1")
        event = _flatten_error(None, "error", {"event": "job.failed", "error": "custom", "exc": exc})
        assert event["error"] == "custom"
        assert event["entity_id"] == "prod1"
        assert "error.code" not in event

    def test_other_exceptions_untouched(self):
        exc = ValueError("boom")
        event = _flatten_error(None, "error", {"event": "x", "exc": exc})
        assert event["exc"] is exc

    def test_ecs_field_names(self):
        event = _ecs_field_names(None, "info", {"event": "x", "timestamp": "t", "level": "info"})
        assert event == {"event": "x", "@timestamp": "t", "log.level": "info"}
