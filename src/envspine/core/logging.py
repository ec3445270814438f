"""
env-spine logging - structured logging for the control plane.

Manifesto:
    Provisioning runs for minutes across several provider APIs, usually on
    a worker thread nobody is watching. Logs are the only narrative of what
    happened, so they are:

    - **Structured:** key/value events, JSON when shipped to aggregation
    - **Correlated:** job_id / job_type bound for the duration of a job
    - **Readable locally:** colored console output when attached to a TTY

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, instance="dev")
             │
             ▼
        structlog processor chain:
          TimeStamper → merge_contextvars → add_log_level → add_logger_name
          → instance metadata → EnvSpineError fields → (ECS names) → renderer

        logger = get_logger(__name__)
        logger.info("environment.created", environment_id="prod1a2b3c4d")
        logger.error("job.failed", exc=error)   # error category + context flattened

The AWS SDK logs through the standard library and is held at WARNING
unless the configured level is DEBUG.

Examples:
    >>> from envspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG")
    >>> logger = get_logger(__name__)
    >>> with LogContext(job_id="01J9Z3", job_type="create_environment"):
    ...     logger.info("job.started")

Tags:
    logging, structlog, observability, env-spine
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from envspine.core.errors import EnvSpineError

SDK_LOGGERS = ("boto3", "botocore", "urllib3")

_service = {"service.name": "env-spine", "service.instance": "default"}


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in _service.items():
        event_dict.setdefault(key, value)
    return event_dict


def _flatten_error(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Expand an ``exc=EnvSpineError`` field into searchable keys."""
    exc = event_dict.get("exc")
    if isinstance(exc, EnvSpineError):
        event_dict.pop("exc")
        event_dict.setdefault("error", exc.message)
        event_dict["error.category"] = exc.category.value
        event_dict["error.retryable"] = exc.retryable
        for key, value in exc.context.to_dict().items():
            event_dict.setdefault(key, value)
        code = getattr(exc, "code", None)
        if code:
            event_dict["error.code"] = code
    return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "env-spine",
    instance: str = "default",
) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for JSON unless stdout is a TTY
        service: Value of ``service.name`` on every event
        instance: Control-plane instance name, ``service.instance`` on every event
    """
    _service["service.name"] = service
    _service["service.instance"] = instance
    numeric_level = getattr(logging, level.upper())

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.dev.set_exc_info,
        _add_service_metadata,
        _flatten_error,
    ]
    if json_format:
        processors += [_ecs_field_names, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    sdk_level = numeric_level if numeric_level <= logging.DEBUG else max(numeric_level, logging.WARNING)
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


class LogContext:
    """Bind context variables for a scope, restoring earlier values on exit.

    Worker threads are reused across jobs, so a job's ``job_id`` must not
    leak into the next job run on the same thread.

    Example:
        with LogContext(job_id="01J9Z3", job_type="delete_service"):
            logger.info("job.started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._bound: AbstractContextManager | None = None

    def __enter__(self) -> LogContext:
        self._bound = structlog.contextvars.bound_contextvars(**self._context)
        self._bound.__enter__()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._bound is not None:
            self._bound.__exit__(*exc_info)
            self._bound = None


__all__ = [
    "SDK_LOGGERS",
    "LogContext",
    "configure_logging",
    "get_logger",
]
