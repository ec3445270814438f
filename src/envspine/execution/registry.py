"""Job handler registry - job type → handler lookup.

Manifesto:
The worker needs to resolve a job's type to the callable that performs
it. The registry decouples registration (at startup, see
:mod:`envspine.execution.handlers`) from resolution (when a job is
executed), and is injectable so tests can use an isolated instance.

ARCHITECTURE
────────────
::

    JobRegistry
      ├── .register(job_type, handler, entity_key=...)
      ├── .get(job_type)          ─ lookup; JobError when unknown
      ├── .entity_key(job_type, request)
      ├── .has(job_type)
      └── .list_handlers()

A handler receives the job's JSON request and returns a JSON-able result
(or ``None``). ``entity_key`` maps the same request to the lock key of the
entity it mutates, e.g. ``environment:prod1a2b3c4d``, or to a tuple of keys
when the job touches more than one entity.

Tags:
    env-spine, execution, registry, handler-registry
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from envspine.core.errors import JobError

Handler = Callable[[str], Any]
EntityKey = "str | tuple[str, ...] | None"
EntityKeyFn = Callable[[str], EntityKey]


class JobRegistry:
    """Injectable job handler registry.

    Example:
        >>> registry = JobRegistry()
        >>> registry.register("create_environment", lambda payload: {"ok": True})
        >>> registry.get("create_environment")("{}")
        {'ok': True}
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._entity_keys: dict[str, EntityKeyFn] = {}

    def register(self, job_type: str, handler: Handler, *, entity_key: EntityKeyFn | None = None) -> None:
        """Register *handler* for *job_type*, replacing any previous one."""
        job_type = str(getattr(job_type, "value", job_type))
        self._handlers[job_type] = handler
        if entity_key is not None:
            self._entity_keys[job_type] = entity_key

    def get(self, job_type: str) -> Handler:
        """Return the handler for *job_type*.

        Raises:
            JobError: If no handler is registered.
        """
        handler = self._handlers.get(job_type)
        if handler is None:
            raise JobError(f"No handler registered for job type '{job_type}'")
        return handler

    def entity_key(self, job_type: str, request: str) -> str | tuple[str, ...] | None:
        """Lock key(s) of the entities a job mutates, or ``None`` if it needs no lock."""
        key_fn = self._entity_keys.get(job_type)
        return key_fn(request) if key_fn else None

    def has(self, job_type: str) -> bool:
        return job_type in self._handlers

    def list_handlers(self) -> list[str]:
        return sorted(self._handlers)

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()
        self._entity_keys.clear()
