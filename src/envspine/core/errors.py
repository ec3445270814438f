"""
Structured error types for env-spine.

Every failure the control plane surfaces is one of a small set of typed
errors. Each carries a category for routing and reporting, a retryable
flag, structured context (entity kind/ID, operation, job) and an optional
chained cause.

Manifesto:
    - **Typed taxonomy:** validation, not-found, convergence-timeout,
      provider and job errors are distinct types, never a bare Exception
    - **Logical IDs travel with the error:** not-found errors always embed
      the entity kind and logical ID the caller asked for
    - **Provider failures stay verbatim:** code and message from the
      provider are preserved so they can be diagnosed from a job record
    - **Error chaining:** the original exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        EnvSpineError                          │
        │   (category, retryable, context, cause)                      │
        ├──────────────────────────────────────────────────────────────┤
        │  ValidationError        ConfigError        ProviderError     │
        │  (VALIDATION)           (CONFIG)           (PROVIDER)        │
        │                                                              │
        │  EntityNotFoundError    ConvergenceTimeoutError              │
        │  (NOT_FOUND)            (TIMEOUT)                            │
        │    ├─ EnvironmentNotFoundError                               │
        │    ├─ DeployNotFoundError                                    │
        │    ├─ ServiceNotFoundError                                   │
        │    └─ TaskNotFoundError                                      │
        │                                                              │
        │  JobError (JOB)                                              │
        │    ├─ JobNotFoundError                                       │
        │    └─ InvalidTransitionError                                 │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = EnvironmentNotFoundError("prod1a2b3c4d")
    >>> err.entity_id
    'prod1a2b3c4d'
    >>> err.to_dict()["category"]
    'NOT_FOUND'

Tags:
    error-handling, exception-hierarchy, env-spine, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"     # Malformed or missing input
    CONFIG = "CONFIG"             # Missing deployment configuration
    NOT_FOUND = "NOT_FOUND"       # Entity or provider resource absent
    TIMEOUT = "TIMEOUT"           # Waiter exhausted its retry budget
    PROVIDER = "PROVIDER"         # Any other cloud provider failure
    JOB = "JOB"                   # Job record lookups and transitions
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        entity_type: Logical entity kind (environment, service, ...)
        entity_id: Logical entity ID
        operation: Name of the operation that failed
        job_id: Job whose execution raised the error
        metadata: Additional key-value pairs
    """

    entity_type: str | None = None
    entity_id: str | None = None
    operation: str | None = None
    job_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity_type", "entity_id", "operation", "job_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EnvSpineError(Exception):
    """
    Base exception for all env-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites rarely need to pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION / CONFIG
# =============================================================================


class ValidationError(EnvSpineError):
    """Input failed validation; never reaches the provider."""

    default_category = ErrorCategory.VALIDATION


class ConfigError(EnvSpineError):
    """A required deployment configuration value is missing or invalid."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, message: str, *, config_key: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.config_key = config_key
        if config_key:
            self.context.metadata["config_key"] = config_key


# =============================================================================
# NOT FOUND
# =============================================================================


class EntityNotFoundError(EnvSpineError):
    """
    A logical entity does not exist.

    Raised when the provider reports "no such resource" for the primary
    resource of an entity, or when a tag lookup for a required relation
    comes back empty. The logical ID and entity kind are always embedded.
    """

    default_category = ErrorCategory.NOT_FOUND
    entity_type: str = "entity"

    def __init__(self, entity_id: str, *, entity_type: str | None = None, message: str | None = None, **kwargs: Any):
        entity_type = entity_type or self.entity_type
        message = message or f"{entity_type.capitalize()} with id '{entity_id}' was not found"
        super().__init__(message, **kwargs)
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.context.entity_type = entity_type
        self.context.entity_id = entity_id


class EnvironmentNotFoundError(EntityNotFoundError):
    entity_type = "environment"


class DeployNotFoundError(EntityNotFoundError):
    entity_type = "deploy"


class ServiceNotFoundError(EntityNotFoundError):
    entity_type = "service"


class TaskNotFoundError(EntityNotFoundError):
    entity_type = "task"


# =============================================================================
# CONVERGENCE / PROVIDER
# =============================================================================


class ConvergenceTimeoutError(EnvSpineError):
    """
    A Waiter exhausted its retry budget before the provider converged.

    Carries the descriptive operation name, the number of checks made and
    the last state the check observed.
    """

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, operation: str, attempts: int, last_state: str | None = None, **kwargs: Any):
        message = f"Timed out waiting for '{operation}' after {attempts} attempt(s)"
        if last_state:
            message += f" (last state: {last_state})"
        super().__init__(message, **kwargs)
        self.operation = operation
        self.attempts = attempts
        self.last_state = last_state
        self.context.operation = operation


class ProviderError(EnvSpineError):
    """
    A cloud provider call failed.

    ``code`` is the machine-readable provider error code (may be empty) and
    ``provider_message`` the human-readable message, both kept verbatim.
    """

    default_category = ErrorCategory.PROVIDER

    def __init__(self, code: str, provider_message: str, *, operation: str | None = None, **kwargs: Any):
        message = f"{code}: {provider_message}" if code else provider_message
        super().__init__(message, **kwargs)
        self.code = code
        self.provider_message = provider_message
        if operation:
            self.context.operation = operation

    @classmethod
    def from_client_error(cls, exc: Exception, operation: str | None = None) -> ProviderError:
        """Translate a botocore ``ClientError`` keeping code and message verbatim."""
        error = getattr(exc, "response", {}).get("Error", {})
        return cls(
            error.get("Code", ""),
            error.get("Message", str(exc)),
            operation=operation,
            cause=exc,
        )


# =============================================================================
# JOBS
# =============================================================================


class JobError(EnvSpineError):
    default_category = ErrorCategory.JOB


class JobNotFoundError(JobError):
    """No job record exists for the given ID (never created or deleted)."""

    def __init__(self, job_id: str, **kwargs: Any):
        super().__init__(f"Job with id '{job_id}' was not found", **kwargs)
        self.job_id = job_id
        self.context.job_id = job_id


class InvalidTransitionError(JobError):
    """An illegal job status transition was attempted (e.g. completed → in_progress)."""

    def __init__(self, current: str, target: str, **kwargs: Any):
        super().__init__(f"Invalid job status transition: {current} → {target}", **kwargs)
        self.current = current
        self.target = target


def format_failure(exc: BaseException) -> str:
    """Render an exception the way job records store it."""
    return f"{type(exc).__name__}: {exc}"


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "EnvSpineError",
    "ValidationError",
    "ConfigError",
    "EntityNotFoundError",
    "EnvironmentNotFoundError",
    "DeployNotFoundError",
    "ServiceNotFoundError",
    "TaskNotFoundError",
    "ConvergenceTimeoutError",
    "ProviderError",
    "JobError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "format_failure",
]
