"""Job records - pollable state of asynchronous orchestration work.

A job carries one orchestration request from submission to a terminal
result. Callers submit, receive a job ID immediately, and poll.

Manifesto:
    Provisioning takes minutes. Callers must never block on it, and they
    must always be able to ask "where is my request?" - before a worker
    picked it up, while it runs, after it failed. A job record answers
    that question with a status, and with a result or the stringified
    failure once the job is done.

Valid transition graph::

    QUEUED       → IN_PROGRESS
    IN_PROGRESS  → COMPLETED | ERROR
    COMPLETED    → (terminal)
    ERROR        → (terminal)

Tags:
    env-spine, execution, jobs, state-machine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from envspine.core.errors import InvalidTransitionError
from envspine.core.timestamps import to_iso8601, utc_now


class JobStatus(str, Enum):
    QUEUED = "queued"  # Persisted, waiting for a worker
    IN_PROGRESS = "in_progress"  # Claimed by exactly one worker
    COMPLETED = "completed"  # Finished; result holds the output
    ERROR = "error"  # Finished; result holds the failure

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.IN_PROGRESS}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.COMPLETED, JobStatus.ERROR}),
    JobStatus.COMPLETED: frozenset(),  # terminal
    JobStatus.ERROR: frozenset(),  # terminal
}


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_job_transition(JobStatus.IN_PROGRESS, JobStatus.COMPLETED)
        >>> validate_job_transition(JobStatus.COMPLETED, JobStatus.IN_PROGRESS)
        InvalidTransitionError: Invalid job status transition: completed → in_progress
    """
    if target not in JOB_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value)


class JobType(str, Enum):
    """Orchestration operations a job can carry."""

    CREATE_ENVIRONMENT = "create_environment"
    UPDATE_ENVIRONMENT = "update_environment"
    DELETE_ENVIRONMENT = "delete_environment"
    CREATE_ENVIRONMENT_LINK = "create_environment_link"
    DELETE_ENVIRONMENT_LINK = "delete_environment_link"
    CREATE_SERVICE = "create_service"
    UPDATE_SERVICE = "update_service"
    SCALE_SERVICE = "scale_service"
    DELETE_SERVICE = "delete_service"
    CREATE_DEPLOY = "create_deploy"
    DELETE_DEPLOY = "delete_deploy"
    CREATE_TASK = "create_task"
    DELETE_TASK = "delete_task"


@dataclass
class Job:
    """One asynchronous unit of orchestration work.

    ``request`` is the JSON-encoded request dataclass; ``result`` is set
    only once the job is terminal (JSON output on completion, the failure
    text on error).
    """

    job_id: str
    job_type: str
    request: str
    status: JobStatus = JobStatus.QUEUED
    result: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    worker_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_type": self.job_type,
            "status": self.status.value,
            "request": self.request,
            "result": self.result,
            "created_at": to_iso8601(self.created_at),
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "worker_id": self.worker_id,
        }
