"""Execution: waiter, job records, stores, registry and the worker.

Handler wiring lives in :mod:`envspine.execution.handlers` and is imported
explicitly by the entry points, since it depends on the orchestration
managers which in turn use the waiter from this package.
"""

from .jobs import Job, JobStatus, JobType, validate_job_transition
from .locks import EntityLocks
from .registry import JobRegistry
from .store import JobStore, MemoryJobStore, SQLiteJobStore
from .waiter import Clock, FakeClock, RealClock, Waiter
from .worker import JobEngine, JobWorker, WorkerStats

__all__ = [
    "Clock",
    "EntityLocks",
    "FakeClock",
    "Job",
    "JobEngine",
    "JobRegistry",
    "JobStatus",
    "JobStore",
    "JobType",
    "JobWorker",
    "MemoryJobStore",
    "RealClock",
    "SQLiteJobStore",
    "Waiter",
    "WorkerStats",
    "validate_job_transition",
]
