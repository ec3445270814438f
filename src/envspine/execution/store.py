"""Job persistence.

Two interchangeable backends share one contract:

.. code-block:: text

    JobStore
      ├── create(job)               persist a QUEUED job
      ├── get(job_id)               raises JobNotFoundError when absent
      ├── list(status=None)         oldest first
      ├── queued(limit)             IDs of QUEUED jobs, oldest first
      ├── claim(job_id, worker_id)  QUEUED → IN_PROGRESS, True for exactly one caller
      ├── complete(job_id, result)  IN_PROGRESS → COMPLETED
      ├── fail(job_id, error)       IN_PROGRESS → ERROR
      └── delete(job_id)            drop the record; no side effects

    MemoryJobStore    dict + lock (tests, single process)
    SQLiteJobStore    sqlite3 table ``jobs`` shared by CLI and worker

``claim`` is the only write a worker races on. In SQLite it is a
conditional ``UPDATE ... WHERE status = 'queued'`` whose row count says
whether this caller won.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any

from envspine.core.errors import JobNotFoundError
from envspine.core.logging import get_logger
from envspine.core.timestamps import from_iso8601, to_iso8601, utc_now

from .jobs import Job, JobStatus, validate_job_transition

logger = get_logger(__name__)


class JobStore(ABC):
    @abstractmethod
    def create(self, job: Job) -> None: ...

    @abstractmethod
    def get(self, job_id: str) -> Job: ...

    @abstractmethod
    def list(self, status: JobStatus | None = None) -> list[Job]: ...

    @abstractmethod
    def queued(self, limit: int = 10) -> list[str]: ...

    @abstractmethod
    def claim(self, job_id: str, worker_id: str) -> bool: ...

    @abstractmethod
    def complete(self, job_id: str, result: str | None) -> None: ...

    @abstractmethod
    def fail(self, job_id: str, error: str) -> None: ...

    @abstractmethod
    def delete(self, job_id: str) -> None: ...


class MemoryJobStore(JobStore):
    """In-process job store guarded by a single lock."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.job_id] = replace(job)

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return replace(job)

    def list(self, status: JobStatus | None = None) -> list[Job]:
        with self._lock:
            jobs = [replace(j) for j in self._jobs.values() if status is None or j.status == status]
        return sorted(jobs, key=lambda j: (j.created_at, j.job_id))

    def queued(self, limit: int = 10) -> list[str]:
        return [j.job_id for j in self.list(JobStatus.QUEUED)[:limit]]

    def claim(self, job_id: str, worker_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.QUEUED:
                return False
            job.status = JobStatus.IN_PROGRESS
            job.started_at = utc_now()
            job.worker_id = worker_id
            return True

    def complete(self, job_id: str, result: str | None) -> None:
        self._finish(job_id, JobStatus.COMPLETED, result)

    def fail(self, job_id: str, error: str) -> None:
        self._finish(job_id, JobStatus.ERROR, error)

    def _finish(self, job_id: str, status: JobStatus, result: str | None) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            validate_job_transition(job.status, status)
            job.status = status
            job.result = result
            job.finished_at = utc_now()

    def delete(self, job_id: str) -> None:
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                raise JobNotFoundError(job_id)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id      TEXT PRIMARY KEY,
    job_type    TEXT NOT NULL,
    request     TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'queued',
    result      TEXT,
    created_at  TEXT NOT NULL,
    started_at  TEXT,
    finished_at TEXT,
    worker_id   TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status, created_at);
"""


class SQLiteJobStore(JobStore):
    """Job store on a sqlite3 database.

    Uses one connection with ``check_same_thread=False``; every statement
    runs under an internal lock because SQLite serializes writers anyway.
    """

    def __init__(self, db_path: str | None = None, conn: sqlite3.Connection | None = None):
        if conn is not None:
            self._conn = conn
            self._owns_conn = False
        elif db_path:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._owns_conn = True
        else:
            raise ValueError("Either db_path or conn must be provided")

        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        if self._owns_conn:
            self._conn.close()

    def create(self, job: Job) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO jobs (job_id, job_type, request, status, result, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (job.job_id, job.job_type, job.request, job.status.value, job.result, to_iso8601(job.created_at)),
            )
            self._conn.commit()

    def get(self, job_id: str) -> Job:
        with self._lock:
            row = self._conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return _row_to_job(row)

    def list(self, status: JobStatus | None = None) -> list[Job]:
        sql = "SELECT * FROM jobs"
        params: tuple[Any, ...] = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (status.value,)
        sql += " ORDER BY created_at ASC, job_id ASC"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_job(r) for r in rows]

    def queued(self, limit: int = 10) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT job_id FROM jobs WHERE status = 'queued' ORDER BY created_at ASC, job_id ASC LIMIT ?",
                (limit,),
            ).fetchall()
        return [r["job_id"] for r in rows]

    def claim(self, job_id: str, worker_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE jobs SET status = 'in_progress', started_at = ?, worker_id = ? "
                "WHERE job_id = ? AND status = 'queued'",
                (to_iso8601(utc_now()), worker_id, job_id),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def complete(self, job_id: str, result: str | None) -> None:
        self._finish(job_id, JobStatus.COMPLETED, result)

    def fail(self, job_id: str, error: str) -> None:
        self._finish(job_id, JobStatus.ERROR, error)

    def _finish(self, job_id: str, status: JobStatus, result: str | None) -> None:
        current = self.get(job_id).status
        validate_job_transition(current, status)
        with self._lock:
            self._conn.execute(
                "UPDATE jobs SET status = ?, result = ?, finished_at = ? WHERE job_id = ? AND status = ?",
                (status.value, result, to_iso8601(utc_now()), job_id, current.value),
            )
            self._conn.commit()

    def delete(self, job_id: str) -> None:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            self._conn.commit()
        if cursor.rowcount == 0:
            raise JobNotFoundError(job_id)


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        job_id=row["job_id"],
        job_type=row["job_type"],
        request=row["request"],
        status=JobStatus(row["status"]),
        result=row["result"],
        created_at=from_iso8601(row["created_at"]),
        started_at=from_iso8601(row["started_at"]),
        finished_at=from_iso8601(row["finished_at"]),
        worker_id=row["worker_id"],
    )
