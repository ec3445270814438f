"""Job engine and background worker loop.

:class:`JobEngine` is the submission side: it persists a QUEUED job and
returns its ID immediately. :class:`JobWorker` is the execution side: it
polls the store for queued jobs, claims each with a conditional update,
and runs the registered handler on a thread pool.

Usage (programmatic)::

    engine = JobEngine(store)
    job_id = engine.submit(JobType.CREATE_ENVIRONMENT, CreateEnvironmentRequest("prod"))

    worker = JobWorker(store, registry, max_workers=4)
    worker.start()  # blocking, runs until SIGINT/SIGTERM

Usage (CLI)::

    envspine worker start --workers 4 --poll-interval 2
"""

from __future__ import annotations

import json
import signal
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, is_dataclass
from typing import Any

from envspine.core.errors import JobNotFoundError, format_failure
from envspine.core.logging import LogContext, get_logger
from envspine.core.timestamps import generate_ulid
from envspine.models import encode_request

from .jobs import Job, JobStatus, JobType
from .locks import EntityLocks
from .registry import JobRegistry
from .store import JobStore

logger = get_logger(__name__)


class JobEngine:
    """Submit, poll and administer jobs.

    Submission never executes anything; a :class:`JobWorker` sharing the
    same store picks the job up.
    """

    def __init__(self, store: JobStore):
        self.store = store

    def submit(self, job_type: JobType | str, request: Any) -> str:
        """Persist a QUEUED job and return its ID.

        *request* is a request dataclass or an already-encoded JSON string.
        Duplicate submissions are not deduplicated.
        """
        payload = encode_request(request) if is_dataclass(request) else str(request)
        job = Job(
            job_id=generate_ulid(),
            job_type=str(getattr(job_type, "value", job_type)),
            request=payload,
        )
        self.store.create(job)
        logger.info("job.submitted", job_id=job.job_id, job_type=job.job_type)
        return job.job_id

    def get(self, job_id: str) -> Job:
        """Current record of a job; raises JobNotFoundError once deleted."""
        return self.store.get(job_id)

    def list(self, status: JobStatus | None = None) -> list[Job]:
        return self.store.list(status)

    def delete(self, job_id: str) -> None:
        """Drop the job record. Running work is not affected."""
        self.store.delete(job_id)
        logger.info("job.deleted", job_id=job_id)


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    total_claimed: int = 0
    total_completed: int = 0
    total_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_claimed": self.total_claimed,
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
        }


class JobWorker:
    """Polls the store for queued jobs and runs them.

    Architecture:
        1. ``poll_once()`` lists up to ``batch_size`` queued job IDs.
        2. Each is claimed with ``store.claim``; losing the race skips it.
        3. Claimed jobs run on a thread pool, holding the entity lock
           the registry derives from the request.
        4. The handler's return value is stored as the JSON result
           (COMPLETED); any exception becomes ``"<Type>: <message>"``
           (ERROR).

    Thread-safety:
        The poll loop is single-threaded; only handler execution fans out
        to the pool. Stores are safe for concurrent use.
    """

    def __init__(
        self,
        store: JobStore,
        registry: JobRegistry,
        *,
        locks: EntityLocks | None = None,
        poll_interval: float = 2.0,
        batch_size: int = 10,
        max_workers: int = 4,
        worker_id: str | None = None,
    ):
        self.store = store
        self.registry = registry
        self.locks = locks or EntityLocks()
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.stats = WorkerStats()

        self._shutdown = threading.Event()
        self._stats_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=self.worker_id)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the poll loop until :meth:`stop` or SIGINT/SIGTERM."""
        logger.info(
            "worker.starting",
            worker_id=self.worker_id,
            poll_interval=self.poll_interval,
            max_workers=self.max_workers,
            handlers=self.registry.list_handlers(),
        )
        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except ValueError:
            logger.debug("worker.signals_skipped", worker_id=self.worker_id)

        try:
            while not self._shutdown.is_set():
                self.poll_once()
                self._shutdown.wait(self.poll_interval)
        finally:
            self.close()

    def start_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.start, name=f"{self.worker_id}-loop", daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        logger.info("worker.stopping", worker_id=self.worker_id)
        self._shutdown.set()

    def close(self) -> None:
        """Wait for in-flight jobs and release the pool."""
        self._pool.shutdown(wait=True)
        logger.info("worker.stopped", worker_id=self.worker_id, **self.stats.to_dict())

    def _handle_signal(self, signum, frame) -> None:
        logger.info("worker.signal_received", worker_id=self.worker_id, signal=signum)
        self.stop()

    # ------------------------------------------------------------------ #
    # Polling and execution
    # ------------------------------------------------------------------ #

    def poll_once(self, *, wait_for_completion: bool = False) -> int:
        """Claim and dispatch queued jobs. Returns the number claimed."""
        futures: list[Future] = []
        for job_id in self.store.queued(self.batch_size):
            if not self.store.claim(job_id, self.worker_id):
                continue
            with self._stats_lock:
                self.stats.total_claimed += 1
            futures.append(self._pool.submit(self.execute, job_id))

        if futures:
            logger.debug("worker.claimed", worker_id=self.worker_id, count=len(futures))
        if wait_for_completion:
            wait(futures)
        return len(futures)

    def execute(self, job_id: str) -> None:
        """Run one claimed (IN_PROGRESS) job to a terminal status."""
        try:
            job = self.store.get(job_id)
        except JobNotFoundError:
            logger.warning("job.deleted_while_running", job_id=job_id, worker_id=self.worker_id)
            return

        with LogContext(job_id=job.job_id, job_type=job.job_type):
            logger.info("job.started", worker_id=self.worker_id)
            try:
                handler = self.registry.get(job.job_type)
                with self.locks.hold(self.registry.entity_key(job.job_type, job.request)):
                    result = handler(job.request)
            except Exception as exc:
                error = format_failure(exc)
                logger.error("job.failed", error=error, exc=exc)
                with self._stats_lock:
                    self.stats.total_failed += 1
                self._record(self.store.fail, job.job_id, error)
                return

            with self._stats_lock:
                self.stats.total_completed += 1
            logger.info("job.completed")
            self._record(self.store.complete, job.job_id, _encode_result(result))

    def _record(self, finish: Callable[[str, str | None], None], job_id: str, result: str | None) -> None:
        """Store the terminal outcome; the record may have been deleted meanwhile."""
        try:
            finish(job_id, result)
        except JobNotFoundError:
            logger.warning("job.deleted_while_running", worker_id=self.worker_id)


def _encode_result(result: Any) -> str | None:
    if result is None:
        return None
    if isinstance(result, str):
        return result
    return json.dumps(result, sort_keys=True, default=str)
