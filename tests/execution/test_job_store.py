"""Tests for the memory and SQLite job stores (shared contract)."""

from __future__ import annotations

import sqlite3
import threading
from datetime import timedelta

import pytest

from envspine.core.errors import InvalidTransitionError, JobNotFoundError
from envspine.core.timestamps import utc_now
from envspine.execution.jobs import Job, JobStatus
from envspine.execution.store import MemoryJobStore, SQLiteJobStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        yield MemoryJobStore()
    else:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        yield SQLiteJobStore(conn=conn)
        conn.close()


def _job(job_id: str, offset: int = 0) -> Job:
    return Job(
        job_id=job_id,
        job_type="create_environment",
        request='{"environment_name": "prod"}',
        created_at=utc_now() + timedelta(seconds=offset),
    )


class TestCreateAndGet:
    def test_round_trip(self, store):
        store.create(_job("j1"))
        job = store.get("j1")
        assert job.status is JobStatus.QUEUED
        assert job.request == '{"environment_name": "prod"}'
        assert job.result is None

    def test_get_unknown(self, store):
        with pytest.raises(JobNotFoundError) as exc_info:
            store.get("nope")
        assert exc_info.value.job_id == "nope"

    def test_list_oldest_first_and_filtered(self, store):
        store.create(_job("b", offset=2))
        store.create(_job("a", offset=1))
        store.claim("b", "w1")

        assert [j.job_id for j in store.list()] == ["a", "b"]
        assert [j.job_id for j in store.list(JobStatus.IN_PROGRESS)] == ["b"]
        assert store.queued() == ["a"]

    def test_queued_limit(self, store):
        for i in range(5):
            store.create(_job(f"j{i}", offset=i))
        assert store.queued(limit=2) == ["j0", "j1"]


class TestClaim:
    def test_claim_once(self, store):
        store.create(_job("j1"))
        assert store.claim("j1", "w1") is True
        assert store.claim("j1", "w2") is False

        job = store.get("j1")
        assert job.status is JobStatus.IN_PROGRESS
        assert job.worker_id == "w1"
        assert job.started_at is not None

    def test_claim_unknown(self, store):
        assert store.claim("nope", "w1") is False

    def test_concurrent_claims_have_one_winner(self, store):
        store.create(_job("j1"))
        barrier = threading.Barrier(8)
        wins = []

        def claim(worker):
            barrier.wait()
            if store.claim("j1", worker):
                wins.append(worker)

        threads = [threading.Thread(target=claim, args=(f"w{i}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1


class TestFinish:
    def test_complete(self, store):
        store.create(_job("j1"))
        store.claim("j1", "w1")
        store.complete("j1", '{"ok": true}')

        job = store.get("j1")
        assert job.status is JobStatus.COMPLETED
        assert job.result == '{"ok": true}'
        assert job.finished_at is not None

    def test_fail(self, store):
        store.create(_job("j1"))
        store.claim("j1", "w1")
        store.fail("j1", "ProviderError: AccessDenied: nope")

        job = store.get("j1")
        assert job.status is JobStatus.ERROR
        assert job.result == "ProviderError: AccessDenied: nope"

    def test_cannot_finish_unclaimed(self, store):
        store.create(_job("j1"))
        with pytest.raises(InvalidTransitionError):
            store.complete("j1", None)

    def test_terminal_is_final(self, store):
        store.create(_job("j1"))
        store.claim("j1", "w1")
        store.complete("j1", None)
        with pytest.raises(InvalidTransitionError):
            store.fail("j1", "late")
        assert store.claim("j1", "w2") is False


class TestDelete:
    def test_delete_then_get_raises(self, store):
        store.create(_job("j1"))
        store.delete("j1")
        with pytest.raises(JobNotFoundError):
            store.get("j1")

    def test_delete_unknown(self, store):
        with pytest.raises(JobNotFoundError):
            store.delete("nope")

    def test_delete_in_progress_job(self, store):
        store.create(_job("j1"))
        store.claim("j1", "w1")
        store.delete("j1")
        assert store.list() == []


class TestSQLiteJobStore:
    def test_requires_path_or_connection(self):
        with pytest.raises(ValueError):
            SQLiteJobStore()

    def test_file_database_shared_between_instances(self, tmp_path):
        path = str(tmp_path / "jobs.db")
        writer = SQLiteJobStore(path)
        writer.create(_job("j1"))

        reader = SQLiteJobStore(path)
        assert reader.get("j1").status is JobStatus.QUEUED

        writer.close()
        reader.close()
