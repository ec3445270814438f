"""Tests for the job state machine and job records."""

from __future__ import annotations

import pytest

from envspine.core.errors import InvalidTransitionError
from envspine.execution.jobs import JOB_VALID_TRANSITIONS, Job, JobStatus, JobType, validate_job_transition


class TestTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.QUEUED, JobStatus.IN_PROGRESS),
            (JobStatus.IN_PROGRESS, JobStatus.COMPLETED),
            (JobStatus.IN_PROGRESS, JobStatus.ERROR),
        ],
    )
    def test_valid(self, current, target):
        validate_job_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.QUEUED, JobStatus.COMPLETED),
            (JobStatus.QUEUED, JobStatus.ERROR),
            (JobStatus.COMPLETED, JobStatus.IN_PROGRESS),
            (JobStatus.ERROR, JobStatus.QUEUED),
            (JobStatus.COMPLETED, JobStatus.ERROR),
            (JobStatus.IN_PROGRESS, JobStatus.QUEUED),
        ],
    )
    def test_invalid(self, current, target):
        with pytest.raises(InvalidTransitionError):
            validate_job_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in JobStatus:
            assert status.is_terminal == (JOB_VALID_TRANSITIONS[status] == frozenset())


class TestJob:
    def test_defaults(self):
        job = Job(job_id="j1", job_type=JobType.CREATE_ENVIRONMENT.value, request="{}")
        assert job.status is JobStatus.QUEUED
        assert job.result is None
        assert not job.is_terminal

    def test_to_dict(self):
        job = Job(job_id="j1", job_type="delete_task", request='{"entity_id": "t1"}')
        data = job.to_dict()
        assert data["status"] == "queued"
        assert data["started_at"] is None
        assert data["created_at"].endswith("+00:00")

    def test_job_types_cover_every_operation(self):
        assert {t.value for t in JobType} == {
            "create_environment",
            "update_environment",
            "delete_environment",
            "create_environment_link",
            "delete_environment_link",
            "create_service",
            "update_service",
            "scale_service",
            "delete_service",
            "create_deploy",
            "delete_deploy",
            "create_task",
            "delete_task",
        }
