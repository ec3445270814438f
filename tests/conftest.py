"""
Shared pytest fixtures for env-spine tests.

This module provides:
- An in-memory cloud (``MemoryCloud``) and tag store
- A fully populated ``InfraConfig`` with a short waiter budget
- A ``FakeClock`` so waiters and propagation pauses never sleep
- Orchestration managers wired to all of the above
- Settings isolation (no ``ENVSPINE_*`` leakage between tests)

Usage:
    def test_something(environments, cloud):
        environments.create(CreateEnvironmentRequest("prod"))
        assert cloud.clusters
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from envspine.backend import DeployManager, EnvironmentManager, ServiceManager, TaskManager
from envspine.backend.memory import MemoryCloud
from envspine.core.config import InfraConfig, clear_settings_cache
from envspine.execution.waiter import FakeClock
from envspine.ids import IdCodec
from envspine.tags.store import MemoryTagStore

from tests._support import AGENT_GROUP, LINUX_AMI, PREFIX, WINDOWS_AMI


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in item.name or "scenario" in str(test_path):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Run every test in an empty directory with a fresh settings cache."""
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Infrastructure fixtures
# =============================================================================


@pytest.fixture
def infra_config() -> InfraConfig:
    return InfraConfig(
        resource_prefix=PREFIX,
        linux_service_ami=LINUX_AMI,
        windows_service_ami=WINDOWS_AMI,
        vpc_id="vpc-test0001",
        private_subnets=("subnet-a", "subnet-b"),
        ecs_instance_profile="ecs-instance-profile",
        key_pair="test-key",
        agent_security_group_id=AGENT_GROUP,
        s3_bucket="envspine-artifacts",
        waiter_retries=5,
        waiter_delay_seconds=1.0,
        security_group_propagation_seconds=2.0,
    )


@pytest.fixture
def codec() -> IdCodec:
    return IdCodec(PREFIX)


@pytest.fixture
def cloud() -> MemoryCloud:
    return MemoryCloud()


@pytest.fixture
def tag_store() -> MemoryTagStore:
    return MemoryTagStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager_args(cloud, tag_store, infra_config, clock):
    return (cloud.providers(), tag_store, infra_config), {"clock": clock}


@pytest.fixture
def environments(manager_args) -> EnvironmentManager:
    args, kwargs = manager_args
    return EnvironmentManager(*args, **kwargs)


@pytest.fixture
def deploys(manager_args) -> DeployManager:
    args, kwargs = manager_args
    return DeployManager(*args, **kwargs)


@pytest.fixture
def services(manager_args) -> ServiceManager:
    args, kwargs = manager_args
    return ServiceManager(*args, **kwargs)


@pytest.fixture
def tasks(manager_args) -> TaskManager:
    args, kwargs = manager_args
    return TaskManager(*args, **kwargs)


@pytest.fixture
def dockerrun() -> dict:
    return {
        "containerDefinitions": [
            {"name": "web", "image": "nginx:1.25", "memory": 128, "essential": True},
        ],
    }
