"""Tests for service orchestration."""

from __future__ import annotations

import pytest

from envspine.backend import DeployManager, EnvironmentManager
from envspine.backend.memory import MemoryCloud
from envspine.backend.service import ServiceManager
from envspine.core.errors import (
    ConvergenceTimeoutError,
    DeployNotFoundError,
    EnvironmentNotFoundError,
    ServiceNotFoundError,
    ValidationError,
)
from envspine.ids import generate_entity_id
from envspine.models import (
    CreateDeployRequest,
    CreateEnvironmentRequest,
    CreateServiceRequest,
    ScaleServiceRequest,
    UpdateServiceRequest,
)

from tests._support import PREFIX


@pytest.fixture
def environment(environments):
    return environments.create(CreateEnvironmentRequest("prod", min_cluster_count=1))


@pytest.fixture
def deploy(deploys, dockerrun):
    return deploys.create(CreateDeployRequest("api", dockerrun))


@pytest.fixture
def service(services, environment, deploy):
    return services.create(CreateServiceRequest("api", environment.environment_id, deploy.deploy_id, desired_count=2))


class TestCreate:
    def test_creates_in_environment_cluster(self, service, environment, deploy, cloud, tag_store):
        assert service.service_id == generate_entity_id("api", environment.environment_id)
        assert service.environment_id == environment.environment_id
        assert service.deploy_id == deploy.deploy_id
        assert service.desired_count == 2
        assert service.status == "ACTIVE"

        cluster = PREFIX + environment.environment_id
        assert (cluster, PREFIX + service.service_id) in cloud.services
        assert tag_store.select_by_type_and_id("service", service.service_id).as_dict() == {
            "name": "api",
            "environment_id": environment.environment_id,
            "deploy_id": deploy.deploy_id,
        }

    def test_same_name_in_other_environment_is_distinct(self, services, environments, environment, deploy, service):
        other = environments.create(CreateEnvironmentRequest("stage"))
        second = services.create(CreateServiceRequest("api", other.environment_id, deploy.deploy_id))
        assert second.service_id != service.service_id

    def test_unknown_environment(self, services, deploy, cloud):
        with pytest.raises(EnvironmentNotFoundError):
            services.create(CreateServiceRequest("api", "ghost1a2b3c4d", deploy.deploy_id))
        assert "create_service" not in cloud.calls

    def test_unknown_deploy(self, services, environment):
        with pytest.raises(DeployNotFoundError):
            services.create(CreateServiceRequest("api", environment.environment_id, "ghost1a2b3c4d.1"))

    def test_negative_count(self, services, environment, deploy):
        with pytest.raises(ValidationError):
            services.create(CreateServiceRequest("api", environment.environment_id, deploy.deploy_id, desired_count=-1))


class TestReadAndChange:
    def test_get(self, services, service):
        assert services.get(service.service_id) == service

    def test_get_without_tags(self, services):
        with pytest.raises(ServiceNotFoundError):
            services.get("ghost1a2b3c4d")

    def test_list_skips_services_gone_from_provider(self, services, service, environment, tag_store):
        tag_store.insert_many("service", "orphan1a2b3c4d", {"environment_id": environment.environment_id})
        assert [s.service_id for s in services.list()] == [service.service_id]

    def test_scale(self, services, service, cloud):
        scaled = services.scale(ScaleServiceRequest(service.service_id, 5))
        assert scaled.desired_count == 5

    def test_scale_negative(self, services, service):
        with pytest.raises(ValidationError):
            services.scale(ScaleServiceRequest(service.service_id, -1))

    def test_scale_unknown(self, services):
        with pytest.raises(ServiceNotFoundError):
            services.scale(ScaleServiceRequest("ghost1a2b3c4d", 1))

    def test_update_rolls_to_new_deploy(self, services, service, deploys, dockerrun, tag_store):
        newer = deploys.create(CreateDeployRequest("api", dockerrun))
        updated = services.update(UpdateServiceRequest(service.service_id, newer.deploy_id))

        assert updated.deploy_id == newer.deploy_id
        assert tag_store.select_by_type_and_id("service", service.service_id).as_dict()["deploy_id"] == newer.deploy_id


class TestDelete:
    def test_scales_down_deletes_and_drops_tags(self, services, service, cloud, tag_store):
        services.delete(service.service_id)

        record = next(iter(cloud.services.values()))
        assert record.service.status == "INACTIVE"
        assert record.service.desired_count == 0
        assert list(tag_store.select_by_type("service")) == []
        with pytest.raises(ServiceNotFoundError):
            services.get(service.service_id)

    def test_twice_and_never_created(self, services, service):
        services.delete(service.service_id)
        services.delete(service.service_id)
        services.delete("ghost1a2b3c4d")

    def test_environment_deleted_underneath(self, services, service, environments, environment, tag_store):
        services.delete(service.service_id)
        environments.delete(environment.environment_id)
        tag_store.insert_many("service", service.service_id, {"environment_id": environment.environment_id})

        services.delete(service.service_id)
        assert list(tag_store.select_by_type("service")) == []

    def test_waits_for_drain(self, tag_store, infra_config, clock, dockerrun):
        cloud = MemoryCloud(service_drain_polls=2)
        args = (cloud.providers(), tag_store, infra_config)
        env = EnvironmentManager(*args, clock=clock).create(CreateEnvironmentRequest("prod"))
        deploy = DeployManager(*args, clock=clock).create(CreateDeployRequest("api", dockerrun))
        services = ServiceManager(*args, clock=clock)
        service = services.create(CreateServiceRequest("api", env.environment_id, deploy.deploy_id))
        clock.sleeps.clear()

        services.delete(service.service_id)

        assert clock.sleeps == [1.0, 1.0]

    def test_drain_never_finishing_times_out(self, tag_store, infra_config, clock, dockerrun):
        cloud = MemoryCloud(service_drain_polls=50)
        args = (cloud.providers(), tag_store, infra_config)
        env = EnvironmentManager(*args, clock=clock).create(CreateEnvironmentRequest("prod"))
        deploy = DeployManager(*args, clock=clock).create(CreateDeployRequest("api", dockerrun))
        services = ServiceManager(*args, clock=clock)
        service = services.create(CreateServiceRequest("api", env.environment_id, deploy.deploy_id))

        with pytest.raises(ConvergenceTimeoutError) as exc_info:
            services.delete(service.service_id)
        assert exc_info.value.last_state == "DRAINING"
        # tags survive a failed delete so it can be retried
        assert services.tag_store.select_by_type_and_id("service", service.service_id)
