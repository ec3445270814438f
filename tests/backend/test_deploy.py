"""Tests for deploy orchestration (task definition revisions)."""

from __future__ import annotations

import pytest

from envspine.core.errors import DeployNotFoundError, ProviderError, ValidationError
from envspine.ids import generate_entity_id
from envspine.models import CreateDeployRequest

from tests._support import PREFIX


class TestCreate:
    def test_registers_revision(self, deploys, cloud, tag_store, dockerrun):
        deploy = deploys.create(CreateDeployRequest("api", dockerrun))

        family = PREFIX + generate_entity_id("api")
        assert deploy.deploy_id == f"{generate_entity_id('api')}.1"
        assert deploy.version == "1"
        assert deploy.deploy_name == "api"
        assert deploy.dockerrun == dockerrun
        assert cloud.task_definitions[family][0].container_definitions == dockerrun["containerDefinitions"]
        assert tag_store.select_by_type_and_id("deploy", deploy.deploy_id).as_dict() == {"name": "api", "version": "1"}

    def test_same_name_adds_revision(self, deploys, dockerrun, cloud):
        first = deploys.create(CreateDeployRequest("api", dockerrun))
        second = deploys.create(CreateDeployRequest("api", dockerrun))
        assert first.deploy_id.endswith(".1")
        assert second.deploy_id.endswith(".2")
        assert first.deploy_id.rsplit(".", 1)[0] == second.deploy_id.rsplit(".", 1)[0]
        assert cloud.call_count("register_task_definition") == 2

    def test_volumes_kept(self, deploys, dockerrun):
        dockerrun = {**dockerrun, "volumes": [{"name": "data", "host": {"sourcePath": "/data"}}]}
        deploy = deploys.create(CreateDeployRequest("api", dockerrun))
        assert deploy.dockerrun["volumes"] == dockerrun["volumes"]

    @pytest.mark.parametrize("dockerrun", [{}, {"containerDefinitions": []}, {"containerDefinitions": "web"}])
    def test_requires_containers(self, deploys, cloud, dockerrun):
        with pytest.raises(ValidationError):
            deploys.create(CreateDeployRequest("api", dockerrun))
        assert cloud.calls == []


class TestRead:
    def test_get(self, deploys, dockerrun):
        created = deploys.create(CreateDeployRequest("api", dockerrun))
        assert deploys.get(created.deploy_id) == created

    def test_get_unknown(self, deploys):
        with pytest.raises(DeployNotFoundError) as exc_info:
            deploys.get("nope1a2b3c4d.1")
        assert exc_info.value.entity_id == "nope1a2b3c4d.1"

    def test_list(self, deploys, dockerrun, cloud):
        a1 = deploys.create(CreateDeployRequest("api", dockerrun))
        a2 = deploys.create(CreateDeployRequest("api", dockerrun))
        w1 = deploys.create(CreateDeployRequest("worker", dockerrun))
        cloud.register_task_definition("foreign-family", dockerrun["containerDefinitions"])

        listed = {d.deploy_id: d for d in deploys.list()}
        assert set(listed) == {a1.deploy_id, a2.deploy_id, w1.deploy_id}
        assert listed[w1.deploy_id].deploy_name == "worker"


class TestDelete:
    def test_deregisters_and_drops_tags(self, deploys, dockerrun, tag_store):
        deploy = deploys.create(CreateDeployRequest("api", dockerrun))
        deploys.delete(deploy.deploy_id)

        with pytest.raises(DeployNotFoundError):
            deploys.get(deploy.deploy_id)
        assert deploys.list() == []
        assert list(tag_store.select_all()) == []

    def test_twice_and_never_created(self, deploys, dockerrun):
        deploy = deploys.create(CreateDeployRequest("api", dockerrun))
        deploys.delete(deploy.deploy_id)
        deploys.delete(deploy.deploy_id)
        deploys.delete("ghost1a2b3c4d.1")

    def test_unexpected_error_propagates(self, deploys, dockerrun, cloud):
        deploy = deploys.create(CreateDeployRequest("api", dockerrun))
        cloud.fail_next("deregister_task_definition", "AccessDenied", "nope")
        with pytest.raises(ProviderError):
            deploys.delete(deploy.deploy_id)
