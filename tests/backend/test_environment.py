"""Tests for environment orchestration against the in-memory cloud."""

from __future__ import annotations

import base64

import pytest

from envspine.backend.environment import LINK_TAG_PREFIX, EnvironmentManager
from envspine.backend.memory import MemoryCloud
from envspine.core.errors import (
    ConfigError,
    ConvergenceTimeoutError,
    EnvironmentNotFoundError,
    ProviderError,
    ValidationError,
)
from envspine.ids import generate_entity_id
from envspine.models import CreateEnvironmentRequest, EnvironmentLinkRequest, UpdateEnvironmentRequest

from tests._support import AGENT_GROUP, LINUX_AMI, PREFIX, WINDOWS_AMI


def _create(environments, name="prod", **kwargs):
    kwargs.setdefault("min_cluster_count", 2)
    return environments.create(CreateEnvironmentRequest(name, **kwargs))


class TestCreate:
    def test_scenario_prod_linux(self, environments, cloud, tag_store):
        env = _create(environments, "prod", operating_system="linux", instance_size="m5.large", min_cluster_count=3)

        environment_id = generate_entity_id("prod")
        provider_name = PREFIX + environment_id
        assert env.environment_id == environment_id
        assert provider_name in cloud.clusters

        config = cloud.launch_configurations[provider_name]
        assert config.image_id == LINUX_AMI
        assert config.instance_type == "m5.large"
        assert config.security_groups == [env.security_group_id, AGENT_GROUP]

        group = cloud.auto_scaling_groups[provider_name].group
        assert (group.min_size, group.max_size) == (3, 3)
        assert group.launch_configuration_name == provider_name

        assert env.environment_name == "prod"
        assert env.operating_system == "linux"
        assert env.ami_id == LINUX_AMI
        assert tag_store.select_by_type_and_id("environment", environment_id).as_dict() == {"name": "prod", "os": "linux"}

    def test_sequence_and_propagation_pause(self, environments, cloud, clock):
        _create(environments)
        assert cloud.calls == [
            "create_cluster",
            "create_security_group",
            "authorize_ingress_from_group",
            "create_launch_configuration",
            "create_auto_scaling_group",
            "describe_auto_scaling_group",
            "describe_launch_configuration",
            "describe_security_group",
        ]
        assert clock.sleeps == [2.0]

    def test_security_group_allows_itself(self, environments, cloud):
        env = _create(environments)
        group = cloud.security_groups[env.security_group_id]
        assert group.group_name == PREFIX + env.environment_id + "-env"
        assert group.ingress_from == [env.security_group_id]
        assert group.vpc_id == "vpc-test0001"

    def test_user_data_is_rendered_for_cluster(self, environments, cloud):
        env = _create(environments)
        user_data = base64.b64decode(cloud.launch_configurations[PREFIX + env.environment_id].user_data).decode()
        assert PREFIX + env.environment_id in user_data
        assert "envspine-artifacts" in user_data

    def test_windows_uses_windows_ami(self, environments, cloud):
        env = _create(environments, "winenv", operating_system="Windows")
        assert cloud.launch_configurations[PREFIX + env.environment_id].image_id == WINDOWS_AMI
        assert env.operating_system == "windows"

    def test_custom_ami_and_template(self, environments, cloud):
        env = _create(environments, ami_id="ami-custom", user_data_template="echo {{ cluster_name }}")
        config = cloud.launch_configurations[PREFIX + env.environment_id]
        assert config.image_id == "ami-custom"
        assert base64.b64decode(config.user_data).decode() == f"echo {PREFIX}{env.environment_id}"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"operating_system": "beos"},
            {"instance_size": ""},
            {"min_cluster_count": -1},
        ],
    )
    def test_invalid_requests_never_reach_provider(self, environments, cloud, kwargs):
        with pytest.raises(ValidationError):
            _create(environments, **kwargs)
        assert cloud.calls == []

    def test_blank_name_rejected(self, environments):
        with pytest.raises(ValidationError):
            _create(environments, "  ")

    def test_missing_config_fails_before_provider(self, cloud, tag_store, infra_config, clock):
        from dataclasses import replace

        manager = EnvironmentManager(cloud.providers(), tag_store, replace(infra_config, vpc_id=""), clock=clock)
        with pytest.raises(ConfigError) as exc_info:
            _create(manager)
        assert exc_info.value.config_key == "vpc_id"
        assert cloud.calls == []

    def test_provider_failure_propagates_verbatim(self, environments, cloud):
        cloud.fail_next("create_launch_configuration", "AccessDenied", "not allowed to create LC")
        with pytest.raises(ProviderError) as exc_info:
            _create(environments)
        assert exc_info.value.code == "AccessDenied"
        assert exc_info.value.provider_message == "not allowed to create LC"


class TestRead:
    def test_get(self, environments):
        created = _create(environments)
        assert environments.get(created.environment_id) == created

    def test_get_unknown(self, environments):
        with pytest.raises(EnvironmentNotFoundError) as exc_info:
            environments.get("nope1a2b3c4d")
        assert exc_info.value.entity_id == "nope1a2b3c4d"

    def test_get_tolerates_missing_dependents(self, environments, cloud):
        env = _create(environments)
        name = PREFIX + env.environment_id
        cloud.remove_auto_scaling_group(name)
        del cloud.launch_configurations[name]

        fetched = environments.get(env.environment_id)
        assert fetched.cluster_count == 0
        assert fetched.instance_size == ""
        assert fetched.security_group_id == env.security_group_id

    def test_list_ignores_foreign_clusters(self, environments, cloud):
        a = _create(environments, "alpha")
        b = _create(environments, "beta")
        cloud.create_cluster("someone-elses-cluster")

        listed = environments.list()
        assert [e.environment_id for e in listed] == sorted([a.environment_id, b.environment_id])
        assert {e.environment_name for e in listed} == {"alpha", "beta"}


class TestUpdate:
    def test_raises_max_before_min(self, environments, cloud):
        env = _create(environments, min_cluster_count=1)
        environments.update(UpdateEnvironmentRequest(env.environment_id, 4))

        group = cloud.auto_scaling_groups[PREFIX + env.environment_id].group
        assert (group.min_size, group.max_size) == (4, 4)
        calls = [c for c in cloud.calls if c.startswith("update_auto_scaling_group")]
        assert calls == ["update_auto_scaling_group_max_size", "update_auto_scaling_group_min_size"]

    def test_lowering_min_keeps_max(self, environments, cloud):
        env = _create(environments, min_cluster_count=3)
        environments.update(UpdateEnvironmentRequest(env.environment_id, 1))

        group = cloud.auto_scaling_groups[PREFIX + env.environment_id].group
        assert (group.min_size, group.max_size) == (1, 3)

    def test_unknown_environment(self, environments):
        with pytest.raises(EnvironmentNotFoundError):
            environments.update(UpdateEnvironmentRequest("nope1a2b3c4d", 1))

    def test_missing_scaling_group_is_not_found(self, environments, cloud):
        env = _create(environments)
        cloud.remove_auto_scaling_group(PREFIX + env.environment_id)

        with pytest.raises(EnvironmentNotFoundError) as exc_info:
            environments.update(UpdateEnvironmentRequest(env.environment_id, 2))
        assert exc_info.value.entity_id == env.environment_id
        assert isinstance(exc_info.value.cause, ProviderError)

    def test_negative_count(self, environments):
        with pytest.raises(ValidationError):
            environments.update(UpdateEnvironmentRequest("x", -1))


class TestDelete:
    def test_removes_everything(self, environments, cloud, tag_store):
        env = _create(environments)
        environments.delete(env.environment_id)

        assert cloud.clusters == {}
        assert cloud.security_groups == {}
        assert cloud.launch_configurations == {}
        assert cloud.auto_scaling_groups == {}
        assert list(tag_store.select_all()) == []

    def test_twice_in_succession(self, environments):
        env = _create(environments)
        environments.delete(env.environment_id)
        environments.delete(env.environment_id)

    def test_never_created(self, environments, cloud):
        environments.delete("ghost1a2b3c4d")
        assert "delete_cluster" in cloud.calls

    def test_scenario_scaling_group_removed_manually(self, environments, cloud):
        env = _create(environments)
        cloud.remove_auto_scaling_group(PREFIX + env.environment_id)

        environments.delete(env.environment_id)

        assert cloud.clusters == {}
        assert cloud.security_groups == {}

    def test_waits_for_scaling_group_then_security_group(self, cloud, tag_store, infra_config, clock):
        slow_cloud = MemoryCloud(asg_delete_polls=2)
        manager = EnvironmentManager(slow_cloud.providers(), tag_store, infra_config, clock=clock)
        env = _create(manager)
        clock.sleeps.clear()

        manager.delete(env.environment_id)

        assert slow_cloud.auto_scaling_groups == {}
        assert slow_cloud.security_groups == {}
        # two "Delete in progress" polls, then gone
        assert clock.sleeps == [1.0, 1.0]

    def test_scaling_group_that_never_goes_times_out(self, tag_store, infra_config, clock):
        stuck_cloud = MemoryCloud(asg_delete_polls=100)
        manager = EnvironmentManager(stuck_cloud.providers(), tag_store, infra_config, clock=clock)
        env = _create(manager)

        with pytest.raises(ConvergenceTimeoutError) as exc_info:
            manager.delete(env.environment_id)
        assert exc_info.value.operation.startswith("Stop Autoscaling")
        assert exc_info.value.last_state == "Delete in progress"

    def test_unexpected_error_aborts(self, environments, cloud):
        env = _create(environments)
        cloud.fail_next("delete_launch_configuration", "AccessDenied", "nope")
        with pytest.raises(ProviderError):
            environments.delete(env.environment_id)

    def test_deletes_linked_environment(self, environments, cloud, tag_store):
        a = _create(environments, "alpha")
        b = _create(environments, "beta")
        environments.create_link(EnvironmentLinkRequest(a.environment_id, b.environment_id))

        environments.delete(a.environment_id)

        assert a.security_group_id not in cloud.security_groups
        assert cloud.security_groups[b.security_group_id].ingress_from == [b.security_group_id]
        assert environments.get(b.environment_id).links == []


class TestLinks:
    def test_scenario_link_twice(self, environments, cloud):
        a = _create(environments, "alpha")
        b = _create(environments, "beta")
        request = EnvironmentLinkRequest(a.environment_id, b.environment_id)

        environments.create_link(request)
        environments.create_link(request)

        group_a = cloud.security_groups[a.security_group_id]
        group_b = cloud.security_groups[b.security_group_id]
        assert group_a.ingress_from.count(b.security_group_id) == 1
        assert group_b.ingress_from.count(a.security_group_id) == 1

    def test_link_tags_on_both_sides(self, environments, tag_store):
        a = _create(environments, "alpha")
        b = _create(environments, "beta")
        link = environments.create_link(EnvironmentLinkRequest(a.environment_id, b.environment_id))

        assert link.to_dict() == {"source_environment_id": a.environment_id, "dest_environment_id": b.environment_id}
        assert environments.get(a.environment_id).links == [b.environment_id]
        assert environments.get(b.environment_id).links == [a.environment_id]
        key = LINK_TAG_PREFIX + b.environment_id
        assert tag_store.select_by_type_and_id("environment", a.environment_id).with_key(key).first().value == b.environment_id

    def test_delete_link_twice(self, environments, cloud):
        a = _create(environments, "alpha")
        b = _create(environments, "beta")
        request = EnvironmentLinkRequest(a.environment_id, b.environment_id)
        environments.create_link(request)

        environments.delete_link(request)
        environments.delete_link(request)

        assert cloud.security_groups[a.security_group_id].ingress_from == [a.security_group_id]
        assert cloud.security_groups[b.security_group_id].ingress_from == [b.security_group_id]
        assert environments.get(a.environment_id).links == []

    def test_link_to_self_rejected(self, environments):
        with pytest.raises(ValidationError):
            environments.create_link(EnvironmentLinkRequest("a", "a"))

    def test_link_to_missing_environment(self, environments):
        a = _create(environments, "alpha")
        with pytest.raises(EnvironmentNotFoundError, match="Security group"):
            environments.create_link(EnvironmentLinkRequest(a.environment_id, "ghost1a2b3c4d"))
