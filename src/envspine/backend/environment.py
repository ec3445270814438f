"""
Environment orchestration.

An environment is an ECS cluster plus the hosts that run it: a security
group, a launch configuration and an auto scaling group, all named from
the environment's logical ID through the :class:`IdCodec`.

Manifesto:
    - **Sagas, not transactions:** create and delete are explicit ordered
      sequences; a failure aborts without rollback and any partial state
      is cleaned up by ``delete``
    - **Absent means done:** every delete step treats "already gone" as
      success, so ``delete`` converges from any partial state
    - **Reads degrade, not fail:** a missing scaling group or launch
      configuration yields empty fields, logged, rather than an error

Architecture:
    ::

        create(name, os, size, count)
          ├── render user data (cluster name, artifact bucket)
          ├── ecs.create_cluster
          ├── ec2.create_security_group        "<provider>-env"
          ├── sleep(security_group_propagation_seconds)
          ├── ec2.authorize self → self
          ├── autoscaling.create_launch_configuration   SGs = own + agent
          ├── autoscaling.create_auto_scaling_group      min = max = count
          └── tags: name, os

        delete(id)
          ├── ASG min 0, max 0     tolerate "name not found", "is pending delete"
          ├── delete ASG           tolerate "name not found"
          ├── delete LC            tolerate "name not found"
          ├── Waiter: ASG gone     describe "not found" means done
          ├── revoke peer link rules
          ├── Waiter: SG deleted   retried while DependencyViolation
          ├── delete cluster       tolerate ClusterNotFoundException
          └── drop environment tags

Tags:
    orchestration, environment, ecs, autoscaling, saga
"""

from __future__ import annotations

from envspine.core.errors import EnvironmentNotFoundError, ProviderError, ValidationError
from envspine.core.logging import get_logger
from envspine.ids import ProviderName
from envspine.models import (
    CreateEnvironmentRequest,
    EntityType,
    Environment,
    EnvironmentLink,
    EnvironmentLinkRequest,
    OperatingSystem,
    UpdateEnvironmentRequest,
)
from envspine.tags.lookup import delete_entity_tags
from envspine.tags.models import Tags

from ._base import BaseManager
from .providers import (
    CLUSTER_NOT_FOUND,
    DEPENDENCY_VIOLATION,
    DUPLICATE_PERMISSION,
    GROUP_NOT_FOUND,
    PERMISSION_NOT_FOUND,
    AutoScalingGroup,
    SecurityGroup,
    contains_error_code,
    contains_error_message,
)
from .userdata import render_user_data

logger = get_logger(__name__)

SECURITY_GROUP_DESCRIPTION = "Auto-generated env-spine Environment Security Group"
LINK_TAG_PREFIX = "link:"


class EnvironmentManager(BaseManager):
    """Create, read, update, delete and link environments."""

    entity_type = EntityType.ENVIRONMENT.value

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #

    def list(self) -> list[Environment]:
        """All environments whose cluster lives in this namespace."""
        tags_by_id = {
            entity_id: tags for (_, entity_id), tags in self.tag_store.select_by_type(self.entity_type).group_by_entity().items()
        }

        environments: list[Environment] = []
        for cluster in self.providers.ecs.list_clusters():
            if not self.codec.is_managed(cluster.cluster_name) or cluster.status == "INACTIVE":
                continue
            environment_id = self.codec.decode(cluster.cluster_name)
            environment = Environment(environment_id=environment_id)
            self._apply_tags(environment, tags_by_id.get(environment_id, Tags()))
            environments.append(environment)

        return sorted(environments, key=lambda e: e.environment_id)

    def get(self, environment_id: str) -> Environment:
        """Describe an environment.

        Raises:
            EnvironmentNotFoundError: If the cluster does not exist.
        """
        self.require_cluster(environment_id)
        return self._populate(environment_id, self.codec.encode(environment_id))

    def _populate(self, environment_id: str, name: ProviderName) -> Environment:
        environment = Environment(environment_id=environment_id)

        group = self._describe_auto_scaling_group(name)
        if group is not None:
            environment.cluster_count = len(group.instances)
            if group.launch_configuration_name:
                config = self.tolerate(
                    lambda: self.providers.autoscaling.describe_launch_configuration(group.launch_configuration_name),
                    messages=("not found",),
                    event="environment.launch_configuration_missing",
                    environment_id=environment_id,
                )
                if config is not None:
                    environment.instance_size = config.instance_type
                    environment.ami_id = config.image_id

        security_group = self.providers.ec2.describe_security_group(name.security_group_name)
        if security_group is not None:
            environment.security_group_id = security_group.group_id

        self._apply_tags(environment, self.tag_store.select_by_type_and_id(self.entity_type, environment_id))
        return environment

    def _describe_auto_scaling_group(self, name: ProviderName) -> AutoScalingGroup | None:
        try:
            return self.providers.autoscaling.describe_auto_scaling_group(name.auto_scaling_group_name)
        except ProviderError as exc:
            if contains_error_message(exc, "not found"):
                logger.warning("environment.auto_scaling_group_missing", provider_name=str(name))
                return None
            raise

    @staticmethod
    def _apply_tags(environment: Environment, tags: Tags) -> None:
        values = tags.as_dict()
        environment.environment_name = values.get("name", "")
        environment.operating_system = values.get("os", "")
        environment.links = sorted(t.value for t in tags.with_key_prefix(LINK_TAG_PREFIX))

    # ------------------------------------------------------------------ #
    # Create / update
    # ------------------------------------------------------------------ #

    def create(self, request: CreateEnvironmentRequest) -> Environment:
        operating_system = OperatingSystem.parse(request.operating_system)
        if not request.instance_size:
            raise ValidationError("Instance size is required")
        if request.min_cluster_count < 0:
            raise ValidationError("Min cluster count must not be negative")

        environment_id = self.codec.generate(request.environment_name)
        name = self.codec.encode(environment_id)
        log = logger.bind(environment_id=environment_id, provider_name=str(name))

        ami_id = request.ami_id or self._default_ami(operating_system)
        vpc_id = self.config.require("vpc_id")
        subnets = list(self.config.require("private_subnets"))
        agent_group_id = self.config.require("agent_security_group_id")
        instance_profile = self.config.require("ecs_instance_profile")
        user_data = render_user_data(
            operating_system,
            cluster_name=name.cluster_name,
            s3_bucket=self.config.require("s3_bucket"),
            template=request.user_data_template,
        )

        self.providers.ecs.create_cluster(name.cluster_name)
        group_id = self.providers.ec2.create_security_group(name.security_group_name, SECURITY_GROUP_DESCRIPTION, vpc_id)

        # rules against a brand new group are rejected until it propagates
        self.clock.sleep(self.config.security_group_propagation_seconds)
        self.providers.ec2.authorize_ingress_from_group(group_id, group_id)

        self.providers.autoscaling.create_launch_configuration(
            name=name.launch_configuration_name,
            image_id=ami_id,
            iam_instance_profile=instance_profile,
            instance_type=request.instance_size,
            key_name=self.config.key_pair,
            user_data=user_data,
            security_groups=[group_id, agent_group_id],
        )
        self.providers.autoscaling.create_auto_scaling_group(
            name=name.auto_scaling_group_name,
            launch_configuration_name=name.launch_configuration_name,
            subnets=subnets,
            min_size=request.min_cluster_count,
            max_size=request.min_cluster_count,
        )

        self.write_tags(environment_id, {"name": request.environment_name, "os": operating_system.value})
        log.info("environment.created", operating_system=operating_system.value, min_cluster_count=request.min_cluster_count)
        return self._populate(environment_id, name)

    def _default_ami(self, operating_system: OperatingSystem) -> str:
        if operating_system is OperatingSystem.WINDOWS:
            return self.config.require("windows_service_ami")
        return self.config.require("linux_service_ami")

    def update(self, request: UpdateEnvironmentRequest) -> Environment:
        """Change the minimum cluster count, raising the max first if needed."""
        if request.min_cluster_count < 0:
            raise ValidationError("Min cluster count must not be negative")

        self.get(request.environment_id)
        name = self.codec.encode(request.environment_id)
        group_name = name.auto_scaling_group_name
        try:
            group = self.providers.autoscaling.describe_auto_scaling_group(group_name)
        except ProviderError as exc:
            if contains_error_message(exc, "not found"):
                raise EnvironmentNotFoundError(
                    request.environment_id,
                    message=f"Auto scaling group for environment '{request.environment_id}' does not exist",
                    cause=exc,
                ) from exc
            raise

        if group.max_size < request.min_cluster_count:
            self.providers.autoscaling.update_auto_scaling_group_max_size(group_name, request.min_cluster_count)
        self.providers.autoscaling.update_auto_scaling_group_min_size(group_name, request.min_cluster_count)

        logger.info(
            "environment.updated",
            environment_id=request.environment_id,
            min_cluster_count=request.min_cluster_count,
        )
        return self._populate(request.environment_id, name)

    # ------------------------------------------------------------------ #
    # Delete
    # ------------------------------------------------------------------ #

    def delete(self, environment_id: str) -> None:
        """Tear down every provider resource of an environment.

        Safe to call repeatedly and on partially created or partially
        deleted environments.
        """
        name = self.codec.encode(environment_id)
        group_name = name.auto_scaling_group_name
        autoscaling = self.providers.autoscaling
        log_fields = {"environment_id": environment_id}

        self.tolerate(
            lambda: autoscaling.update_auto_scaling_group_min_size(group_name, 0),
            messages=("name not found", "is pending delete"),
            event="environment.scale_down_skipped",
            **log_fields,
        )
        self.tolerate(
            lambda: autoscaling.update_auto_scaling_group_max_size(group_name, 0),
            messages=("name not found", "is pending delete"),
            event="environment.scale_down_skipped",
            **log_fields,
        )
        self.tolerate(
            lambda: autoscaling.delete_auto_scaling_group(group_name),
            messages=("name not found", "is pending delete"),
            event="environment.auto_scaling_group_absent",
            **log_fields,
        )
        self.tolerate(
            lambda: autoscaling.delete_launch_configuration(name.launch_configuration_name),
            messages=("name not found",),
            event="environment.launch_configuration_absent",
            **log_fields,
        )

        self._wait_for_auto_scaling_group_gone(group_name)

        security_group = self.providers.ec2.describe_security_group(name.security_group_name)
        if security_group is not None:
            self._revoke_peer_links(environment_id, security_group)
            self._wait_for_security_group_deleted(security_group)

        self.tolerate(
            lambda: self.providers.ecs.delete_cluster(name.cluster_name),
            codes=(CLUSTER_NOT_FOUND,),
            event="environment.cluster_absent",
            **log_fields,
        )

        delete_entity_tags(self.tag_store, self.entity_type, environment_id)
        logger.info("environment.deleted", **log_fields)

    def _wait_for_auto_scaling_group_gone(self, group_name: str) -> None:
        def check() -> tuple[bool, str | None]:
            try:
                group = self.providers.autoscaling.describe_auto_scaling_group(group_name)
            except ProviderError as exc:
                if contains_error_message(exc, "not found"):
                    return True, None
                raise
            logger.debug("environment.waiting_for_auto_scaling_group", name=group_name, status=group.status)
            return False, group.status

        self.waiter(f"Stop Autoscaling {group_name}", check).wait()

    def _wait_for_security_group_deleted(self, group: SecurityGroup) -> None:
        def check() -> tuple[bool, str | None]:
            try:
                self.providers.ec2.delete_security_group(group.group_id)
            except ProviderError as exc:
                if contains_error_code(exc, GROUP_NOT_FOUND):
                    return True, None
                if contains_error_code(exc, DEPENDENCY_VIOLATION):
                    return False, exc.code
                raise
            return True, None

        self.waiter(f"SecurityGroup delete for '{group.group_name}'", check).wait()

    def _revoke_peer_links(self, environment_id: str, group: SecurityGroup) -> None:
        tags = self.tag_store.select_by_type_and_id(self.entity_type, environment_id)
        peer_ids = {t.value for t in tags.with_key_prefix(LINK_TAG_PREFIX)}
        for peer_id in sorted(peer_ids):
            self._unlink(environment_id, peer_id, source_group=group)

        # rules a peer still holds against this group block its deletion,
        # even when the link tags are already gone
        for peer_group_id in sorted(set(group.ingress_from) - {group.group_id}):
            self.tolerate(
                lambda: self.providers.ec2.revoke_ingress_from_group(peer_group_id, group.group_id),
                codes=(PERMISSION_NOT_FOUND, GROUP_NOT_FOUND),
                event="environment.link_absent",
                group_id=peer_group_id,
            )

    # ------------------------------------------------------------------ #
    # Links
    # ------------------------------------------------------------------ #

    def create_link(self, request: EnvironmentLinkRequest) -> EnvironmentLink:
        """Allow traffic both ways between two environments."""
        source_id, dest_id = request.source_environment_id, request.dest_environment_id
        if source_id == dest_id:
            raise ValidationError("Cannot link an environment to itself")

        source_group = self._security_group(source_id)
        dest_group = self._security_group(dest_id)

        for group_id, peer_group_id in ((source_group.group_id, dest_group.group_id), (dest_group.group_id, source_group.group_id)):
            self.tolerate(
                lambda: self.providers.ec2.authorize_ingress_from_group(group_id, peer_group_id),
                codes=(DUPLICATE_PERMISSION,),
                event="environment.link_exists",
                group_id=group_id,
            )

        self.write_tags(source_id, {f"{LINK_TAG_PREFIX}{dest_id}": dest_id})
        self.write_tags(dest_id, {f"{LINK_TAG_PREFIX}{source_id}": source_id})
        logger.info("environment.linked", source_environment_id=source_id, dest_environment_id=dest_id)
        return EnvironmentLink(source_id, dest_id)

    def delete_link(self, request: EnvironmentLinkRequest) -> None:
        """Revoke traffic both ways; missing rules or groups are ignored."""
        source_id, dest_id = request.source_environment_id, request.dest_environment_id
        if source_id == dest_id:
            raise ValidationError("Cannot unlink an environment from itself")

        source_group = self.providers.ec2.describe_security_group(self.codec.encode(source_id).security_group_name)
        self._unlink(source_id, dest_id, source_group=source_group)
        logger.info("environment.unlinked", source_environment_id=source_id, dest_environment_id=dest_id)

    def _unlink(self, source_id: str, dest_id: str, *, source_group: SecurityGroup | None) -> None:
        dest_group = self.providers.ec2.describe_security_group(self.codec.encode(dest_id).security_group_name)

        if source_group is not None and dest_group is not None:
            pairs = ((source_group.group_id, dest_group.group_id), (dest_group.group_id, source_group.group_id))
            for group_id, peer_group_id in pairs:
                self.tolerate(
                    lambda: self.providers.ec2.revoke_ingress_from_group(group_id, peer_group_id),
                    codes=(PERMISSION_NOT_FOUND, GROUP_NOT_FOUND),
                    event="environment.link_absent",
                    group_id=group_id,
                )

        self.tag_store.delete(self.entity_type, source_id, f"{LINK_TAG_PREFIX}{dest_id}")
        self.tag_store.delete(self.entity_type, dest_id, f"{LINK_TAG_PREFIX}{source_id}")

    def _security_group(self, environment_id: str) -> SecurityGroup:
        group = self.providers.ec2.describe_security_group(self.codec.encode(environment_id).security_group_name)
        if group is None:
            raise EnvironmentNotFoundError(
                environment_id,
                message=f"Security group for environment '{environment_id}' does not exist",
            )
        return group
