"""In-memory cloud simulation implementing every provider protocol.

Used by the test-suite and for local dry runs (``ENVSPINE_PROVIDER=memory``).
It reproduces the provider behaviours the orchestration code depends on,
including the awkward ones:

.. code-block:: text

    MemoryCloud behavior:

    Auto Scaling
      delete_auto_scaling_group → status "Delete in progress" for
                                  ``asg_delete_polls`` describes, then gone
      update on pending delete  → ValidationError "... is pending delete"
      anything on missing name  → ValidationError "... name not found"

    EC2
      delete_security_group     → DependencyViolation while a scaling group
                                  or another group's rule still references it
      authorize twice           → InvalidPermission.Duplicate
      revoke missing rule       → InvalidPermission.NotFound

    ECS
      delete_service            → DRAINING for ``service_drain_polls``
                                  describes, then INACTIVE
      stop_task on unknown ARN  → InvalidParameterException
                                  "The referenced task was not found."
      missing cluster           → ClusterNotFoundException

    Inject failures:
      cloud.fail_next("create_cluster", code, message)
                                → next create_cluster raises ProviderError

    Track usage:
      cloud.calls               → ordered list of provider method names

Example:
    >>> cloud = MemoryCloud()
    >>> providers = cloud.providers()
    >>> providers.ecs.create_cluster("es-dev-prod1a2b3c4d").status
    'ACTIVE'
    >>> cloud.fail_next("delete_cluster", "AccessDenied", "not allowed")
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field, replace
from typing import Any

from envspine.core.errors import ProviderError

from .providers import (
    CLUSTER_NOT_FOUND,
    DEPENDENCY_VIOLATION,
    DUPLICATE_PERMISSION,
    GROUP_NOT_FOUND,
    PERMISSION_NOT_FOUND,
    SERVICE_NOT_ACTIVE,
    SERVICE_NOT_FOUND,
    AutoScalingGroup,
    Cluster,
    EcsService,
    EcsTask,
    LaunchConfiguration,
    Providers,
    SecurityGroup,
    TaskDefinition,
)

_ACCOUNT = "000000000000"
_REGION = "us-west-2"
_PENDING_DELETE = "Delete in progress"


@dataclass
class _AsgRecord:
    group: AutoScalingGroup
    security_groups: list[str] = field(default_factory=list)
    polls_until_gone: int | None = None


@dataclass
class _ServiceRecord:
    service: EcsService
    polls_until_inactive: int | None = None


class MemoryCloud:
    """Thread-safe simulated ECS / EC2 / Auto Scaling account."""

    def __init__(self, *, asg_delete_polls: int = 0, service_drain_polls: int = 0):
        self.asg_delete_polls = asg_delete_polls
        self.service_drain_polls = service_drain_polls

        self.clusters: dict[str, Cluster] = {}
        self.security_groups: dict[str, SecurityGroup] = {}
        self.launch_configurations: dict[str, LaunchConfiguration] = {}
        self.auto_scaling_groups: dict[str, _AsgRecord] = {}
        self.task_definitions: dict[str, list[TaskDefinition]] = {}
        self.services: dict[tuple[str, str], _ServiceRecord] = {}
        self.tasks: dict[str, EcsTask] = {}

        self.calls: list[str] = []
        self._failures: dict[str, list[ProviderError]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def providers(self) -> Providers:
        return Providers(ecs=self, ec2=self, autoscaling=self)

    def fail_next(self, method: str, code: str, message: str) -> None:
        """Make the next call to *method* raise a ProviderError."""
        with self._lock:
            self._failures.setdefault(method, []).append(ProviderError(code, message, operation=method))

    def call_count(self, method: str) -> int:
        return self.calls.count(method)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def _next_id(self) -> int:
        return next(self._ids)

    # ------------------------------------------------------------------ #
    # ECS: clusters
    # ------------------------------------------------------------------ #

    def create_cluster(self, name: str) -> Cluster:
        with self._lock:
            self._enter("create_cluster")
            cluster = self.clusters.get(name)
            if cluster is None:
                cluster = Cluster(name, f"arn:aws:ecs:{_REGION}:{_ACCOUNT}:cluster/{name}", "ACTIVE")
                self.clusters[name] = cluster
            return replace(cluster)

    def describe_cluster(self, name: str) -> Cluster:
        with self._lock:
            self._enter("describe_cluster")
            return replace(self._cluster(name))

    def list_clusters(self) -> list[Cluster]:
        with self._lock:
            self._enter("list_clusters")
            return [replace(c) for c in self.clusters.values()]

    def delete_cluster(self, name: str) -> None:
        with self._lock:
            self._enter("delete_cluster")
            self._cluster(name)
            active = [s for (cluster, _), s in self.services.items() if cluster == name and s.service.status != "INACTIVE"]
            if active:
                raise ProviderError(
                    "ClusterContainsServicesException",
                    "The Cluster cannot be deleted while Services are active.",
                    operation="delete_cluster",
                )
            del self.clusters[name]

    def _cluster(self, name: str) -> Cluster:
        cluster = self.clusters.get(name)
        if cluster is None:
            raise ProviderError(CLUSTER_NOT_FOUND, "Cluster not found.")
        return cluster

    # ------------------------------------------------------------------ #
    # ECS: task definitions
    # ------------------------------------------------------------------ #

    def register_task_definition(
        self,
        family: str,
        container_definitions: list[dict[str, Any]],
        volumes: list[dict[str, Any]] | None = None,
    ) -> TaskDefinition:
        with self._lock:
            self._enter("register_task_definition")
            if not container_definitions:
                raise ProviderError("ClientException", "Container list cannot be empty.")
            revisions = self.task_definitions.setdefault(family, [])
            revision = len(revisions) + 1
            definition = TaskDefinition(
                family=family,
                revision=revision,
                arn=f"arn:aws:ecs:{_REGION}:{_ACCOUNT}:task-definition/{family}:{revision}",
                container_definitions=[dict(c) for c in container_definitions],
                volumes=[dict(v) for v in volumes or []],
            )
            revisions.append(definition)
            return replace(definition)

    def describe_task_definition(self, task_definition: str) -> TaskDefinition:
        with self._lock:
            self._enter("describe_task_definition")
            return replace(self._task_definition(task_definition))

    def list_task_definitions(self, family_prefix: str) -> list[str]:
        with self._lock:
            self._enter("list_task_definitions")
            return [
                d.arn
                for family, revisions in sorted(self.task_definitions.items())
                if family.startswith(family_prefix)
                for d in revisions
                if d.status == "ACTIVE"
            ]

    def deregister_task_definition(self, task_definition: str) -> None:
        with self._lock:
            self._enter("deregister_task_definition")
            self._task_definition(task_definition).status = "INACTIVE"

    def _task_definition(self, reference: str) -> TaskDefinition:
        name = reference.rsplit("/", 1)[-1]
        family, _, revision = name.partition(":")
        revisions = self.task_definitions.get(family, [])
        try:
            definition = revisions[int(revision) - 1] if revision else revisions[-1]
        except (IndexError, ValueError):
            raise ProviderError("ClientException", "Unable to describe task definition.") from None
        return definition

    # ------------------------------------------------------------------ #
    # ECS: services
    # ------------------------------------------------------------------ #

    def create_service(self, cluster: str, name: str, task_definition: str, desired_count: int) -> EcsService:
        with self._lock:
            self._enter("create_service")
            cluster_arn = self._cluster(cluster).cluster_arn
            definition = self._task_definition(task_definition)
            existing = self.services.get((cluster, name))
            if existing and existing.service.status != "INACTIVE":
                raise ProviderError("InvalidParameterException", "Creation of service was not idempotent.")
            service = EcsService(
                service_name=name,
                cluster=cluster_arn,
                task_definition=definition.arn,
                desired_count=desired_count,
                running_count=desired_count,
                status="ACTIVE",
            )
            self.services[(cluster, name)] = _ServiceRecord(service)
            return replace(service)

    def describe_service(self, cluster: str, name: str) -> EcsService:
        with self._lock:
            self._enter("describe_service")
            self._cluster(cluster)
            record = self.services.get((cluster, name))
            if record is None:
                raise ProviderError(SERVICE_NOT_FOUND, "Service not found.")
            if record.polls_until_inactive is not None:
                if record.polls_until_inactive <= 0:
                    record.service.status = "INACTIVE"
                    record.service.running_count = 0
                record.polls_until_inactive -= 1
            return replace(record.service)

    def update_service(
        self,
        cluster: str,
        name: str,
        *,
        task_definition: str | None = None,
        desired_count: int | None = None,
    ) -> EcsService:
        with self._lock:
            self._enter("update_service")
            service = self._active_service(cluster, name)
            if task_definition is not None:
                service.task_definition = self._task_definition(task_definition).arn
            if desired_count is not None:
                service.desired_count = desired_count
                service.running_count = desired_count
            return replace(service)

    def delete_service(self, cluster: str, name: str) -> None:
        with self._lock:
            self._enter("delete_service")
            service = self._active_service(cluster, name)
            if service.desired_count > 0:
                raise ProviderError(
                    "InvalidParameterException",
                    "The service cannot be stopped while it is scaled above 0.",
                )
            service.status = "DRAINING"
            self.services[(cluster, name)].polls_until_inactive = self.service_drain_polls

    def _active_service(self, cluster: str, name: str) -> EcsService:
        self._cluster(cluster)
        record = self.services.get((cluster, name))
        if record is None:
            raise ProviderError(SERVICE_NOT_FOUND, "Service not found.")
        if record.service.status != "ACTIVE":
            raise ProviderError(SERVICE_NOT_ACTIVE, "Service was not ACTIVE.")
        return record.service

    # ------------------------------------------------------------------ #
    # ECS: tasks
    # ------------------------------------------------------------------ #

    def run_task(
        self,
        cluster: str,
        task_definition: str,
        count: int,
        started_by: str,
        overrides: list[dict[str, Any]] | None = None,
    ) -> list[EcsTask]:
        with self._lock:
            self._enter("run_task")
            self._cluster(cluster)
            definition = self._task_definition(task_definition)
            if definition.status != "ACTIVE":
                raise ProviderError("ClientException", "TaskDefinition is inactive")
            started: list[EcsTask] = []
            for _ in range(count):
                arn = f"arn:aws:ecs:{_REGION}:{_ACCOUNT}:task/{cluster}/{self._next_id():08x}"
                task = EcsTask(
                    task_arn=arn,
                    cluster=cluster,
                    task_definition_arn=definition.arn,
                    last_status="RUNNING",
                    desired_status="RUNNING",
                    started_by=started_by,
                )
                self.tasks[arn] = task
                started.append(replace(task))
            return started

    def list_tasks(self, cluster: str, started_by: str) -> list[str]:
        with self._lock:
            self._enter("list_tasks")
            self._cluster(cluster)
            return [t.task_arn for t in self.tasks.values() if t.cluster == cluster and t.started_by == started_by]

    def describe_tasks(self, cluster: str, task_arns: list[str]) -> list[EcsTask]:
        with self._lock:
            self._enter("describe_tasks")
            self._cluster(cluster)
            return [replace(self.tasks[arn]) for arn in task_arns if arn in self.tasks]

    def stop_task(self, cluster: str, task_arn: str) -> None:
        with self._lock:
            self._enter("stop_task")
            self._cluster(cluster)
            task = self.tasks.get(task_arn)
            if task is None or task.cluster != cluster:
                raise ProviderError("InvalidParameterException", "The referenced task was not found.")
            task.last_status = "STOPPED"
            task.desired_status = "STOPPED"

    # ------------------------------------------------------------------ #
    # EC2: security groups
    # ------------------------------------------------------------------ #

    def create_security_group(self, name: str, description: str, vpc_id: str) -> str:
        with self._lock:
            self._enter("create_security_group")
            if any(g.group_name == name for g in self.security_groups.values()):
                raise ProviderError("InvalidGroup.Duplicate", f"The security group '{name}' already exists")
            group_id = f"sg-{self._next_id():08x}"
            self.security_groups[group_id] = SecurityGroup(group_id, name, vpc_id)
            return group_id

    def describe_security_group(self, name: str) -> SecurityGroup | None:
        with self._lock:
            self._enter("describe_security_group")
            for group in self.security_groups.values():
                if group.group_name == name:
                    return replace(group, ingress_from=list(group.ingress_from))
            return None

    def authorize_ingress_from_group(self, group_id: str, source_group_id: str) -> None:
        with self._lock:
            self._enter("authorize_ingress_from_group")
            group = self._security_group(group_id)
            self._security_group(source_group_id)
            if source_group_id in group.ingress_from:
                raise ProviderError(
                    DUPLICATE_PERMISSION,
                    "the specified rule \"peer: " + source_group_id + ", ALL, ALLOW\" already exists",
                )
            group.ingress_from.append(source_group_id)

    def revoke_ingress_from_group(self, group_id: str, source_group_id: str) -> None:
        with self._lock:
            self._enter("revoke_ingress_from_group")
            group = self._security_group(group_id)
            if source_group_id not in group.ingress_from:
                raise ProviderError(
                    PERMISSION_NOT_FOUND,
                    "The specified rule does not exist in this security group.",
                )
            group.ingress_from.remove(source_group_id)

    def delete_security_group(self, group_id: str) -> None:
        with self._lock:
            self._enter("delete_security_group")
            self._security_group(group_id)
            referenced_by_asg = any(group_id in r.security_groups for r in self.auto_scaling_groups.values())
            referenced_by_rule = any(
                group_id in g.ingress_from for gid, g in self.security_groups.items() if gid != group_id
            )
            if referenced_by_asg or referenced_by_rule:
                raise ProviderError(
                    DEPENDENCY_VIOLATION,
                    f"resource {group_id} has a dependent object",
                )
            del self.security_groups[group_id]

    def _security_group(self, group_id: str) -> SecurityGroup:
        group = self.security_groups.get(group_id)
        if group is None:
            raise ProviderError(GROUP_NOT_FOUND, f"The security group '{group_id}' does not exist")
        return group

    # ------------------------------------------------------------------ #
    # Auto Scaling
    # ------------------------------------------------------------------ #

    def create_launch_configuration(
        self,
        name: str,
        image_id: str,
        iam_instance_profile: str,
        instance_type: str,
        key_name: str,
        user_data: str,
        security_groups: list[str],
    ) -> None:
        with self._lock:
            self._enter("create_launch_configuration")
            if name in self.launch_configurations:
                raise ProviderError("AlreadyExists", f"Launch Configuration by this name already exists - {name}")
            self.launch_configurations[name] = LaunchConfiguration(
                name=name,
                image_id=image_id,
                instance_type=instance_type,
                iam_instance_profile=iam_instance_profile,
                key_name=key_name,
                user_data=user_data,
                security_groups=list(security_groups),
            )

    def describe_launch_configuration(self, name: str) -> LaunchConfiguration:
        with self._lock:
            self._enter("describe_launch_configuration")
            config = self.launch_configurations.get(name)
            if config is None:
                raise ProviderError("ValidationError", f"Launch configuration name not found - {name}")
            return replace(config, security_groups=list(config.security_groups))

    def delete_launch_configuration(self, name: str) -> None:
        with self._lock:
            self._enter("delete_launch_configuration")
            if name not in self.launch_configurations:
                raise ProviderError("ValidationError", f"Launch configuration name not found - {name}")
            del self.launch_configurations[name]

    def create_auto_scaling_group(
        self,
        name: str,
        launch_configuration_name: str,
        subnets: list[str],
        min_size: int,
        max_size: int,
    ) -> None:
        with self._lock:
            self._enter("create_auto_scaling_group")
            if name in self.auto_scaling_groups:
                raise ProviderError("AlreadyExists", f"AutoScalingGroup by this name already exists - {name}")
            config = self.launch_configurations.get(launch_configuration_name)
            if config is None:
                raise ProviderError("ValidationError", f"Launch configuration name not found - {launch_configuration_name}")
            group = AutoScalingGroup(
                name=name,
                launch_configuration_name=launch_configuration_name,
                min_size=min_size,
                max_size=max_size,
                desired_capacity=min_size,
            )
            self.auto_scaling_groups[name] = _AsgRecord(group, security_groups=list(config.security_groups))

    def describe_auto_scaling_group(self, name: str) -> AutoScalingGroup:
        with self._lock:
            self._enter("describe_auto_scaling_group")
            record = self._asg(name)
            group = replace(record.group, instances=list(record.group.instances))
            if record.polls_until_gone is not None:
                if record.polls_until_gone <= 0:
                    del self.auto_scaling_groups[name]
                    raise ProviderError("ValidationError", f"AutoScalingGroup name not found - {name}")
                record.polls_until_gone -= 1
            return group

    def update_auto_scaling_group_min_size(self, name: str, min_size: int) -> None:
        with self._lock:
            self._enter("update_auto_scaling_group_min_size")
            group = self._mutable_asg(name)
            if min_size > group.max_size:
                raise ProviderError("ValidationError", f"Desired capacity:{min_size} must be between the specified min size:{min_size} and max size:{group.max_size}")
            group.min_size = min_size
            group.desired_capacity = max(group.desired_capacity, min_size)

    def update_auto_scaling_group_max_size(self, name: str, max_size: int) -> None:
        with self._lock:
            self._enter("update_auto_scaling_group_max_size")
            group = self._mutable_asg(name)
            if max_size < group.min_size:
                raise ProviderError("ValidationError", f"Max bound, {max_size}, must be greater than or equal to min bound, {group.min_size}")
            group.max_size = max_size
            group.desired_capacity = min(group.desired_capacity, max_size)

    def delete_auto_scaling_group(self, name: str) -> None:
        with self._lock:
            self._enter("delete_auto_scaling_group")
            record = self._asg(name)
            if record.polls_until_gone is not None:
                return
            record.group.status = _PENDING_DELETE
            record.group.min_size = record.group.max_size = record.group.desired_capacity = 0
            record.polls_until_gone = self.asg_delete_polls

    def remove_auto_scaling_group(self, name: str) -> None:
        """Drop a scaling group out-of-band, as a manual console delete would."""
        with self._lock:
            self.auto_scaling_groups.pop(name, None)

    def _asg(self, name: str) -> _AsgRecord:
        record = self.auto_scaling_groups.get(name)
        if record is None:
            raise ProviderError("ValidationError", f"AutoScalingGroup name not found - {name}")
        return record

    def _mutable_asg(self, name: str) -> AutoScalingGroup:
        record = self._asg(name)
        if record.polls_until_gone is not None:
            raise ProviderError("ScalingActivityInProgress", f"AutoScalingGroup {name} is pending delete.")
        return record.group
