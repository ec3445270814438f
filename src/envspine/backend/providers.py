"""Provider capability protocols and the data they exchange.

The orchestration managers never talk to a cloud SDK directly. They depend
on three capability sets, each a :class:`typing.Protocol`:

    .. code-block:: text

        Providers
        ├── ecs          ClusterProvider        clusters, task definitions,
        │                                       services, tasks
        ├── ec2          SecurityGroupProvider  groups + ingress rules
        └── autoscaling  AutoScalingProvider    scaling groups + launch configs

Every call is synchronous and fails with :class:`ProviderError` carrying
the provider's machine-readable ``code`` and human-readable message.
``describe_*`` calls signal absence with a ``ProviderError`` whose code or
message says so, except :meth:`SecurityGroupProvider.describe_security_group`,
which returns ``None``.

Implementations:
    :mod:`envspine.backend.aws`     boto3 clients
    :mod:`envspine.backend.memory`  in-process simulation for tests

Error matching helpers (:func:`contains_error_code`,
:func:`contains_error_message`) centralize the "already absent" /
"duplicate" tolerance rules the managers apply.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from envspine.core.errors import ProviderError

# Error codes and message fragments the managers tolerate or translate
CLUSTER_NOT_FOUND = "ClusterNotFoundException"
SERVICE_NOT_FOUND = "ServiceNotFoundException"
SERVICE_NOT_ACTIVE = "ServiceNotActiveException"
DUPLICATE_PERMISSION = "InvalidPermission.Duplicate"
PERMISSION_NOT_FOUND = "InvalidPermission.NotFound"
GROUP_NOT_FOUND = "InvalidGroup.NotFound"
DEPENDENCY_VIOLATION = "DependencyViolation"


def contains_error_code(exc: BaseException, *codes: str) -> bool:
    return isinstance(exc, ProviderError) and exc.code in codes


def contains_error_message(exc: BaseException, *fragments: str) -> bool:
    if not isinstance(exc, ProviderError):
        return False
    message = exc.provider_message.lower()
    return any(fragment.lower() in message for fragment in fragments)


# --------------------------------------------------------------------------- #
# Provider data
# --------------------------------------------------------------------------- #


@dataclass
class Cluster:
    cluster_name: str
    cluster_arn: str = ""
    status: str = "ACTIVE"


@dataclass
class SecurityGroup:
    group_id: str
    group_name: str
    vpc_id: str = ""
    ingress_from: list[str] = field(default_factory=list)


@dataclass
class LaunchConfiguration:
    name: str
    image_id: str
    instance_type: str
    iam_instance_profile: str = ""
    key_name: str = ""
    user_data: str = ""
    security_groups: list[str] = field(default_factory=list)


@dataclass
class AutoScalingGroup:
    name: str
    launch_configuration_name: str | None
    min_size: int
    max_size: int
    desired_capacity: int = 0
    instances: list[str] = field(default_factory=list)
    status: str | None = None


@dataclass
class TaskDefinition:
    family: str
    revision: int
    arn: str = ""
    status: str = "ACTIVE"
    container_definitions: list[dict[str, Any]] = field(default_factory=list)
    volumes: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class EcsService:
    service_name: str
    cluster: str
    task_definition: str
    desired_count: int = 0
    running_count: int = 0
    pending_count: int = 0
    status: str = "ACTIVE"


@dataclass
class EcsTask:
    task_arn: str
    cluster: str
    task_definition_arn: str
    last_status: str = "PENDING"
    desired_status: str = "RUNNING"
    started_by: str = ""


# --------------------------------------------------------------------------- #
# Capability protocols
# --------------------------------------------------------------------------- #


@runtime_checkable
class ClusterProvider(Protocol):
    def create_cluster(self, name: str) -> Cluster: ...

    def describe_cluster(self, name: str) -> Cluster: ...

    def list_clusters(self) -> list[Cluster]: ...

    def delete_cluster(self, name: str) -> None: ...

    def register_task_definition(
        self,
        family: str,
        container_definitions: list[dict[str, Any]],
        volumes: list[dict[str, Any]] | None = None,
    ) -> TaskDefinition: ...

    def describe_task_definition(self, task_definition: str) -> TaskDefinition: ...

    def list_task_definitions(self, family_prefix: str) -> list[str]: ...

    def deregister_task_definition(self, task_definition: str) -> None: ...

    def create_service(self, cluster: str, name: str, task_definition: str, desired_count: int) -> EcsService: ...

    def describe_service(self, cluster: str, name: str) -> EcsService: ...

    def update_service(
        self,
        cluster: str,
        name: str,
        *,
        task_definition: str | None = None,
        desired_count: int | None = None,
    ) -> EcsService: ...

    def delete_service(self, cluster: str, name: str) -> None: ...

    def run_task(
        self,
        cluster: str,
        task_definition: str,
        count: int,
        started_by: str,
        overrides: list[dict[str, Any]] | None = None,
    ) -> list[EcsTask]: ...

    def list_tasks(self, cluster: str, started_by: str) -> list[str]: ...

    def describe_tasks(self, cluster: str, task_arns: list[str]) -> list[EcsTask]: ...

    def stop_task(self, cluster: str, task_arn: str) -> None: ...


@runtime_checkable
class SecurityGroupProvider(Protocol):
    def create_security_group(self, name: str, description: str, vpc_id: str) -> str: ...

    def describe_security_group(self, name: str) -> SecurityGroup | None: ...

    def authorize_ingress_from_group(self, group_id: str, source_group_id: str) -> None: ...

    def revoke_ingress_from_group(self, group_id: str, source_group_id: str) -> None: ...

    def delete_security_group(self, group_id: str) -> None: ...


@runtime_checkable
class AutoScalingProvider(Protocol):
    def create_launch_configuration(
        self,
        name: str,
        image_id: str,
        iam_instance_profile: str,
        instance_type: str,
        key_name: str,
        user_data: str,
        security_groups: list[str],
    ) -> None: ...

    def describe_launch_configuration(self, name: str) -> LaunchConfiguration: ...

    def delete_launch_configuration(self, name: str) -> None: ...

    def create_auto_scaling_group(
        self,
        name: str,
        launch_configuration_name: str,
        subnets: list[str],
        min_size: int,
        max_size: int,
    ) -> None: ...

    def describe_auto_scaling_group(self, name: str) -> AutoScalingGroup: ...

    def update_auto_scaling_group_min_size(self, name: str, min_size: int) -> None: ...

    def update_auto_scaling_group_max_size(self, name: str, max_size: int) -> None: ...

    def delete_auto_scaling_group(self, name: str) -> None: ...


@dataclass
class Providers:
    """The capability set handed to every manager."""

    ecs: ClusterProvider
    ec2: SecurityGroupProvider
    autoscaling: AutoScalingProvider
