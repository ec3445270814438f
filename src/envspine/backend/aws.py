"""boto3 implementations of the provider capability protocols.

Each adapter wraps one boto3 client. Every ``ClientError`` is translated
into :class:`ProviderError` with the service's error code and message kept
verbatim, so tolerance rules in the managers can match on them.

Describe calls that come back empty are raised as "not found" provider
errors, mirroring what the services themselves report for mutating calls
on missing resources.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from envspine.core.config.settings import EnvSpineSettings
from envspine.core.errors import ProviderError
from envspine.core.logging import get_logger

from .providers import (
    CLUSTER_NOT_FOUND,
    AutoScalingGroup,
    Cluster,
    EcsService,
    EcsTask,
    LaunchConfiguration,
    Providers,
    SecurityGroup,
    TaskDefinition,
)

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# One attempt per call: provider failures surface to the caller unchanged.
_RETRY_CONFIG = Config(retries={"total_max_attempts": 1, "mode": "standard"})


def _translate(operation: str) -> Callable[[F], F]:
    """Re-raise botocore ClientError as ProviderError tagged with *operation*."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except ClientError as exc:
                raise ProviderError.from_client_error(exc, operation=operation) from exc

        return wrapper  # type: ignore[return-value]

    return decorator


def make_client(service: str, *, region: str | None = None, endpoint_url: str | None = None) -> Any:
    client_kwargs: dict[str, Any] = {
        "service_name": service,
        "config": _RETRY_CONFIG,
    }
    if region:
        client_kwargs["region_name"] = region
    if endpoint_url:
        client_kwargs["endpoint_url"] = endpoint_url
    return boto3.client(**client_kwargs)


# --------------------------------------------------------------------------- #
# ECS
# --------------------------------------------------------------------------- #


class AwsClusterProvider:
    """ECS clusters, task definitions, services and tasks."""

    def __init__(self, client: Any):
        self.client = client

    @_translate("ecs.create_cluster")
    def create_cluster(self, name: str) -> Cluster:
        response = self.client.create_cluster(clusterName=name)
        return _to_cluster(response["cluster"])

    @_translate("ecs.describe_cluster")
    def describe_cluster(self, name: str) -> Cluster:
        response = self.client.describe_clusters(clusters=[name])
        clusters = response.get("clusters", [])
        if not clusters:
            raise ProviderError(CLUSTER_NOT_FOUND, f"Cluster not found: {name}", operation="ecs.describe_cluster")
        return _to_cluster(clusters[0])

    @_translate("ecs.list_clusters")
    def list_clusters(self) -> list[Cluster]:
        arns: list[str] = []
        for page in self.client.get_paginator("list_clusters").paginate():
            arns.extend(page.get("clusterArns", []))

        clusters: list[Cluster] = []
        # describe_clusters accepts at most 100 names per call
        for start in range(0, len(arns), 100):
            response = self.client.describe_clusters(clusters=arns[start:start + 100])
            clusters.extend(_to_cluster(c) for c in response.get("clusters", []))
        return clusters

    @_translate("ecs.delete_cluster")
    def delete_cluster(self, name: str) -> None:
        self.client.delete_cluster(cluster=name)

    @_translate("ecs.register_task_definition")
    def register_task_definition(
        self,
        family: str,
        container_definitions: list[dict[str, Any]],
        volumes: list[dict[str, Any]] | None = None,
    ) -> TaskDefinition:
        response = self.client.register_task_definition(
            family=family,
            containerDefinitions=container_definitions,
            volumes=volumes or [],
        )
        return _to_task_definition(response["taskDefinition"])

    @_translate("ecs.describe_task_definition")
    def describe_task_definition(self, task_definition: str) -> TaskDefinition:
        response = self.client.describe_task_definition(taskDefinition=task_definition)
        return _to_task_definition(response["taskDefinition"])

    @_translate("ecs.list_task_definitions")
    def list_task_definitions(self, family_prefix: str) -> list[str]:
        arns: list[str] = []
        paginator = self.client.get_paginator("list_task_definitions")
        for page in paginator.paginate(familyPrefix=family_prefix, status="ACTIVE"):
            arns.extend(page.get("taskDefinitionArns", []))
        return arns

    @_translate("ecs.deregister_task_definition")
    def deregister_task_definition(self, task_definition: str) -> None:
        self.client.deregister_task_definition(taskDefinition=task_definition)

    @_translate("ecs.create_service")
    def create_service(self, cluster: str, name: str, task_definition: str, desired_count: int) -> EcsService:
        response = self.client.create_service(
            cluster=cluster,
            serviceName=name,
            taskDefinition=task_definition,
            desiredCount=desired_count,
        )
        return _to_service(response["service"])

    @_translate("ecs.describe_service")
    def describe_service(self, cluster: str, name: str) -> EcsService:
        response = self.client.describe_services(cluster=cluster, services=[name])
        services = response.get("services", [])
        if not services:
            raise ProviderError(
                "ServiceNotFoundException",
                f"Service not found: {name}",
                operation="ecs.describe_service",
            )
        return _to_service(services[0])

    @_translate("ecs.update_service")
    def update_service(
        self,
        cluster: str,
        name: str,
        *,
        task_definition: str | None = None,
        desired_count: int | None = None,
    ) -> EcsService:
        kwargs: dict[str, Any] = {"cluster": cluster, "service": name}
        if task_definition is not None:
            kwargs["taskDefinition"] = task_definition
        if desired_count is not None:
            kwargs["desiredCount"] = desired_count
        response = self.client.update_service(**kwargs)
        return _to_service(response["service"])

    @_translate("ecs.delete_service")
    def delete_service(self, cluster: str, name: str) -> None:
        self.client.delete_service(cluster=cluster, service=name)

    @_translate("ecs.run_task")
    def run_task(
        self,
        cluster: str,
        task_definition: str,
        count: int,
        started_by: str,
        overrides: list[dict[str, Any]] | None = None,
    ) -> list[EcsTask]:
        response = self.client.run_task(
            cluster=cluster,
            taskDefinition=task_definition,
            count=count,
            startedBy=started_by,
            overrides={"containerOverrides": overrides or []},
        )
        failures = response.get("failures", [])
        if failures and not response.get("tasks"):
            reason = failures[0].get("reason", "unknown")
            raise ProviderError("RunTaskFailure", f"Failed to run task: {reason}", operation="ecs.run_task")
        return [_to_task(t) for t in response.get("tasks", [])]

    @_translate("ecs.list_tasks")
    def list_tasks(self, cluster: str, started_by: str) -> list[str]:
        arns: list[str] = []
        for status in ("RUNNING", "STOPPED"):
            paginator = self.client.get_paginator("list_tasks")
            for page in paginator.paginate(cluster=cluster, startedBy=started_by, desiredStatus=status):
                arns.extend(page.get("taskArns", []))
        return arns

    @_translate("ecs.describe_tasks")
    def describe_tasks(self, cluster: str, task_arns: list[str]) -> list[EcsTask]:
        if not task_arns:
            return []
        tasks: list[EcsTask] = []
        for start in range(0, len(task_arns), 100):
            response = self.client.describe_tasks(cluster=cluster, tasks=task_arns[start:start + 100])
            tasks.extend(_to_task(t) for t in response.get("tasks", []))
        return tasks

    @_translate("ecs.stop_task")
    def stop_task(self, cluster: str, task_arn: str) -> None:
        self.client.stop_task(cluster=cluster, task=task_arn)


def _to_cluster(data: dict[str, Any]) -> Cluster:
    return Cluster(
        cluster_name=data.get("clusterName", ""),
        cluster_arn=data.get("clusterArn", ""),
        status=data.get("status", ""),
    )


def _to_task_definition(data: dict[str, Any]) -> TaskDefinition:
    return TaskDefinition(
        family=data["family"],
        revision=int(data["revision"]),
        arn=data.get("taskDefinitionArn", ""),
        status=data.get("status", "ACTIVE"),
        container_definitions=list(data.get("containerDefinitions", [])),
        volumes=list(data.get("volumes", [])),
    )


def _to_service(data: dict[str, Any]) -> EcsService:
    return EcsService(
        service_name=data.get("serviceName", ""),
        cluster=data.get("clusterArn", ""),
        task_definition=data.get("taskDefinition", ""),
        desired_count=int(data.get("desiredCount", 0)),
        running_count=int(data.get("runningCount", 0)),
        pending_count=int(data.get("pendingCount", 0)),
        status=data.get("status", ""),
    )


def _to_task(data: dict[str, Any]) -> EcsTask:
    return EcsTask(
        task_arn=data.get("taskArn", ""),
        cluster=data.get("clusterArn", ""),
        task_definition_arn=data.get("taskDefinitionArn", ""),
        last_status=data.get("lastStatus", ""),
        desired_status=data.get("desiredStatus", ""),
        started_by=data.get("startedBy", ""),
    )


# --------------------------------------------------------------------------- #
# EC2
# --------------------------------------------------------------------------- #


class AwsSecurityGroupProvider:
    """EC2 security groups and group-to-group ingress rules."""

    def __init__(self, client: Any):
        self.client = client

    @_translate("ec2.create_security_group")
    def create_security_group(self, name: str, description: str, vpc_id: str) -> str:
        response = self.client.create_security_group(GroupName=name, Description=description, VpcId=vpc_id)
        return response["GroupId"]

    @_translate("ec2.describe_security_group")
    def describe_security_group(self, name: str) -> SecurityGroup | None:
        response = self.client.describe_security_groups(
            Filters=[{"Name": "group-name", "Values": [name]}],
        )
        groups = response.get("SecurityGroups", [])
        if not groups:
            return None

        group = groups[0]
        sources = [
            pair["GroupId"]
            for permission in group.get("IpPermissions", [])
            for pair in permission.get("UserIdGroupPairs", [])
            if "GroupId" in pair
        ]
        return SecurityGroup(
            group_id=group["GroupId"],
            group_name=group.get("GroupName", name),
            vpc_id=group.get("VpcId", ""),
            ingress_from=sources,
        )

    @_translate("ec2.authorize_security_group_ingress")
    def authorize_ingress_from_group(self, group_id: str, source_group_id: str) -> None:
        self.client.authorize_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[_group_permission(source_group_id)],
        )

    @_translate("ec2.revoke_security_group_ingress")
    def revoke_ingress_from_group(self, group_id: str, source_group_id: str) -> None:
        self.client.revoke_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[_group_permission(source_group_id)],
        )

    @_translate("ec2.delete_security_group")
    def delete_security_group(self, group_id: str) -> None:
        self.client.delete_security_group(GroupId=group_id)


def _group_permission(source_group_id: str) -> dict[str, Any]:
    return {
        "IpProtocol": "-1",
        "UserIdGroupPairs": [{"GroupId": source_group_id}],
    }


# --------------------------------------------------------------------------- #
# Auto Scaling
# --------------------------------------------------------------------------- #


class AwsAutoScalingProvider:
    """Auto Scaling groups and launch configurations."""

    def __init__(self, client: Any):
        self.client = client

    @_translate("autoscaling.create_launch_configuration")
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
        kwargs: dict[str, Any] = {
            "LaunchConfigurationName": name,
            "ImageId": image_id,
            "InstanceType": instance_type,
            "UserData": user_data,
            "SecurityGroups": security_groups,
        }
        if iam_instance_profile:
            kwargs["IamInstanceProfile"] = iam_instance_profile
        if key_name:
            kwargs["KeyName"] = key_name
        self.client.create_launch_configuration(**kwargs)

    @_translate("autoscaling.describe_launch_configuration")
    def describe_launch_configuration(self, name: str) -> LaunchConfiguration:
        response = self.client.describe_launch_configurations(LaunchConfigurationNames=[name])
        configs = response.get("LaunchConfigurations", [])
        if not configs:
            raise ProviderError(
                "ValidationError",
                f"Launch configuration name not found - {name}",
                operation="autoscaling.describe_launch_configuration",
            )
        data = configs[0]
        return LaunchConfiguration(
            name=data["LaunchConfigurationName"],
            image_id=data.get("ImageId", ""),
            instance_type=data.get("InstanceType", ""),
            iam_instance_profile=data.get("IamInstanceProfile", ""),
            key_name=data.get("KeyName", ""),
            user_data=data.get("UserData", ""),
            security_groups=list(data.get("SecurityGroups", [])),
        )

    @_translate("autoscaling.delete_launch_configuration")
    def delete_launch_configuration(self, name: str) -> None:
        self.client.delete_launch_configuration(LaunchConfigurationName=name)

    @_translate("autoscaling.create_auto_scaling_group")
    def create_auto_scaling_group(
        self,
        name: str,
        launch_configuration_name: str,
        subnets: list[str],
        min_size: int,
        max_size: int,
    ) -> None:
        self.client.create_auto_scaling_group(
            AutoScalingGroupName=name,
            LaunchConfigurationName=launch_configuration_name,
            VPCZoneIdentifier=",".join(subnets),
            MinSize=min_size,
            MaxSize=max_size,
        )

    @_translate("autoscaling.describe_auto_scaling_group")
    def describe_auto_scaling_group(self, name: str) -> AutoScalingGroup:
        response = self.client.describe_auto_scaling_groups(AutoScalingGroupNames=[name])
        groups = response.get("AutoScalingGroups", [])
        if not groups:
            raise ProviderError(
                "ValidationError",
                f"AutoScalingGroup name not found - {name}",
                operation="autoscaling.describe_auto_scaling_group",
            )
        data = groups[0]
        return AutoScalingGroup(
            name=data["AutoScalingGroupName"],
            launch_configuration_name=data.get("LaunchConfigurationName"),
            min_size=int(data.get("MinSize", 0)),
            max_size=int(data.get("MaxSize", 0)),
            desired_capacity=int(data.get("DesiredCapacity", 0)),
            instances=[i["InstanceId"] for i in data.get("Instances", [])],
            status=data.get("Status"),
        )

    @_translate("autoscaling.update_auto_scaling_group")
    def update_auto_scaling_group_min_size(self, name: str, min_size: int) -> None:
        self.client.update_auto_scaling_group(AutoScalingGroupName=name, MinSize=min_size)

    @_translate("autoscaling.update_auto_scaling_group")
    def update_auto_scaling_group_max_size(self, name: str, max_size: int) -> None:
        self.client.update_auto_scaling_group(AutoScalingGroupName=name, MaxSize=max_size)

    @_translate("autoscaling.delete_auto_scaling_group")
    def delete_auto_scaling_group(self, name: str) -> None:
        self.client.delete_auto_scaling_group(AutoScalingGroupName=name, ForceDelete=True)


def create_aws_providers(settings: EnvSpineSettings) -> Providers:
    """Build the boto3-backed provider bundle from settings."""
    region = settings.aws_region or None
    endpoint = settings.aws_endpoint_url or None
    logger.info("providers.aws_initialized", region=region, endpoint=endpoint)
    return Providers(
        ecs=AwsClusterProvider(make_client("ecs", region=region, endpoint_url=endpoint)),
        ec2=AwsSecurityGroupProvider(make_client("ec2", region=region, endpoint_url=endpoint)),
        autoscaling=AwsAutoScalingProvider(make_client("autoscaling", region=region, endpoint_url=endpoint)),
    )
