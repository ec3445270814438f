"""Service orchestration.

A service is a long-running ECS service inside an environment's cluster,
running one deploy at a desired count. Its logical ID is generated from
the service name scoped by the environment ID, so the same name may be
reused across environments.

The owning environment is recorded only in the ``environment_id`` tag;
reads and deletes resolve the cluster through that tag.
"""

from __future__ import annotations

from envspine.core.errors import (
    EntityNotFoundError,
    ProviderError,
    ServiceNotFoundError,
    ValidationError,
)
from envspine.core.logging import get_logger
from envspine.models import (
    CreateServiceRequest,
    EntityType,
    ScaleServiceRequest,
    Service,
    UpdateServiceRequest,
)
from envspine.tags.lookup import delete_entity_tags, lookup_entity_environment_id
from envspine.tags.models import Tags

from ._base import BaseManager
from .providers import (
    CLUSTER_NOT_FOUND,
    SERVICE_NOT_ACTIVE,
    SERVICE_NOT_FOUND,
    EcsService,
    contains_error_code,
)

logger = get_logger(__name__)

_ABSENT_CODES = (SERVICE_NOT_FOUND, SERVICE_NOT_ACTIVE, CLUSTER_NOT_FOUND)


class ServiceManager(BaseManager):
    entity_type = EntityType.SERVICE.value

    def create(self, request: CreateServiceRequest) -> Service:
        if request.desired_count < 0:
            raise ValidationError("Desired count must not be negative")

        cluster_name = self.require_cluster(request.environment_id)
        task_definition = self.require_deploy(request.deploy_id)

        service_id = self.codec.generate(request.service_name, request.environment_id)
        name = self.codec.encode(service_id)
        self.providers.ecs.create_service(cluster_name, name.service_name, task_definition, request.desired_count)

        self.write_tags(
            service_id,
            {
                "name": request.service_name,
                "environment_id": request.environment_id,
                "deploy_id": request.deploy_id,
            },
        )
        logger.info("service.created", service_id=service_id, environment_id=request.environment_id)
        return self.get(service_id)

    def get(self, service_id: str) -> Service:
        """Describe a service.

        Raises:
            ServiceNotFoundError: If the service has no environment tag or
                the provider no longer knows it.
        """
        tags = self.tag_store.select_by_type_and_id(self.entity_type, service_id)
        environment_id = self._environment_id(service_id)
        cluster_name = self.codec.encode(environment_id).cluster_name
        try:
            service = self.providers.ecs.describe_service(cluster_name, self.codec.encode(service_id).service_name)
        except ProviderError as exc:
            if contains_error_code(exc, SERVICE_NOT_FOUND, CLUSTER_NOT_FOUND):
                raise ServiceNotFoundError(service_id, cause=exc) from exc
            raise

        if service.status == "INACTIVE":
            raise ServiceNotFoundError(service_id)
        return self._to_model(service_id, environment_id, service, tags)

    def list(self) -> list[Service]:
        """Services known to the tag store; ones gone from the provider are skipped."""
        services: list[Service] = []
        for (_, service_id), tags in sorted(self.tag_store.select_by_type(self.entity_type).group_by_entity().items()):
            try:
                services.append(self.get(service_id))
            except ServiceNotFoundError:
                logger.warning("service.missing", service_id=service_id, tags=tags.as_dict())
        return services

    def scale(self, request: ScaleServiceRequest) -> Service:
        if request.desired_count < 0:
            raise ValidationError("Desired count must not be negative")

        cluster_name, service_name = self._addresses(request.service_id)
        self._update(request.service_id, cluster_name, service_name, desired_count=request.desired_count)
        logger.info("service.scaled", service_id=request.service_id, desired_count=request.desired_count)
        return self.get(request.service_id)

    def update(self, request: UpdateServiceRequest) -> Service:
        """Roll the service onto another deploy."""
        cluster_name, service_name = self._addresses(request.service_id)
        task_definition = self.require_deploy(request.deploy_id)
        self._update(request.service_id, cluster_name, service_name, task_definition=task_definition)
        self.write_tags(request.service_id, {"deploy_id": request.deploy_id})
        logger.info("service.updated", service_id=request.service_id, deploy_id=request.deploy_id)
        return self.get(request.service_id)

    def delete(self, service_id: str) -> None:
        """Scale to zero, delete, wait for INACTIVE, drop tags.

        A service without an environment tag has nothing left to address
        on the provider side; only its tags are removed.
        """
        try:
            environment_id = lookup_entity_environment_id(self.tag_store, self.entity_type, service_id)
        except EntityNotFoundError:
            logger.warning("service.environment_missing", service_id=service_id)
            delete_entity_tags(self.tag_store, self.entity_type, service_id)
            return

        cluster_name = self.codec.encode(environment_id).cluster_name
        service_name = self.codec.encode(service_id).service_name
        ecs = self.providers.ecs

        self.tolerate(
            lambda: ecs.update_service(cluster_name, service_name, desired_count=0),
            codes=_ABSENT_CODES,
            event="service.scale_down_skipped",
            service_id=service_id,
        )
        self.tolerate(
            lambda: ecs.delete_service(cluster_name, service_name),
            codes=_ABSENT_CODES,
            event="service.absent",
            service_id=service_id,
        )

        def check() -> tuple[bool, str | None]:
            try:
                service = ecs.describe_service(cluster_name, service_name)
            except ProviderError as exc:
                if contains_error_code(exc, SERVICE_NOT_FOUND, CLUSTER_NOT_FOUND):
                    return True, None
                raise
            return service.status == "INACTIVE", service.status

        self.waiter(f"Service delete for '{service_name}'", check).wait()

        delete_entity_tags(self.tag_store, self.entity_type, service_id)
        logger.info("service.deleted", service_id=service_id)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _environment_id(self, service_id: str) -> str:
        try:
            return lookup_entity_environment_id(self.tag_store, self.entity_type, service_id)
        except EntityNotFoundError as exc:
            raise ServiceNotFoundError(service_id, cause=exc) from exc

    def _addresses(self, service_id: str) -> tuple[str, str]:
        environment_id = self._environment_id(service_id)
        return self.codec.encode(environment_id).cluster_name, self.codec.encode(service_id).service_name

    def _update(self, service_id: str, cluster_name: str, service_name: str, **changes) -> EcsService:
        try:
            return self.providers.ecs.update_service(cluster_name, service_name, **changes)
        except ProviderError as exc:
            if contains_error_code(exc, *_ABSENT_CODES):
                raise ServiceNotFoundError(service_id, cause=exc) from exc
            raise

    def _to_model(self, service_id: str, environment_id: str, service: EcsService, tags: Tags) -> Service:
        values = tags.as_dict()
        family, _, revision = service.task_definition.rsplit("/", 1)[-1].partition(":")
        deploy_id = self.codec.deploy_id(family, revision) if self.codec.is_managed(family) and revision else values.get("deploy_id", "")
        return Service(
            service_id=service_id,
            service_name=values.get("name", ""),
            environment_id=environment_id,
            deploy_id=deploy_id,
            desired_count=service.desired_count,
            running_count=service.running_count,
            pending_count=service.pending_count,
            status=service.status,
        )
