"""Deploy orchestration.

A deploy is one registered revision of an ECS task definition. The family
is the provider name of the ID generated from the deploy name, so every
revision of the same name shares a family::

    create("api", dockerrun)  →  family  es-dev-api1a2b3c4d
                                 revision 3
                                 deploy_id  api1a2b3c4d.3

The ``dockerrun`` document follows the multi-container Dockerrun v2
shape: ``{"containerDefinitions": [...], "volumes": [...]}``.
"""

from __future__ import annotations

from typing import Any

from envspine.core.errors import DeployNotFoundError, ProviderError, ValidationError
from envspine.core.logging import get_logger
from envspine.models import CreateDeployRequest, Deploy, EntityType
from envspine.tags.lookup import delete_entity_tags
from envspine.tags.models import Tags

from ._base import MISSING_TASK_DEFINITION, BaseManager
from .providers import TaskDefinition, contains_error_message

logger = get_logger(__name__)


class DeployManager(BaseManager):
    entity_type = EntityType.DEPLOY.value

    def create(self, request: CreateDeployRequest) -> Deploy:
        containers = request.dockerrun.get("containerDefinitions")
        if not isinstance(containers, list) or not containers:
            raise ValidationError("Dockerrun must define at least one container in 'containerDefinitions'")
        volumes = request.dockerrun.get("volumes") or []

        family = self.codec.encode(self.codec.generate(request.deploy_name)).value
        definition = self.providers.ecs.register_task_definition(family, containers, volumes)
        deploy_id = self.codec.deploy_id(definition.family, definition.revision)

        self.write_tags(deploy_id, {"name": request.deploy_name, "version": str(definition.revision)})
        logger.info("deploy.created", deploy_id=deploy_id, family=family, revision=definition.revision)
        return self._to_model(deploy_id, definition, self.tag_store.select_by_type_and_id(self.entity_type, deploy_id))

    def get(self, deploy_id: str) -> Deploy:
        """Describe one deploy.

        Raises:
            DeployNotFoundError: If the revision was never registered or is inactive.
        """
        name = self.codec.encode(deploy_id)
        try:
            definition = self.providers.ecs.describe_task_definition(name.task_definition)
        except ProviderError as exc:
            if contains_error_message(exc, *MISSING_TASK_DEFINITION):
                raise DeployNotFoundError(deploy_id, cause=exc) from exc
            raise

        if definition.status == "INACTIVE":
            raise DeployNotFoundError(deploy_id)
        return self._to_model(deploy_id, definition, self.tag_store.select_by_type_and_id(self.entity_type, deploy_id))

    def list(self) -> list[Deploy]:
        tags_by_id = {
            entity_id: tags for (_, entity_id), tags in self.tag_store.select_by_type(self.entity_type).group_by_entity().items()
        }

        deploys: list[Deploy] = []
        for arn in self.providers.ecs.list_task_definitions(self.codec.prefix):
            family, _, revision = arn.rsplit("/", 1)[-1].partition(":")
            if not self.codec.is_managed(family):
                continue
            deploy_id = self.codec.deploy_id(family, revision)
            tags = tags_by_id.get(deploy_id, Tags())
            deploys.append(
                Deploy(
                    deploy_id=deploy_id,
                    deploy_name=tags.as_dict().get("name", ""),
                    version=revision,
                )
            )
        return deploys

    def delete(self, deploy_id: str) -> None:
        """Deregister the revision and drop its tags; missing revisions are fine."""
        name = self.codec.encode(deploy_id)
        self.tolerate(
            lambda: self.providers.ecs.deregister_task_definition(name.task_definition),
            messages=(*MISSING_TASK_DEFINITION, "inactive"),
            event="deploy.definition_absent",
            deploy_id=deploy_id,
        )
        delete_entity_tags(self.tag_store, self.entity_type, deploy_id)
        logger.info("deploy.deleted", deploy_id=deploy_id)

    @staticmethod
    def _to_model(deploy_id: str, definition: TaskDefinition, tags: Tags) -> Deploy:
        dockerrun: dict[str, Any] = {"containerDefinitions": definition.container_definitions}
        if definition.volumes:
            dockerrun["volumes"] = definition.volumes
        return Deploy(
            deploy_id=deploy_id,
            deploy_name=tags.as_dict().get("name", ""),
            version=str(definition.revision),
            dockerrun=dockerrun,
        )
