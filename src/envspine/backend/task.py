"""Task orchestration.

A task is a one-off run of a deploy in an environment's cluster. Every
copy is started with ``startedBy`` set to the task ID, and the ARNs are
kept in the ``arn`` tag (comma separated), so the copies can be found and
stopped later.

Task IDs mix a fresh ULID into the hash: running the same name twice
creates two tasks.
"""

from __future__ import annotations

from envspine.core.errors import EntityNotFoundError, ProviderError, TaskNotFoundError, ValidationError
from envspine.core.logging import get_logger
from envspine.core.timestamps import generate_ulid
from envspine.models import CreateTaskRequest, EntityType, Task
from envspine.tags.lookup import delete_entity_tags, lookup_entity_environment_id
from envspine.tags.models import Tags

from ._base import BaseManager
from .providers import CLUSTER_NOT_FOUND, EcsTask

logger = get_logger(__name__)

ARN_TAG = "arn"


class TaskManager(BaseManager):
    entity_type = EntityType.TASK.value

    def create(self, request: CreateTaskRequest) -> Task:
        if request.copies < 1:
            raise ValidationError("Task copies must be at least 1")

        cluster_name = self.require_cluster(request.environment_id)
        task_definition = self.require_deploy(request.deploy_id)
        task_id = self.codec.generate(request.task_name, request.environment_id, generate_ulid())

        overrides = [
            {
                "name": override.container_name,
                "environment": [{"name": k, "value": v} for k, v in sorted(override.environment_overrides.items())],
            }
            for override in request.container_overrides
        ]
        started = self.providers.ecs.run_task(cluster_name, task_definition, request.copies, task_id, overrides)

        self.write_tags(
            task_id,
            {
                "name": request.task_name,
                "environment_id": request.environment_id,
                "deploy_id": request.deploy_id,
                ARN_TAG: ",".join(t.task_arn for t in started),
            },
        )
        logger.info("task.created", task_id=task_id, environment_id=request.environment_id, copies=len(started))
        return self._to_model(task_id, self.tag_store.select_by_type_and_id(self.entity_type, task_id), started)

    def get(self, task_id: str) -> Task:
        """Describe a task and the current status of each copy.

        Raises:
            TaskNotFoundError: If the task has no tags.
        """
        tags = self.tag_store.select_by_type_and_id(self.entity_type, task_id)
        if not tags:
            raise TaskNotFoundError(task_id)

        environment_id = tags.as_dict().get("environment_id", "")
        if not environment_id:
            return self._to_model(task_id, tags, [])

        cluster_name = self.codec.encode(environment_id).cluster_name
        try:
            arns = self._task_arns(tags) or self.providers.ecs.list_tasks(cluster_name, task_id)
            copies = self.providers.ecs.describe_tasks(cluster_name, arns)
        except ProviderError as exc:
            if exc.code != CLUSTER_NOT_FOUND:
                raise
            logger.warning("task.cluster_missing", task_id=task_id, environment_id=environment_id)
            copies = []
        return self._to_model(task_id, tags, copies)

    def list(self) -> list[Task]:
        """Tasks known to the tag store (no provider calls)."""
        return [
            self._to_model(task_id, tags, [])
            for (_, task_id), tags in sorted(self.tag_store.select_by_type(self.entity_type).group_by_entity().items())
        ]

    def delete(self, task_id: str) -> None:
        """Stop every copy and drop the task's tags.

        A task whose environment or ARNs cannot be found through its tags
        is left alone and logged.
        """
        try:
            environment_id = lookup_entity_environment_id(self.tag_store, self.entity_type, task_id)
        except EntityNotFoundError:
            logger.warning("task.environment_missing", task_id=task_id)
            return

        tags = self.tag_store.select_by_type_and_id(self.entity_type, task_id)
        arns = self._task_arns(tags)
        if not arns:
            logger.warning("task.arn_missing", task_id=task_id)
            return

        cluster_name = self.codec.encode(environment_id).cluster_name
        for arn in arns:
            self.tolerate(
                lambda: self.providers.ecs.stop_task(cluster_name, arn),
                codes=(CLUSTER_NOT_FOUND,),
                messages=("task was not found",),
                event="task.already_stopped",
                task_id=task_id,
                task_arn=arn,
            )

        delete_entity_tags(self.tag_store, self.entity_type, task_id)
        logger.info("task.deleted", task_id=task_id, copies=len(arns))

    @staticmethod
    def _task_arns(tags: Tags) -> list[str]:
        value = tags.as_dict().get(ARN_TAG, "")
        return [arn for arn in value.split(",") if arn]

    def _to_model(self, task_id: str, tags: Tags, copies: list[EcsTask]) -> Task:
        values = tags.as_dict()
        arns = [t.task_arn for t in copies] or self._task_arns(tags)
        return Task(
            task_id=task_id,
            task_name=values.get("name", ""),
            environment_id=values.get("environment_id", ""),
            deploy_id=values.get("deploy_id", ""),
            copies=len(arns),
            task_arns=arns,
            statuses=[t.last_status for t in copies],
        )
