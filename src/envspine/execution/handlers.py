"""Wiring of job types onto orchestration manager operations.

Each handler decodes the job's JSON request into its typed request
dataclass, calls one manager method, and returns the JSON-able result the
worker stores on the job. Each job type also gets an entity key so the
worker serializes jobs that target the same logical entity.

.. code-block:: text

    create_environment       environment:<generated id>
    update_environment       environment:<environment_id>
    delete_environment       environment:<entity_id>
    create_environment_link  environment:<source_environment_id>, environment:<dest_environment_id>
    delete_environment_link  environment:<source_environment_id>, environment:<dest_environment_id>
    create_deploy            deploy:<generated id>
    delete_deploy            deploy:<entity_id>
    create_service           service:<generated id>
    update_service           service:<service_id>
    scale_service            service:<service_id>
    delete_service           service:<entity_id>
    create_task              (none, every run is a new task)
    delete_task              task:<entity_id>
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from envspine.backend import DeployManager, EnvironmentManager, ServiceManager, TaskManager
from envspine.core.errors import ValidationError
from envspine.ids import generate_entity_id
from envspine.models import (
    CreateDeployRequest,
    CreateEnvironmentRequest,
    CreateServiceRequest,
    CreateTaskRequest,
    EntityRequest,
    EntityType,
    EnvironmentLinkRequest,
    ScaleServiceRequest,
    UpdateEnvironmentRequest,
    UpdateServiceRequest,
    decode_request,
)

from .jobs import JobType
from .registry import JobRegistry


def _field_key(entity_type: EntityType, field_name: str) -> Callable[[str], str | None]:
    """Entity key read from one field of the raw JSON payload."""

    def key(payload: str) -> str | None:
        value = _load(payload).get(field_name)
        return f"{entity_type.value}:{value}" if value else None

    return key


def _generated_key(entity_type: EntityType, name_field: str, *scope_fields: str) -> Callable[[str], str | None]:
    """Entity key of the ID a create operation will generate."""

    def key(payload: str) -> str | None:
        data = _load(payload)
        name = data.get(name_field)
        if not name or not str(name).strip():
            return None
        scope = [str(data.get(f, "")) for f in scope_fields]
        return f"{entity_type.value}:{generate_entity_id(str(name), *scope)}"

    return key


def _link_key(payload: str) -> tuple[str, ...] | None:
    """Keys of both environments of a link; each side's security group changes."""
    data = _load(payload)
    ids = [data.get(f) for f in ("source_environment_id", "dest_environment_id")]
    keys = tuple(f"{EntityType.ENVIRONMENT.value}:{i}" for i in ids if i)
    return keys or None


def _load(payload: str) -> dict[str, Any]:
    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise ValidationError("Job request is not valid JSON", cause=exc) from exc
    if not isinstance(data, dict):
        raise ValidationError("Job request must be a JSON object")
    return data


def register_orchestration_handlers(
    registry: JobRegistry,
    *,
    environments: EnvironmentManager,
    deploys: DeployManager,
    services: ServiceManager,
    tasks: TaskManager,
) -> JobRegistry:
    """Register one handler per :class:`JobType` on *registry*."""

    # ── Environments ─────────────────────────────────────────────

    def create_environment(payload: str) -> dict[str, Any]:
        return environments.create(decode_request(CreateEnvironmentRequest, payload)).to_dict()

    def update_environment(payload: str) -> dict[str, Any]:
        return environments.update(decode_request(UpdateEnvironmentRequest, payload)).to_dict()

    def delete_environment(payload: str) -> dict[str, Any]:
        request = decode_request(EntityRequest, payload)
        environments.delete(request.entity_id)
        return {"environment_id": request.entity_id}

    def create_environment_link(payload: str) -> dict[str, Any]:
        return environments.create_link(decode_request(EnvironmentLinkRequest, payload)).to_dict()

    def delete_environment_link(payload: str) -> dict[str, Any]:
        request = decode_request(EnvironmentLinkRequest, payload)
        environments.delete_link(request)
        return {
            "source_environment_id": request.source_environment_id,
            "dest_environment_id": request.dest_environment_id,
        }

    registry.register(
        JobType.CREATE_ENVIRONMENT,
        create_environment,
        entity_key=_generated_key(EntityType.ENVIRONMENT, "environment_name"),
    )
    registry.register(
        JobType.UPDATE_ENVIRONMENT,
        update_environment,
        entity_key=_field_key(EntityType.ENVIRONMENT, "environment_id"),
    )
    registry.register(
        JobType.DELETE_ENVIRONMENT,
        delete_environment,
        entity_key=_field_key(EntityType.ENVIRONMENT, "entity_id"),
    )
    registry.register(
        JobType.CREATE_ENVIRONMENT_LINK,
        create_environment_link,
        entity_key=_link_key,
    )
    registry.register(
        JobType.DELETE_ENVIRONMENT_LINK,
        delete_environment_link,
        entity_key=_link_key,
    )

    # ── Deploys ──────────────────────────────────────────────────

    def create_deploy(payload: str) -> dict[str, Any]:
        return deploys.create(decode_request(CreateDeployRequest, payload)).to_dict()

    def delete_deploy(payload: str) -> dict[str, Any]:
        request = decode_request(EntityRequest, payload)
        deploys.delete(request.entity_id)
        return {"deploy_id": request.entity_id}

    registry.register(
        JobType.CREATE_DEPLOY,
        create_deploy,
        entity_key=_generated_key(EntityType.DEPLOY, "deploy_name"),
    )
    registry.register(
        JobType.DELETE_DEPLOY,
        delete_deploy,
        entity_key=_field_key(EntityType.DEPLOY, "entity_id"),
    )

    # ── Services ─────────────────────────────────────────────────

    def create_service(payload: str) -> dict[str, Any]:
        return services.create(decode_request(CreateServiceRequest, payload)).to_dict()

    def update_service(payload: str) -> dict[str, Any]:
        return services.update(decode_request(UpdateServiceRequest, payload)).to_dict()

    def scale_service(payload: str) -> dict[str, Any]:
        return services.scale(decode_request(ScaleServiceRequest, payload)).to_dict()

    def delete_service(payload: str) -> dict[str, Any]:
        request = decode_request(EntityRequest, payload)
        services.delete(request.entity_id)
        return {"service_id": request.entity_id}

    registry.register(
        JobType.CREATE_SERVICE,
        create_service,
        entity_key=_generated_key(EntityType.SERVICE, "service_name", "environment_id"),
    )
    registry.register(
        JobType.UPDATE_SERVICE,
        update_service,
        entity_key=_field_key(EntityType.SERVICE, "service_id"),
    )
    registry.register(
        JobType.SCALE_SERVICE,
        scale_service,
        entity_key=_field_key(EntityType.SERVICE, "service_id"),
    )
    registry.register(
        JobType.DELETE_SERVICE,
        delete_service,
        entity_key=_field_key(EntityType.SERVICE, "entity_id"),
    )

    # ── Tasks ────────────────────────────────────────────────────

    def create_task(payload: str) -> dict[str, Any]:
        return tasks.create(decode_request(CreateTaskRequest, payload)).to_dict()

    def delete_task(payload: str) -> dict[str, Any]:
        request = decode_request(EntityRequest, payload)
        tasks.delete(request.entity_id)
        return {"task_id": request.entity_id}

    registry.register(JobType.CREATE_TASK, create_task)
    registry.register(
        JobType.DELETE_TASK,
        delete_task,
        entity_key=_field_key(EntityType.TASK, "entity_id"),
    )

    return registry
