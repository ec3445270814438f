"""
Domain models for env-spine.

Two families of types live here:

- **Result models** (``Environment``, ``Deploy``, ``Service``, ``Task``,
  ``EnvironmentLink``) assembled by the managers from provider state and
  tags. They are plain dataclasses with ``to_dict()`` for serialization.
- **Request models** (``CreateEnvironmentRequest`` ...) are the typed
  input contracts of orchestration operations. Jobs carry them as JSON;
  :func:`decode_request` validates a payload back into the request type
  through pydantic so a malformed job request fails as a
  :class:`ValidationError` before any provider call.

Requests carry only validated, transport-agnostic data: no raw HTTP
bodies, no CLI params.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from envspine.core.errors import ValidationError

R = TypeVar("R")


class EntityType(str, Enum):
    """Logical entity kinds managed by the control plane."""

    ENVIRONMENT = "environment"
    DEPLOY = "deploy"
    SERVICE = "service"
    TASK = "task"


class OperatingSystem(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"

    @classmethod
    def parse(cls, value: str) -> OperatingSystem:
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValidationError(f"Operating system '{value}' is not recognized") from None


# ------------------------------------------------------------------ #
# Result models
# ------------------------------------------------------------------ #


@dataclass
class Environment:
    environment_id: str
    environment_name: str = ""
    cluster_count: int = 0
    instance_size: str = ""
    security_group_id: str = ""
    operating_system: str = ""
    ami_id: str = ""
    links: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EnvironmentLink:
    source_environment_id: str
    dest_environment_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Deploy:
    deploy_id: str
    deploy_name: str = ""
    version: str = ""
    dockerrun: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Service:
    service_id: str
    service_name: str = ""
    environment_id: str = ""
    deploy_id: str = ""
    desired_count: int = 0
    running_count: int = 0
    pending_count: int = 0
    status: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Task:
    task_id: str
    task_name: str = ""
    environment_id: str = ""
    deploy_id: str = ""
    copies: int = 0
    task_arns: list[str] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ------------------------------------------------------------------ #
# Request models
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class CreateEnvironmentRequest:
    """Request for :meth:`EnvironmentManager.create`.

    Attributes:
        environment_name: Human-supplied name; the logical ID is derived from it.
        instance_size: Instance type for cluster hosts (e.g. ``m5.large``).
        operating_system: ``linux`` or ``windows``; selects default AMI and boot script.
        min_cluster_count: Initial min/max of the scaling group.
        ami_id: Optional AMI overriding the OS default.
        user_data_template: Optional boot-script template overriding the OS default.
    """

    environment_name: str
    instance_size: str = "m5.large"
    operating_system: str = "linux"
    min_cluster_count: int = 0
    ami_id: str = ""
    user_data_template: str = ""


@dataclass(frozen=True, slots=True)
class UpdateEnvironmentRequest:
    environment_id: str
    min_cluster_count: int


@dataclass(frozen=True, slots=True)
class EnvironmentLinkRequest:
    source_environment_id: str
    dest_environment_id: str


@dataclass(frozen=True, slots=True)
class CreateDeployRequest:
    deploy_name: str
    dockerrun: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CreateServiceRequest:
    service_name: str
    environment_id: str
    deploy_id: str
    desired_count: int = 1


@dataclass(frozen=True, slots=True)
class UpdateServiceRequest:
    service_id: str
    deploy_id: str


@dataclass(frozen=True, slots=True)
class ScaleServiceRequest:
    service_id: str
    desired_count: int


@dataclass(frozen=True, slots=True)
class ContainerOverride:
    container_name: str
    environment_overrides: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CreateTaskRequest:
    task_name: str
    environment_id: str
    deploy_id: str
    copies: int = 1
    container_overrides: tuple[ContainerOverride, ...] = ()


@dataclass(frozen=True, slots=True)
class EntityRequest:
    """Request naming a single entity by logical ID (get / delete)."""

    entity_id: str


def encode_request(request: Any) -> str:
    """Serialize a request dataclass to the JSON carried by a job."""
    return json.dumps(asdict(request), sort_keys=True)


def decode_request(request_type: type[R], payload: str) -> R:
    """Validate a JSON job payload into *request_type*.

    Raises:
        ValidationError: If the payload is not valid JSON for the type.
    """
    try:
        return TypeAdapter(request_type).validate_json(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {request_type.__name__} payload: {exc.error_count()} error(s)",
            cause=exc,
        ) from exc
