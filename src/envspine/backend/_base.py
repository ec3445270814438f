"""Shared plumbing for the orchestration managers.

Every manager is constructed with the same collaborators:

.. code-block:: text

    BaseManager(providers, tag_store, config, codec=None, clock=None)
      ├── providers   Providers bundle (ecs / ec2 / autoscaling)
      ├── tag_store   TagStore, the existence index and relation store
      ├── config      InfraConfig, read-only deployment values
      ├── codec       IdCodec for config.resource_prefix (derived if omitted)
      └── clock       Clock used by waiters and propagation pauses

and shares two helpers:

    tolerate(...)   run one provider step, swallowing the listed
                    "already absent" / "duplicate" signals
    waiter(...)     build a Waiter bound to the configured retry budget
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TypeVar

from envspine.core.config.infra import InfraConfig
from envspine.core.errors import DeployNotFoundError, EnvironmentNotFoundError, ProviderError
from envspine.core.logging import get_logger
from envspine.execution.waiter import CheckResult, Clock, RealClock, Waiter
from envspine.ids import IdCodec
from envspine.tags.store import TagStore

from .providers import CLUSTER_NOT_FOUND, Providers, contains_error_code, contains_error_message

logger = get_logger(__name__)

T = TypeVar("T")

MISSING_TASK_DEFINITION = ("unable to describe task definition", "not found")


class BaseManager:
    """Base class holding the collaborators every manager needs."""

    entity_type: str = ""

    def __init__(
        self,
        providers: Providers,
        tag_store: TagStore,
        config: InfraConfig,
        *,
        codec: IdCodec | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.providers = providers
        self.tag_store = tag_store
        self.config = config
        self.codec = codec or IdCodec(config.resource_prefix)
        self.clock = clock or RealClock()

    def tolerate(
        self,
        step: Callable[[], T],
        *,
        codes: Iterable[str] = (),
        messages: Iterable[str] = (),
        event: str,
        **log_fields: object,
    ) -> T | None:
        """Run *step*, treating matching provider errors as success.

        Returns the step's result, or ``None`` when a tolerated error was
        swallowed. Any other error propagates unchanged.
        """
        codes = tuple(codes)
        messages = tuple(messages)
        try:
            return step()
        except ProviderError as exc:
            if contains_error_code(exc, *codes) or contains_error_message(exc, *messages):
                logger.debug(event, code=exc.code, reason=exc.provider_message, **log_fields)
                return None
            raise

    def waiter(self, name: str, check: Callable[[], CheckResult]) -> Waiter:
        return Waiter(
            name=name,
            check=check,
            retries=self.config.waiter_retries,
            delay=self.config.waiter_delay_seconds,
            clock=self.clock,
        )

    def write_tags(self, entity_id: str, values: dict[str, str]) -> None:
        self.tag_store.insert_many(self.entity_type, entity_id, values)

    # ------------------------------------------------------------------ #
    # Shared lookups
    # ------------------------------------------------------------------ #

    def require_cluster(self, environment_id: str) -> str:
        """Provider cluster name of an existing environment.

        Raises:
            EnvironmentNotFoundError: If the cluster is missing or inactive.
        """
        cluster_name = self.codec.encode(environment_id).cluster_name
        try:
            cluster = self.providers.ecs.describe_cluster(cluster_name)
        except ProviderError as exc:
            if contains_error_code(exc, CLUSTER_NOT_FOUND) or contains_error_message(exc, "cluster not found"):
                raise EnvironmentNotFoundError(environment_id, cause=exc) from exc
            raise
        if cluster.status == "INACTIVE":
            raise EnvironmentNotFoundError(environment_id)
        return cluster_name

    def require_deploy(self, deploy_id: str) -> str:
        """Task definition reference (``family:revision``) of an active deploy.

        Raises:
            DeployNotFoundError: If the revision is unknown or inactive.
        """
        task_definition = self.codec.encode(deploy_id).task_definition
        try:
            definition = self.providers.ecs.describe_task_definition(task_definition)
        except ProviderError as exc:
            if contains_error_message(exc, *MISSING_TASK_DEFINITION):
                raise DeployNotFoundError(deploy_id, cause=exc) from exc
            raise
        if definition.status == "INACTIVE":
            raise DeployNotFoundError(deploy_id)
        return task_definition
