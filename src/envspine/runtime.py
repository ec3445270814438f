"""Process wiring: settings → providers, tag store, managers, job engine.

Entry points (the CLI worker, embedding applications, tests) call
:func:`build_runtime` once and share the returned components::

    runtime = build_runtime(get_settings())
    job_id = runtime.engine.submit(JobType.CREATE_ENVIRONMENT, request)
    runtime.worker().start()

``ENVSPINE_PROVIDER=memory`` swaps the boto3 providers for a
:class:`MemoryCloud`, and an unset ``ENVSPINE_AWS_DYNAMO_TAG_TABLE``
selects the in-process tag store, which together allow local dry runs
without AWS credentials.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from envspine.backend import DeployManager, EnvironmentManager, Providers, ServiceManager, TaskManager
from envspine.backend.aws import create_aws_providers
from envspine.backend.memory import MemoryCloud
from envspine.core.config import EnvSpineSettings, InfraConfig
from envspine.core.logging import get_logger
from envspine.execution.handlers import register_orchestration_handlers
from envspine.execution.locks import EntityLocks
from envspine.execution.registry import JobRegistry
from envspine.execution.store import JobStore, SQLiteJobStore
from envspine.execution.waiter import Clock
from envspine.execution.worker import JobEngine, JobWorker
from envspine.tags.dynamo import DynamoTagStore
from envspine.tags.store import MemoryTagStore, TagStore

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Shared components of one control-plane process."""

    settings: EnvSpineSettings
    config: InfraConfig
    providers: Providers
    tag_store: TagStore
    job_store: JobStore
    environments: EnvironmentManager
    deploys: DeployManager
    services: ServiceManager
    tasks: TaskManager
    registry: JobRegistry
    engine: JobEngine
    locks: EntityLocks = field(default_factory=EntityLocks)

    def worker(self, **overrides) -> JobWorker:
        """Build a worker bound to this runtime's store, registry and locks."""
        options = {
            "poll_interval": self.settings.worker_poll_interval,
            "max_workers": self.settings.worker_count,
        }
        options.update(overrides)
        return JobWorker(self.job_store, self.registry, locks=self.locks, **options)


def build_tag_store(settings: EnvSpineSettings) -> TagStore:
    if settings.aws_dynamo_tag_table:
        return DynamoTagStore(
            settings.aws_dynamo_tag_table,
            region=settings.aws_region or None,
            endpoint_url=settings.aws_endpoint_url or None,
        )
    logger.warning("tags.memory_store", reason="ENVSPINE_AWS_DYNAMO_TAG_TABLE is not set")
    return MemoryTagStore()


def build_providers(settings: EnvSpineSettings) -> Providers:
    if settings.provider == "memory":
        logger.info("providers.memory_initialized")
        return MemoryCloud().providers()
    return create_aws_providers(settings)


def build_runtime(
    settings: EnvSpineSettings,
    *,
    providers: Providers | None = None,
    tag_store: TagStore | None = None,
    job_store: JobStore | None = None,
    clock: Clock | None = None,
) -> Runtime:
    """Assemble a :class:`Runtime`; any component may be injected."""
    config = InfraConfig.from_settings(settings)
    providers = providers or build_providers(settings)
    tag_store = tag_store or build_tag_store(settings)
    job_store = job_store or SQLiteJobStore(settings.job_database)

    managers = {
        "environments": EnvironmentManager(providers, tag_store, config, clock=clock),
        "deploys": DeployManager(providers, tag_store, config, clock=clock),
        "services": ServiceManager(providers, tag_store, config, clock=clock),
        "tasks": TaskManager(providers, tag_store, config, clock=clock),
    }
    registry = register_orchestration_handlers(JobRegistry(), **managers)

    return Runtime(
        settings=settings,
        config=config,
        providers=providers,
        tag_store=tag_store,
        job_store=job_store,
        registry=registry,
        engine=JobEngine(job_store),
        **managers,
    )
