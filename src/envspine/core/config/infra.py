"""Read-only infrastructure configuration handed to the orchestration layer.

``InfraConfig`` is resolved once from :class:`EnvSpineSettings` at startup
and passed into every manager's constructor. Managers call
:meth:`InfraConfig.require` at the point of use so a missing value fails
the one operation that needs it, with a :class:`ConfigError` naming the
field, rather than failing process start-up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from envspine.core.errors import ConfigError

from .settings import EnvSpineSettings


@dataclass(frozen=True)
class InfraConfig:
    """Deployment-wide values consumed by the managers."""

    resource_prefix: str
    linux_service_ami: str = ""
    windows_service_ami: str = ""
    vpc_id: str = ""
    private_subnets: tuple[str, ...] = field(default_factory=tuple)
    ecs_instance_profile: str = ""
    key_pair: str = ""
    agent_security_group_id: str = ""
    s3_bucket: str = ""
    waiter_retries: int = 50
    waiter_delay_seconds: float = 10.0
    security_group_propagation_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: EnvSpineSettings) -> InfraConfig:
        return cls(
            resource_prefix=settings.resource_prefix,
            linux_service_ami=settings.aws_linux_service_ami,
            windows_service_ami=settings.aws_windows_service_ami,
            vpc_id=settings.aws_vpc_id,
            private_subnets=tuple(settings.aws_private_subnets),
            ecs_instance_profile=settings.aws_ecs_instance_profile,
            key_pair=settings.aws_key_pair,
            agent_security_group_id=settings.aws_agent_security_group_id,
            s3_bucket=settings.aws_s3_bucket,
            waiter_retries=settings.waiter_retries,
            waiter_delay_seconds=settings.waiter_delay_seconds,
            security_group_propagation_seconds=settings.security_group_propagation_seconds,
        )

    def require(self, name: str) -> Any:
        """Return a config value, raising ConfigError if it is unset."""
        value = getattr(self, name)
        if value in ("", None, ()):
            raise ConfigError(f"Configuration value '{name}' is required but not set", config_key=name)
        return value
