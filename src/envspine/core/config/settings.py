"""
Centralized settings for env-spine.

Manifesto:
    Deployment-wide values (default AMIs, VPC, subnets, role names) are
    read once, validated once, and handed to the orchestration layer as an
    explicit :class:`~envspine.core.config.infra.InfraConfig`. Nothing in
    business logic reads the environment directly.

All fields can be set via ``ENVSPINE_*`` environment variables (e.g.
``ENVSPINE_AWS_VPC_ID=vpc-123``) or a ``.env`` file. List fields take a
JSON array (``ENVSPINE_AWS_PRIVATE_SUBNETS='["subnet-a","subnet-b"]'``).

Tags:
    env-spine, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvSpineSettings(BaseSettings):
    """env-spine process configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ENVSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────
    namespace: str = Field(default="es", description="Fixed prefix for every provider resource name")
    instance: str = Field(default="default", description="Name of this control-plane instance")

    # ── AWS ──────────────────────────────────────────────────────
    provider: str = Field(default="aws", description="Cloud backend: aws or memory")
    aws_region: str = Field(default="us-west-2")
    aws_endpoint_url: str | None = Field(default=None, description="Override endpoint (LocalStack)")
    aws_linux_service_ami: str = Field(default="")
    aws_windows_service_ami: str = Field(default="")
    aws_vpc_id: str = Field(default="")
    aws_private_subnets: list[str] = Field(default_factory=list)
    aws_ecs_instance_profile: str = Field(default="")
    aws_key_pair: str = Field(default="")
    aws_agent_security_group_id: str = Field(default="")
    aws_s3_bucket: str = Field(default="")
    aws_dynamo_tag_table: str = Field(default="")

    # ── Jobs ─────────────────────────────────────────────────────
    job_database: str = Field(default="envspine_jobs.db")
    worker_count: int = Field(default=4)
    worker_poll_interval: float = Field(default=2.0)

    # ── Waiters ──────────────────────────────────────────────────
    waiter_retries: int = Field(default=50)
    waiter_delay_seconds: float = Field(default=10.0)
    security_group_propagation_seconds: float = Field(default=2.0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("namespace", "instance")
    @classmethod
    def _lowercase_identity(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("aws", "memory"):
            raise ValueError("must be 'aws' or 'memory'")
        return value

    @property
    def resource_prefix(self) -> str:
        return f"{self.namespace}-{self.instance}-"


_settings_cache: dict[str, EnvSpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> EnvSpineSettings:
    """Load, validate, and cache the process settings."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = EnvSpineSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
