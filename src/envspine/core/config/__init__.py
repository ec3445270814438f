"""Configuration: process settings and the read-only infra config struct."""

from .infra import InfraConfig
from .settings import EnvSpineSettings, clear_settings_cache, get_settings

__all__ = ["EnvSpineSettings", "InfraConfig", "clear_settings_cache", "get_settings"]
