"""Orchestration managers and the provider capability layer they drive."""

from .deploy import DeployManager
from .environment import EnvironmentManager
from .providers import Providers
from .service import ServiceManager
from .task import TaskManager

__all__ = [
    "DeployManager",
    "EnvironmentManager",
    "Providers",
    "ServiceManager",
    "TaskManager",
]
