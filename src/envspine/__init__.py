"""
env-spine - control plane for container-cluster environments.

Components:
- envspine.ids: logical IDs ⇄ provider resource names
- envspine.tags: entity metadata, relations and the existence index
- envspine.backend: orchestration managers over provider capability protocols
- envspine.execution: waiter, job records, stores and the worker
- envspine.cli: operator CLI
"""

__version__ = "0.1.0"
