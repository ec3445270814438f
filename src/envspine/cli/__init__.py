"""
CLI layer for env-spine.

Operator commands only: run the worker, inspect and administer job
records, inspect and reset the tag store. Business operations are
submitted as jobs through :class:`~envspine.execution.worker.JobEngine`.

Entry point::

    envspine --help
"""

from envspine.cli.app import app

__all__ = ["app"]
