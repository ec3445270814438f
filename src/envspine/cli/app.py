"""
Root Typer application for the env-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="envspine",
    help="env-spine - environment control plane for container clusters.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("env-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"env-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override ENVSPINE_LOG_LEVEL"),
) -> None:
    """env-spine CLI - run workers, manage jobs and tags."""
    from envspine.core.config import get_settings
    from envspine.core.logging import configure_logging

    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
        instance=settings.instance,
    )


# ── Sub-command registration ─────────────────────────────────────────────

from envspine.cli.jobs import app as jobs_app  # noqa: E402
from envspine.cli.tags import app as tags_app  # noqa: E402
from envspine.cli.worker import app as worker_app  # noqa: E402

app.add_typer(worker_app, name="worker", help="Background job worker.")
app.add_typer(jobs_app, name="jobs", help="Job submission and records.")
app.add_typer(tags_app, name="tags", help="Tag store inspection.")
