"""
CLI: ``envspine jobs`` - submit, inspect and delete job records.
"""

from __future__ import annotations

import json

import typer

from envspine.cli.utils import console, fail, open_job_store, output
from envspine.core.errors import EnvSpineError, ValidationError

app = typer.Typer(no_args_is_help=True)


@app.command("submit")
def submit(
    job_type: str = typer.Argument(..., help="Job type, e.g. create_environment"),
    request: str = typer.Argument(..., help="JSON request payload"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Queue a job and print its ID.

    Example::

        envspine jobs submit create_environment '{"environment_name": "prod"}'
    """
    from envspine.execution.jobs import JobType
    from envspine.execution.worker import JobEngine

    try:
        job_type = JobType(job_type).value
    except ValueError:
        known = ", ".join(t.value for t in JobType)
        console.print(f"[red]Unknown job type '{job_type}'. Known types: {known}[/red]")
        raise typer.Exit(code=1)

    try:
        payload = json.loads(request)
    except ValueError as exc:
        fail(ValidationError(f"Request is not valid JSON: {exc}", cause=exc))
    if not isinstance(payload, dict):
        fail(ValidationError("Request must be a JSON object"))

    job_id = JobEngine(open_job_store(database)).submit(job_type, request)
    console.print(job_id)


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="queued, in_progress, completed or error"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List job records, oldest first."""
    from envspine.execution.jobs import JobStatus

    try:
        status_filter = JobStatus(status) if status else None
    except ValueError:
        console.print(f"[red]Unknown job status '{status}'[/red]")
        raise typer.Exit(code=1)

    jobs = open_job_store(database).list(status_filter)
    rows = [
        {
            "job_id": j.job_id,
            "job_type": j.job_type,
            "status": j.status.value,
            "created_at": j.to_dict()["created_at"],
        }
        for j in jobs
    ]
    output(rows, as_json=json_out, title="Jobs")


@app.command("get")
def get_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one job record, including its result once terminal."""
    try:
        job = open_job_store(database).get(job_id)
    except EnvSpineError as exc:
        fail(exc)
    output(job, as_json=json_out, title=f"Job: {job_id}")


@app.command("delete")
def delete_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete a job record. Provider resources are not touched."""
    try:
        open_job_store(database).delete(job_id)
    except EnvSpineError as exc:
        fail(exc)
    console.print(f"[green]Deleted job {job_id}[/green]")
