"""
CLI: ``envspine worker`` - start the background job worker.
"""

from __future__ import annotations

import typer

from envspine.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    db: str | None = typer.Option(None, "--db", "-d", help="SQLite job database path"),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Concurrent execution threads"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between poll cycles"),
    batch_size: int = typer.Option(10, "--batch-size", help="Max jobs to claim per poll"),
    worker_id: str | None = typer.Option(None, "--id", help="Custom worker identifier"),  # noqa: UP007
) -> None:
    """Start the worker that executes queued orchestration jobs.

    The worker polls the job database for status='queued', claims each job
    and dispatches it to the handler registered for its type.

    Example::

        envspine worker start --workers 4 --poll-interval 2
        ENVSPINE_PROVIDER=memory envspine worker start --db /tmp/jobs.db
    """
    from envspine.core.config import get_settings
    from envspine.execution.store import SQLiteJobStore
    from envspine.runtime import build_runtime

    settings = get_settings()
    runtime = build_runtime(settings, job_store=SQLiteJobStore(db or settings.job_database))

    options = {"batch_size": batch_size, "worker_id": worker_id}
    if workers is not None:
        options["max_workers"] = workers
    if poll_interval is not None:
        options["poll_interval"] = poll_interval
    worker = runtime.worker(**options)

    console.print(
        f"[bold green]Starting env-spine worker[/bold green] "
        f"(id={worker.worker_id}, threads={worker.max_workers}, "
        f"poll={worker.poll_interval}s, provider={settings.provider})"
    )

    try:
        worker.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
