"""
CLI: ``envspine tags`` - inspect and reset the tag store.
"""

from __future__ import annotations

import typer

from envspine.cli.utils import console, output

app = typer.Typer(no_args_is_help=True)


def _store():
    from envspine.core.config import get_settings
    from envspine.runtime import build_tag_store

    return build_tag_store(get_settings())


@app.command("list")
def list_tags(
    entity_type: str | None = typer.Option(None, "--type", "-t", help="environment, deploy, service or task"),
    entity_id: str | None = typer.Option(None, "--id", "-i", help="Logical entity ID (requires --type)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List tags, optionally narrowed to one entity type or entity."""
    if entity_id and not entity_type:
        console.print("[red]--id requires --type[/red]")
        raise typer.Exit(code=1)

    store = _store()
    if entity_type and entity_id:
        tags = store.select_by_type_and_id(entity_type, entity_id)
    elif entity_type:
        tags = store.select_by_type(entity_type)
    else:
        tags = store.select_all()
    output(list(tags), as_json=json_out, title="Tags")


@app.command("clear")
def clear_tags(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every tag. Entities become invisible to reads and lists."""
    if not yes:
        typer.confirm("Delete ALL tags?", abort=True)
    _store().clear()
    console.print("[green]Tag store cleared[/green]")
