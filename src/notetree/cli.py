"""CLI for the notes tree (list, create, rename, move, delete, purge)."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from loguru import logger

from notetree.api import HttpNodeBackend
from notetree.config import DB_FILENAME, PURGE_AFTER_DAYS, resolve_data_directory
from notetree.core.store.sqlite_backend import SqliteNodeBackend
from notetree.core.tree.relocation import DropPosition
from notetree.errors import TreeError
from notetree.logging_config import configure_logging
from notetree.manager import DocumentTreeManager
from notetree.models.node import ROOT_ID, DeletionImpact, FolderItem, TreeItem

T = TypeVar("T")

app = typer.Typer(help="notetree: manage folders and documents of your notes.")

DataDirOption = Annotated[
    Path | None,
    typer.Option("--data-dir", "-d", help="Notes database directory"),
]
ApiOption = Annotated[
    str | None,
    typer.Option("--api", help="Use the notepad server at this URL instead of the local database"),
]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


def _open_database(data_dir: Path | None) -> SqliteNodeBackend:
    dst = data_dir or resolve_data_directory()
    dst.mkdir(parents=True, exist_ok=True)
    return SqliteNodeBackend(dst / DB_FILENAME)


def _open_backend(data_dir: Path | None, api: str | None) -> SqliteNodeBackend | HttpNodeBackend:
    if api:
        return HttpNodeBackend(api)
    return _open_database(data_dir)


def _run(
    data_dir: Path | None,
    api: str | None,
    action: Callable[[DocumentTreeManager], Awaitable[T]],
    *,
    query: str = "",
) -> T:
    """Load the tree, run ``action`` against it, and map tree errors to exit code 1."""
    backend = _open_backend(data_dir, api)

    async def go() -> T:
        manager = DocumentTreeManager(backend)
        await manager.load(query)
        return await action(manager)

    try:
        return asyncio.run(go())
    except TreeError as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e
    finally:
        backend.close()


def _item_to_dict(item: TreeItem) -> dict[str, Any]:
    data = item.node.to_dict()
    if isinstance(item, FolderItem):
        data["document_count"] = item.descendant_document_count
        data["children"] = [_item_to_dict(child) for child in item.children]
    return data


def _echo_items(items: tuple[TreeItem, ...], active_id: str | None, depth: int = 0) -> None:
    for item in items:
        indent = "  " * depth
        if isinstance(item, FolderItem):
            typer.echo(f"{indent}{item.node.title}/ ({item.descendant_document_count})  [id={item.id}]")
            _echo_items(item.children, active_id, depth + 1)
        else:
            marker = "*" if item.id == active_id else " "
            typer.echo(f"{indent}{marker}{item.node.title}  [id={item.id}]")


@app.command()
def tree(
    query: str = typer.Option("", "--query", "-q", help="Only nodes whose title or content match"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    data_dir: DataDirOption = None,
    api: ApiOption = None,
) -> None:
    """Show the folder/document tree."""

    async def action(manager: DocumentTreeManager) -> None:
        items = manager.tree()
        if output_json:
            typer.echo(json.dumps([_item_to_dict(i) for i in items], indent=2))
        elif not items:
            typer.echo("No notes yet.")
        else:
            _echo_items(items, manager.selection.active_id)

    _run(data_dir, api, action, query=query)


@app.command()
def create(
    title: str = typer.Argument(..., help="Title of the new node"),
    folder: bool = typer.Option(False, "--folder", "-f", help="Create a folder"),
    parent: str = typer.Option(ROOT_ID, "--parent", "-p", help="Parent folder id (default: top level)"),
    data_dir: DataDirOption = None,
    api: ApiOption = None,
) -> None:
    """Create a folder or document."""

    async def action(manager: DocumentTreeManager) -> None:
        node = await manager.create(title, is_folder=folder, parent_id=parent)
        typer.echo(f"Created {'folder' if node.is_folder else 'document'} {node.title!r} [id={node.id}]")

    _run(data_dir, api, action)


@app.command()
def rename(
    node_id: str = typer.Argument(..., help="Node to rename"),
    title: str = typer.Argument(..., help="New title"),
    data_dir: DataDirOption = None,
    api: ApiOption = None,
) -> None:
    """Rename a folder or document."""

    async def action(manager: DocumentTreeManager) -> None:
        node = await manager.rename(node_id, title)
        typer.echo(f"Renamed to {node.title!r}")

    _run(data_dir, api, action)


@app.command()
def move(
    node_id: str = typer.Argument(..., help="Node to move"),
    target: Annotated[
        str | None,
        typer.Option("--target", "-t", help="Node to drop on (default: top of the tree)"),
    ] = None,
    position: DropPosition = typer.Option(
        DropPosition.INSIDE, "--position", "-P", help="Where relative to the target"
    ),
    data_dir: DataDirOption = None,
    api: ApiOption = None,
) -> None:
    """Move a node before, after or inside another node."""

    async def action(manager: DocumentTreeManager) -> None:
        node = await manager.drop(node_id, target, position)
        where = node.parent_id or "top level"
        typer.echo(f"Moved {node.title!r} to {where}")

    _run(data_dir, api, action)


@app.command()
def delete(
    node_id: str = typer.Argument(..., help="Node to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    data_dir: DataDirOption = None,
    api: ApiOption = None,
) -> None:
    """Move a node and everything below it to the trash."""

    def confirm(impact: DeletionImpact) -> bool:
        if impact.descendant_count:
            typer.echo(
                f"This also deletes {impact.descendant_count} item(s) below it "
                f"({impact.document_count} document(s) in total)."
            )
        return yes or typer.confirm("Delete?")

    async def action(manager: DocumentTreeManager) -> None:
        outcome = await manager.delete(node_id, confirm=confirm)
        if outcome is None:
            typer.echo("Cancelled.")
        else:
            typer.echo(f"Deleted {len(outcome.deleted_ids)} item(s)")

    _run(data_dir, api, action)


@app.command()
def purge(
    days: int = typer.Option(PURGE_AFTER_DAYS, "--days", "-n", help="Purge items deleted longer ago"),
    data_dir: DataDirOption = None,
) -> None:
    """Permanently remove items that were deleted more than N days ago."""
    backend = _open_database(data_dir)
    try:
        removed = asyncio.run(backend.purge_deleted(days))
    except TreeError as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e
    finally:
        backend.close()
    typer.echo(f"Purged {removed} item(s)")
