"""
CLI interface for the local mirror.

Usage:
    omistash sync
    omistash list conversations --favorite --tag work
    omistash move memories <id> <id> --folder <folder-id>
"""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Stash, resolve_kind
from .config import save_config
from .errors import StashError, log_exception
from .logging_config import configure_quiet_mode, enable_debug_mode
from .query import NEWEST, OLDEST, RecordFilter
from .types import FOLDER_CHAT, FOLDER_TYPES, ActionItem, Conversation, Memory, local_date

# Configure quiet mode by default (suppress verbose library output)
# Set OMISTASH_VERBOSE=1 to enable debug mode via environment
if os.environ.get("OMISTASH_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"omistash {version('omistash')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


app = typer.Typer(
    name="omistash",
    help="Local-first mirror of your conversations, memories and action items.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

folder_app = typer.Typer(help="Create, list, rename and delete folders.", no_args_is_help=True)
app.add_typer(folder_app, name="folder")


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="OMISTASH_STORE_PATH",
        help="Path to the store directory (default: ~/.omistash/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local-first mirror of your conversations, memories and action items."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_stash() -> Stash:
    """Open the store, turning setup failures into a clean exit."""
    try:
        return Stash(_store_override)
    except (StashError, OSError, ValueError) as e:
        log_exception(e, "open")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _kind(kind: str) -> str:
    try:
        return resolve_kind(kind)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _title(record) -> str:
    if isinstance(record, Conversation):
        return record.title
    if isinstance(record, Memory):
        return record.title or record.content[:60]
    return record.description


def _flags(record) -> str:
    flags = []
    if record.favorite:
        flags.append("*")
    if record.archived:
        flags.append("archived")
    if isinstance(record, ActionItem):
        flags.append("[x]" if record.completed else "[ ]")
    return " ".join(flags)


def _format_records(records: list, tz: Optional[str] = None) -> str:
    if _json_output:
        return json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)
    if not records:
        return "No records."
    id_width = max(len(r.id) for r in records)
    lines = []
    for r in records:
        flags = _flags(r)
        tags = f"  #{' #'.join(r.tags)}" if r.tags else ""
        lines.append(
            f"{r.id:<{id_width}}  {local_date(r.created_at, tz)}  "
            f"{flags + '  ' if flags else ''}{_title(r)}{tags}"
        )
    return "\n".join(lines)


def _echo_one(record, missing: str) -> None:
    if record is None:
        typer.echo(f"Not found: {missing}", err=True)
        raise typer.Exit(1)
    if _json_output:
        typer.echo(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    else:
        typer.echo(_format_records([record]))


# -----------------------------------------------------------------------------
# Sync and status
# -----------------------------------------------------------------------------

@app.command()
def sync():
    """Pull conversations, memories and action items from the remote account."""
    stash = _get_stash()
    if not stash.config.remote.token:
        typer.echo(
            "Error: No API token configured. Run 'omistash configure --token ...' "
            "or set OMISTASH_API_TOKEN.",
            err=True,
        )
        stash.close()
        raise typer.Exit(1)

    def progress(message: str, percent: int) -> None:
        if not _json_output:
            typer.echo(f"[{percent:3d}%] {message}", err=True)

    async def run():
        try:
            return await stash.sync(progress)
        finally:
            await stash.aclose()

    try:
        summary = asyncio.run(run())
    except (StashError, ValueError) as e:
        log_path = log_exception(e, "sync")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details: {log_path}", err=True)
        raise typer.Exit(1)
    if _json_output:
        typer.echo(json.dumps({**summary.to_dict(), "errors": summary.errors}, indent=2))
    else:
        line = (
            f"Synced {summary.conversations} conversations, "
            f"{summary.memories} memories, {summary.action_items} action items"
        )
        if summary.errors:
            line += " (failed: " + "; ".join(f"{k}: {v}" for k, v in summary.errors.items()) + ")"
        typer.echo(line)
    if summary.errors:
        raise typer.Exit(1)


@app.command()
def status():
    """Show record counts and the outcome of the last sync."""
    stash = _get_stash()
    info = stash.sync_status()
    stash.close()
    if _json_output:
        typer.echo(json.dumps(info, indent=2))
        return
    for name, count in info["counts"].items():
        typer.echo(f"{name}: {count}")
    for name, state in info["resources"].items():
        if state is None:
            typer.echo(f"{name}: never synced")
        elif state.get("lastError"):
            typer.echo(f"{name}: last attempt {state['lastAttemptAt']} failed: {state['lastError']}")
        else:
            typer.echo(f"{name}: synced {state['count']} at {state['lastSuccessAt']}")


@app.command()
def configure(
    token: Annotated[Optional[str], typer.Option("--token", help="Bearer token for the remote API")] = None,
    timezone: Annotated[Optional[str], typer.Option("--timezone", help="IANA timezone, e.g. Europe/Lisbon")] = None,
    api_url: Annotated[Optional[str], typer.Option("--api-url", help="Remote API base URL")] = None,
    page_size: Annotated[Optional[int], typer.Option("--page-size", min=1, help="Items per page when syncing")] = None,
):
    """Update the store configuration file."""
    stash = _get_stash()
    config = stash.config
    if token is not None:
        config.remote.token = token
    if timezone is not None:
        config.sync.timezone = timezone
    if api_url is not None:
        config.remote.api_url = api_url
    if page_size is not None:
        config.sync.page_size = page_size
    save_config(config)
    stash.close()
    typer.echo(f"Saved {config.config_path}")


# -----------------------------------------------------------------------------
# Reading
# -----------------------------------------------------------------------------

@app.command("list")
def list_records(
    kind: Annotated[str, typer.Argument(help="conversations, memories or action-items")],
    status: Annotated[Optional[str], typer.Option("--status", help="Conversation status (active, archived)")] = None,
    favorite: Annotated[Optional[bool], typer.Option("--favorite/--not-favorite", help="Favorited/starred only")] = None,
    archived: Annotated[Optional[bool], typer.Option("--archived/--not-archived", help="Archived only")] = None,
    completed: Annotated[Optional[bool], typer.Option("--completed/--pending", help="Action item status")] = None,
    folder: Annotated[Optional[str], typer.Option("--folder", "-f", help="Folder ID")] = None,
    tag: Annotated[Optional[str], typer.Option("--tag", "-t", help="Only records with this tag")] = None,
    query: Annotated[str, typer.Option("--query", "-q", help="Case-insensitive text search")] = "",
    since: Annotated[Optional[str], typer.Option("--since", help="Created on or after (YYYY-MM-DD)")] = None,
    until: Annotated[Optional[str], typer.Option("--until", help="Created on or before (YYYY-MM-DD)")] = None,
    oldest: Annotated[bool, typer.Option("--oldest", help="Oldest first")] = False,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results to show")] = 50,
):
    """List records of one kind, filtered and sorted by creation date."""
    collection = _kind(kind)
    try:
        criteria = RecordFilter(
            status=status,
            favorite=favorite,
            archived=archived,
            completed=completed,
            folder_id=folder,
            tag=tag,
            query=query,
            start_date=since,
            end_date=until,
            order=OLDEST if oldest else NEWEST,
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    stash = _get_stash()
    records = stash.list_records(collection, criteria)
    stash.close()
    typer.echo(_format_records(records[:limit], stash.config.sync.timezone))


@app.command()
def tags(
    kind: Annotated[str, typer.Argument(help="conversations, memories or action-items")],
):
    """List the distinct tags in use."""
    collection = _kind(kind)
    stash = _get_stash()
    values = stash.list_tags(collection)
    stash.close()
    if _json_output:
        typer.echo(json.dumps(values))
    elif not values:
        typer.echo("No tags found.")
    else:
        for value in values:
            typer.echo(value)


@app.command()
def show(
    kind: Annotated[str, typer.Argument(help="conversations, memories or action-items")],
    id: Annotated[str, typer.Argument(help="Record ID")],
):
    """Print one record as JSON."""
    collection = _kind(kind)
    stash = _get_stash()
    record = stash.get_record(collection, id)
    stash.close()
    if record is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))


# -----------------------------------------------------------------------------
# Mutations
# -----------------------------------------------------------------------------

@app.command()
def favorite(id: Annotated[str, typer.Argument(help="Conversation ID")]):
    """Toggle the favorite flag on a conversation."""
    stash = _get_stash()
    record = stash.toggle_favorite(id)
    stash.close()
    _echo_one(record, id)


@app.command()
def star(id: Annotated[str, typer.Argument(help="Memory ID")]):
    """Toggle the star on a memory."""
    stash = _get_stash()
    record = stash.toggle_star(id)
    stash.close()
    _echo_one(record, id)


@app.command()
def archive(
    kind: Annotated[str, typer.Argument(help="conversations or memories")],
    id: Annotated[str, typer.Argument(help="Record ID")],
    undo: Annotated[bool, typer.Option("--undo", help="Restore instead of archiving")] = False,
):
    """Archive (or restore) a conversation or memory."""
    collection = _kind(kind)
    stash = _get_stash()
    if collection == Conversation.COLLECTION:
        record = stash.set_archived(id, not undo)
    elif collection == Memory.COLLECTION:
        record = stash.set_memory_archived(id, not undo)
    else:
        stash.close()
        typer.echo("Error: Only conversations and memories can be archived", err=True)
        raise typer.Exit(1)
    stash.close()
    _echo_one(record, id)


@app.command()
def complete(
    id: Annotated[str, typer.Argument(help="Action item ID")],
    undo: Annotated[bool, typer.Option("--undo", help="Mark as pending again")] = False,
):
    """Mark an action item completed."""
    stash = _get_stash()
    record = stash.set_completed(id, not undo)
    stash.close()
    _echo_one(record, id)


@app.command()
def tag(
    kind: Annotated[str, typer.Argument(help="conversations, memories or action-items")],
    id: Annotated[str, typer.Argument(help="Record ID")],
    values: Annotated[Optional[list[str]], typer.Argument(help="New tags (replaces existing; none clears)")] = None,
):
    """Replace the tags on a record. Comma-separated values are split."""
    collection = _kind(kind)
    new_tags = [t for value in (values or []) for t in value.split(",")]
    stash = _get_stash()
    record = stash.set_tags(collection, id, new_tags)
    stash.close()
    _echo_one(record, id)


@app.command()
def move(
    kind: Annotated[str, typer.Argument(help="conversations, memories or action-items")],
    ids: Annotated[list[str], typer.Argument(help="Record IDs")],
    folder: Annotated[Optional[str], typer.Option("--folder", "-f", help="Target folder ID")] = None,
    none: Annotated[bool, typer.Option("--none", help="Remove from any folder")] = False,
):
    """Move records into a folder."""
    if (folder is None) == (not none):
        typer.echo("Error: Specify either --folder or --none", err=True)
        raise typer.Exit(1)
    collection = _kind(kind)
    stash = _get_stash()
    try:
        moved = stash.move_to_folder(collection, ids, None if none else folder)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        stash.close()
    typer.echo(f"Moved {moved} of {len(ids)}")


@app.command()
def delete(
    kind: Annotated[str, typer.Argument(help="conversations, memories or action-items")],
    ids: Annotated[list[str], typer.Argument(help="Record IDs")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
):
    """Delete records from the local store. The remote account is untouched."""
    collection = _kind(kind)
    if not yes:
        typer.confirm(f"Delete {len(ids)} {collection}?", abort=True)
    stash = _get_stash()
    deleted = stash.delete_records(collection, ids)
    stash.close()
    typer.echo(f"Deleted {deleted}")


@app.command()
def demo():
    """Add locally generated demo records."""
    stash = _get_stash()
    counts = stash.generate_demo_data()
    stash.close()
    typer.echo(
        f"Added {counts['conversations']} conversations, {counts['memories']} memories, "
        f"{counts['actionItems']} action items"
    )


@app.command()
def reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
):
    """Delete all local conversations, memories, action items and folders."""
    if not yes:
        typer.confirm("Delete ALL local data?", abort=True)
    stash = _get_stash()
    removed = stash.clear_all()
    stash.close()
    typer.echo("Cleared " + ", ".join(f"{n} {name}" for name, n in removed.items()))


# -----------------------------------------------------------------------------
# Folders
# -----------------------------------------------------------------------------

@folder_app.command("create")
def folder_create(
    name: Annotated[str, typer.Argument(help="Folder name")],
    type: Annotated[str, typer.Option("--type", help=f"One of: {', '.join(FOLDER_TYPES)}")] = FOLDER_CHAT,
):
    """Create a folder."""
    stash = _get_stash()
    try:
        folder = stash.create_folder(name, type)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        stash.close()
    typer.echo(json.dumps(folder.to_dict()) if _json_output else folder.id)


@folder_app.command("list")
def folder_list(
    type: Annotated[Optional[str], typer.Option("--type", help=f"One of: {', '.join(FOLDER_TYPES)}")] = None,
):
    """List folders."""
    stash = _get_stash()
    folders = stash.list_folders(type)
    stash.close()
    if _json_output:
        typer.echo(json.dumps([f.to_dict() for f in folders], indent=2))
        return
    if not folders:
        typer.echo("No folders.")
    for f in folders:
        typer.echo(f"{f.id}  {f.type or FOLDER_CHAT:<11}  {f.name}")


@folder_app.command("rename")
def folder_rename(
    id: Annotated[str, typer.Argument(help="Folder ID")],
    name: Annotated[str, typer.Argument(help="New name")],
    color: Annotated[Optional[str], typer.Option("--color", help="New color")] = None,
):
    """Rename (and optionally recolor) a folder."""
    stash = _get_stash()
    try:
        folder = stash.update_folder(id, name=name, color=color)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        stash.close()
    if folder is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Renamed {id} to {folder.name}")


@folder_app.command("delete")
def folder_delete(id: Annotated[str, typer.Argument(help="Folder ID")]):
    """Delete a folder. Records in it are not deleted."""
    stash = _get_stash()
    existed = stash.delete_folder(id)
    stash.close()
    if not existed:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Deleted folder {id}")


def main():
    try:
        app()
    except StashError as e:
        log_path = log_exception(e, " ".join(sys.argv[1:]))
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details: {log_path}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
