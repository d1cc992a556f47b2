#!/usr/bin/env python3
"""
astral: CLI for importing knowledge-base exports

Usage:
    astral import export.zip              # Import a ZIP export
    astral import export.zip --conflicts=merge
    astral revert                         # Delete unsynced imported objects
    astral sync --mirror ./mirror         # Persist unsynced objects to a folder
    astral types                          # List types with member counts
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from collections import Counter
from collections.abc import Sequence
from pathlib import Path
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as ASTRAL_VERSION
from .config import ConfigurationError, get_store_root, load_import_defaults
from .errors import AstralError, ErrorCode, format_error_json
from .models import CleanupProgress, ImportOptions, ImportOutcome, ImportProgress


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}
    widths = {col: len(col) for col in columns}

    def _cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    for row in rows:
        for col in columns:
            widths[col] = max(widths[col], len(_cell(row, col)))

    lines = [
        "  ".join(col.upper().ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    for row in rows:
        lines.append("  ".join(_cell(row, col).ljust(widths[col]) for col in columns).rstrip())

    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _echo_messages(label: str, messages: list[str]) -> None:
    if not messages:
        return
    click.echo(f"{label}:")
    for message in messages:
        click.echo(f"  - {message}")


def _print_outcome(outcome: ImportOutcome) -> None:
    click.echo(f"Import batch: {outcome.batch_id}")
    click.echo(f"  Created: {outcome.created_count}")
    click.echo(f"  Updated: {outcome.updated_count}")
    click.echo(f"  Skipped: {outcome.skipped_count}")
    if outcome.media_count:
        click.echo(f"  Media:   {outcome.media_count}")
    if outcome.new_types_created:
        names = ", ".join(t.name for t in outcome.new_types_created)
        click.echo(f"  New types: {names}")
    _echo_messages("Skipped", [f"{item.title}: {item.reason}" for item in outcome.skipped_items])
    _echo_messages("Warnings", outcome.warnings)
    _echo_messages("Errors", outcome.errors)


# ─────────────────────────────────────────────────────────────────────────────
# Error Handling
# ─────────────────────────────────────────────────────────────────────────────


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report an error as JSON (--json-errors) or plain text, then exit."""
    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, AstralError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
    else:
        code = ErrorCode.CONFIGURATION_ERROR if isinstance(error, ConfigurationError) else ErrorCode.STORE_ERROR
        if json_errors:
            click.echo(format_error_json(code.value, str(error)), err=True)
        else:
            click.echo(f"Error: {error}", err=True)

    sys.exit(exit_code)


def get_error_code_for_exception(exc: Exception) -> str:
    """Map Click exceptions to error codes."""
    if isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, click.NoSuchOption):
        return "UNKNOWN_OPTION"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    elif isinstance(exc, ClickException):
        return "CLI_ERROR"
    return "UNKNOWN_ERROR"


class JsonErrorGroup(click.Group):
    """Click group that formats errors as JSON when --json-errors is set.

    Covers Click validation errors (bad option values, missing arguments)
    raised before a command callback runs, and suggests close matches for
    mistyped command names.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(cmd_name, self.list_commands(ctx), n=1, cutoff=0.6)
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?")
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        argv = list(args) if args is not None else list(sys.argv[1:])
        if "--json-errors" not in argv:
            return super().main(argv, prog_name, complete_var, standalone_mode, **extra)

        # Accept --json-errors anywhere on the command line
        argv = ["--json-errors", *(a for a in argv if a != "--json-errors")]
        try:
            return super().main(argv, prog_name, complete_var, standalone_mode=False, **extra)
        except ClickException as e:
            click.echo(format_error_json(get_error_code_for_exception(e), e.format_message()), err=True)
            raise SystemExit(1)
        except click.Abort:
            click.echo(format_error_json("ABORTED", "Aborted"), err=True)
            raise SystemExit(1)


# ─────────────────────────────────────────────────────────────────────────────
# Store access
# ─────────────────────────────────────────────────────────────────────────────


def _open_store(ctx: click.Context):
    from .store import JsonFileStore

    root = ctx.obj.get("store_root")
    try:
        return JsonFileStore(Path(root) if root else get_store_root())
    except (AstralError, ConfigurationError) as e:
        _handle_error(ctx, e)


def _mirror_session(mirror: str | None):
    if mirror is None:
        return None
    from .sync import LocalMirrorStorage, SyncSession

    return SyncSession(LocalMirrorStorage(Path(mirror)))


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=ASTRAL_VERSION, prog_name="astral")
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="ASTRAL_QUIET",
    help="Suppress progress and warnings, show only errors and results",
)
@click.option(
    "--store",
    "store_root",
    type=click.Path(file_okay=False),
    envvar="ASTRAL_STORE_ROOT",
    help="Object store directory (default: ~/.astral/store)",
)
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool, store_root: str | None):
    """astral: import knowledge-base exports into a typed object graph.

    \b
    Import:
      astral import export.zip                      # Skip titles that already exist
      astral import export.zip --conflicts=merge    # Merge tags and properties
      astral import export.zip --hashtags=tags      # Hashtags become object tags

    \b
    Undo:
      astral revert                 # Delete every unsynced object, then empty types
      astral revert --batch ID      # Only objects created by one import

    \b
    Persist:
      astral sync --mirror ./kb     # Write unsynced objects as Markdown files

    Import defaults can be set in a .astralconfig YAML file in the working
    directory (handle_conflicts, import_media, convert_hashtags).
    """
    from ._logging import set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet
    ctx.obj["store_root"] = store_root

    if quiet:
        set_quiet_mode(True)


# ─────────────────────────────────────────────────────────────────────────────
# import
# ─────────────────────────────────────────────────────────────────────────────


@cli.command("import")
@click.argument("archive", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--conflicts",
    type=click.Choice(["skip", "merge", "overwrite", "duplicate"]),
    help="What to do when an object with the same type and title exists (default: skip)",
)
@click.option("--media/--no-media", "media", default=None, help="Upload images and PDFs from the archive")
@click.option(
    "--hashtags",
    type=click.Choice(["mentions", "tags", "plain"]),
    help="mentions: link to tag objects; tags: add to object tags; plain: leave as text",
)
@click.option(
    "--mirror",
    type=click.Path(file_okay=False),
    help="Folder receiving uploaded media",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def import_cmd(
    ctx: click.Context,
    archive: str,
    conflicts: str | None,
    media: bool | None,
    hashtags: str | None,
    mirror: str | None,
    as_json: bool,
):
    """Import a ZIP export of Markdown files.

    \b
    Examples:
      astral import notes.zip
      astral import notes.zip --conflicts=overwrite --json
      astral import notes.zip --media --mirror ./kb
    """
    from .importer import import_archive

    try:
        defaults = load_import_defaults()
    except ConfigurationError as e:
        _handle_error(ctx, e)

    options = ImportOptions(
        handle_conflicts=conflicts or defaults.handle_conflicts,
        import_media=defaults.import_media if media is None else media,
        convert_hashtags=hashtags or defaults.convert_hashtags,
    )
    store = _open_store(ctx)
    show_progress = not as_json and not ctx.obj["quiet"]
    last_phase: list[str] = []

    def on_progress(progress: ImportProgress) -> None:
        if show_progress and progress.phase not in last_phase:
            last_phase.append(progress.phase)
            click.echo(f"[{progress.phase}]", err=True)

    outcome = run_async(
        import_archive(Path(archive), store, options, on_progress=on_progress, session=_mirror_session(mirror))
    )

    if as_json:
        output(outcome.model_dump(mode="json"), as_json=True)
    else:
        _print_outcome(outcome)

    if outcome.errors:
        sys.exit(1)


# ─────────────────────────────────────────────────────────────────────────────
# revert
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--batch", "batch_id", help="Only revert objects created by this import batch")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def revert(ctx: click.Context, batch_id: str | None, yes: bool, as_json: bool):
    """Delete objects never synced to external storage, then empty types.

    Without --batch this removes every unsynced object, including objects
    from earlier imports that were not synced yet.
    """
    from .cleanup import revert_import

    store = _open_store(ctx)
    objects = run_async(store.list_objects())
    pending = [o for o in objects if not o.is_synced and (batch_id is None or o.import_batch == batch_id)]

    if not yes:
        scope = f" from batch {batch_id}" if batch_id else ""
        if not click.confirm(f"Delete {len(pending)} unsynced objects{scope}?", default=False):
            click.echo("Aborted.", err=True)
            sys.exit(0)

    show_progress = not as_json and not ctx.obj["quiet"]

    def on_progress(progress: CleanupProgress) -> None:
        if show_progress and progress.current_item:
            click.echo(f"[{progress.state}] {progress.current}/{progress.total} {progress.current_item}", err=True)

    try:
        result = run_async(revert_import(store, on_progress=on_progress, batch_id=batch_id))
    except AstralError as e:
        _handle_error(ctx, e)

    if as_json:
        output(result.model_dump(mode="json"), as_json=True)
    else:
        click.echo(f"Deleted {result.deleted_object_count} objects and {result.deleted_type_count} types")
        _echo_messages("Errors", result.errors)

    if result.errors:
        sys.exit(1)


# ─────────────────────────────────────────────────────────────────────────────
# sync
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--mirror",
    required=True,
    type=click.Path(file_okay=False),
    help="Folder receiving one Markdown file per object",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def sync(ctx: click.Context, mirror: str, as_json: bool):
    """Write unsynced objects to a mirror folder and mark them synced.

    Synced objects are no longer removed by revert.
    """
    from .sync import sync_unsynced

    store = _open_store(ctx)
    try:
        result = run_async(sync_unsynced(store, _mirror_session(mirror)))
    except AstralError as e:
        _handle_error(ctx, e)

    if as_json:
        output(result.model_dump(mode="json"), as_json=True)
    else:
        click.echo(f"Synced {result.synced_count} objects to {mirror}")
        _echo_messages("Errors", result.errors)

    if result.errors:
        sys.exit(1)


# ─────────────────────────────────────────────────────────────────────────────
# types
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def types(ctx: click.Context, as_json: bool):
    """List object types with their member counts."""
    store = _open_store(ctx)
    usage = Counter(obj.type for obj in run_async(store.list_objects()))
    rows = [
        {
            "id": t.id,
            "name": t.name,
            "plural": t.name_plural,
            "objects": usage[t.id],
            "properties": len(t.properties),
        }
        for t in run_async(store.list_types())
    ]

    if as_json:
        output(rows, as_json=True)
    else:
        click.echo(format_table(rows, ["id", "name", "plural", "objects", "properties"]))


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def main():
    """Entry point for astral CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
