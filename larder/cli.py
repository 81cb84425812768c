"""
CLI interface for larder.

Usage:
    larder list tasks --search milk
    larder add tasks title="Buy milk" priority=high
    larder extract transactions "Lunch at Acme, 42.50" --file receipt.jpg --save
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .api import Workspace
from .errors import GatewayError, ValidationError
from .interpreter import Structured
from .logging_config import configure_quiet_mode, enable_debug_mode
from .providers.base import Attachment
from .types import Entity

# Configure quiet mode by default (suppress verbose library output)
# Set LARDER_VERBOSE=1 to enable debug mode via environment
if os.environ.get("LARDER_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"larder {version('larder')}")
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


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="larder",
    help="Local-first business records with AI form filling.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


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
        envvar="LARDER_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local-first business records with AI form filling."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

TypeArg = Annotated[str, typer.Argument(help="Entity type (see 'larder types')")]


def _get_workspace() -> Workspace:
    """Open the workspace, handling errors gracefully."""
    import atexit

    try:
        ws = Workspace(_get_store_override())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(ws.close)
    return ws


def _repository(ws: Workspace, name: str):
    try:
        return ws.repository(name)
    except KeyError:
        typer.echo(
            f"Error: unknown type '{name}'. Available: {', '.join(ws.entity_types())}",
            err=True,
        )
        raise typer.Exit(1)


def _parse_value(text: str) -> Any:
    """JSON literal if it parses (numbers, lists, true/false), else the string."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _parse_assignments(pairs: list[str]) -> dict[str, Any]:
    values = {}
    for pair in pairs:
        if "=" not in pair:
            typer.echo(f"Error: expected field=value, got '{pair}'", err=True)
            raise typer.Exit(1)
        key, _, value = pair.partition("=")
        values[key.strip()] = _parse_value(value)
    return values


def _label(entity: Entity) -> str:
    for key in ("title", "name", "vendor", "description"):
        if entity.get(key):
            return str(entity[key])
    return ""


def _echo_entities(entities: list[Entity]) -> None:
    if _get_json_output():
        typer.echo(json.dumps(entities, indent=2, ensure_ascii=False))
        return
    for entity in entities:
        status = entity.get("status")
        suffix = f"  [{status}]" if status else ""
        typer.echo(f"{entity.get('id')}  {_label(entity)}{suffix}")


def _echo_entity(entity: Entity) -> None:
    if _get_json_output():
        typer.echo(json.dumps(entity, indent=2, ensure_ascii=False))
        return
    for key, value in entity.items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        typer.echo(f"{key}: {value}")


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command("types")
def types_cmd():
    """List the entity types."""
    ws = _get_workspace()
    names = ws.entity_types()
    if _get_json_output():
        typer.echo(json.dumps({n: ws.repository(n).key for n in names}, indent=2))
        return
    for name in names:
        typer.echo(f"{name}  ({len(ws.repository(name))} items)")


@app.command("list")
def list_cmd(
    type_name: TypeArg,
    search: Annotated[str, typer.Option("--search", "-q", help="Case-insensitive text search")] = "",
    where: Annotated[Optional[list[str]], typer.Option(
        "--where", "-w", help="Equality filter field=value (repeatable)",
    )] = None,
    range_: Annotated[Optional[list[str]], typer.Option(
        "--range", "-r", help="Inclusive range field=low..high (either bound may be empty)",
    )] = None,
    sort: Annotated[Optional[str], typer.Option("--sort", help="Sort key")] = None,
    desc: Annotated[bool, typer.Option("--desc", help="Sort descending")] = False,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results (0 = all)")] = 0,
):
    """List entities, filtered and sorted."""
    ws = _get_workspace()
    _repository(ws, type_name)
    view = ws.view(type_name, search=search, equals=_parse_assignments(where or []))
    for spec in range_ or []:
        field, _, bounds = spec.partition("=")
        if ".." not in bounds:
            typer.echo(f"Error: expected field=low..high, got '{spec}'", err=True)
            raise typer.Exit(1)
        low, _, high = bounds.partition("..")
        view.set_range(
            field.strip(),
            _parse_value(low) if low else None,
            _parse_value(high) if high else None,
        )
    if sort:
        view.set_sort(sort, desc)
    items = view.items
    _echo_entities(items[:limit] if limit > 0 else items)


@app.command("get")
def get_cmd(type_name: TypeArg, id: Annotated[str, typer.Argument(help="Entity id")]):
    """Show one entity."""
    ws = _get_workspace()
    entity = _repository(ws, type_name).get(id)
    if entity is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    _echo_entity(entity)


@app.command("add")
def add_cmd(
    type_name: TypeArg,
    fields: Annotated[Optional[list[str]], typer.Argument(help="field=value pairs")] = None,
):
    """Create an entity (required fields are validated)."""
    ws = _get_workspace()
    _repository(ws, type_name)
    form = ws.form(type_name)
    for key, value in _parse_assignments(fields or []).items():
        form.set(key, value)
    try:
        entity = form.submit()
    except ValidationError as e:
        for field, message in sorted(e.errors.items()):
            typer.echo(f"Error: {message}", err=True)
        raise typer.Exit(1)
    _echo_entity(entity)


@app.command("update")
def update_cmd(
    type_name: TypeArg,
    id: Annotated[str, typer.Argument(help="Entity id")],
    fields: Annotated[Optional[list[str]], typer.Argument(help="field=value pairs")] = None,
):
    """Change fields of an entity."""
    ws = _get_workspace()
    entity = _repository(ws, type_name).update(id, _parse_assignments(fields or []))
    if entity is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    _echo_entity(entity)


@app.command("delete")
def delete_cmd(type_name: TypeArg, id: Annotated[str, typer.Argument(help="Entity id")]):
    """Delete an entity."""
    ws = _get_workspace()
    if not _repository(ws, type_name).delete(id):
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Deleted {id}")


@app.command("export")
def export_cmd(
    type_name: Annotated[Optional[str], typer.Argument(help="Entity type (default: all, as JSON)")] = None,
    csv: Annotated[bool, typer.Option("--csv", help="Export one type as CSV")] = False,
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write to file")] = None,
):
    """Export data as JSON (all types) or CSV (one type)."""
    ws = _get_workspace()
    if csv:
        if not type_name:
            typer.echo("Error: --csv needs an entity type", err=True)
            raise typer.Exit(1)
        _repository(ws, type_name)
        text = ws.export_csv(type_name)
    else:
        names = None
        if type_name:
            _repository(ws, type_name)
            names = [type_name]
        text = json.dumps(ws.export_data(names), indent=2, ensure_ascii=False) + "\n"

    if output is None:
        typer.echo(text, nl=False)
    else:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Exported to {output}", err=True)


@app.command("import")
def import_cmd(
    file: Annotated[Path, typer.Argument(help="JSON export or CSV file", exists=True, dir_okay=False)],
    type_name: Annotated[Optional[str], typer.Argument(help="Entity type (required for CSV)")] = None,
    replace: Annotated[bool, typer.Option("--replace", help="Clear existing data first (JSON)")] = False,
):
    """Import a JSON export or a CSV file."""
    ws = _get_workspace()
    text = file.read_text(encoding="utf-8")
    if file.suffix.lower() == ".csv":
        if not type_name:
            typer.echo("Error: CSV import needs an entity type", err=True)
            raise typer.Exit(1)
        _repository(ws, type_name)
        count = ws.import_csv(type_name, text)
        stats = {"imported": count, "skipped": 0}
    else:
        try:
            data = json.loads(text)
            stats = ws.import_data(data, mode="replace" if replace else "merge")
        except (json.JSONDecodeError, ValueError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
    if _get_json_output():
        typer.echo(json.dumps(stats))
    else:
        typer.echo(f"Imported {stats['imported']}, skipped {stats['skipped']}")


@app.command("extract")
def extract_cmd(
    type_name: TypeArg,
    text: Annotated[str, typer.Argument(help="Free text to analyze")] = "",
    file: Annotated[Optional[Path], typer.Option(
        "--file", "-f", help="Attachment (e.g. a receipt photo)", exists=True, dir_okay=False,
    )] = None,
    save: Annotated[bool, typer.Option("--save", help="Create an entity from the result")] = False,
):
    """Fill a form from text or an image using the AI backend."""
    ws = _get_workspace()
    _repository(ws, type_name)
    try:
        interpreter = ws.interpreter(type_name)
    except KeyError as e:
        typer.echo(f"Error: {e.args[0]}", err=True)
        raise typer.Exit(1)
    if not text and file is None:
        typer.echo("Error: give text or --file", err=True)
        raise typer.Exit(1)

    attachment = Attachment.from_path(file) if file is not None else None
    form = ws.form(type_name)

    def on_loading(loading: bool):
        if loading and not _get_json_output():
            typer.echo("Analyzing...", err=True)

    async def run() -> str:
        gateway = ws.gateway(on_loading=on_loading)
        return await gateway.request(interpreter.prompt(text), attachment)

    try:
        raw = asyncio.run(run())
    except GatewayError as e:
        typer.echo(f"Error: {e.__cause__ or e}", err=True)
        raise typer.Exit(1)

    response = interpreter.interpret(raw, form.values)
    if not isinstance(response, Structured):
        if _get_json_output():
            typer.echo(json.dumps({"raw": response.text}))
        else:
            typer.echo(response.text)
        if save:
            typer.echo("Error: no fields recognized; nothing saved", err=True)
            raise typer.Exit(1)
        return

    if not save:
        _echo_entity(response.patch)
        return

    form.apply(response)
    try:
        entity = form.submit()
    except ValidationError as e:
        for message in e.errors.values():
            typer.echo(f"Error: {message}", err=True)
        raise typer.Exit(1)
    _echo_entity(entity)


@app.command("clear")
def clear_cmd(
    type_name: Annotated[Optional[str], typer.Argument(help="Entity type (default: all)")] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
):
    """Delete every entity of a type (or of all types)."""
    ws = _get_workspace()
    if type_name:
        _repository(ws, type_name)
    what = type_name or "all collections"
    if not yes and not typer.confirm(f"Clear {what}?"):
        raise typer.Exit(1)
    ws.clear(type_name)
    typer.echo(f"Cleared {what}")


@app.command("config")
def config_cmd():
    """Show the store configuration."""
    ws = _get_workspace()
    cfg = ws.config
    info = {
        "store": str(cfg.path),
        "config_file": str(cfg.config_path),
        "app": cfg.app,
        "backend": cfg.backend,
        "ai": cfg.ai.name if cfg.ai else None,
        "max_attachment_bytes": cfg.max_attachment_bytes,
    }
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    for key, value in info.items():
        typer.echo(f"{key}: {value}")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="larder CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
