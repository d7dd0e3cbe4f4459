# src/pipetrace/cli.py
"""PIPETRACE Command Line Interface.

Entry point for the pipetrace CLI tool: load trace documents into a
local store and inspect them.
"""

import json
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from pipetrace import __version__
from pipetrace.contracts.errors import (
    DuplicatePipelineError,
    InvalidDocumentError,
    InvalidFilterError,
)
from pipetrace.core.config import PipetraceSettings, load_settings
from pipetrace.core.documents import pipeline_record_to_document
from pipetrace.core.logging import configure_logging
from pipetrace.store.database import TraceDB

app = typer.Typer(
    name="pipetrace",
    help="PIPETRACE: Execution traces for multi-stage candidate pipelines.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pipetrace version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """PIPETRACE: Execution traces for multi-stage candidate pipelines."""
    pass


def _load_config(settings: str | None) -> PipetraceSettings:
    """Load settings, or exit 1 with the problems on stderr."""
    try:
        config = load_settings(Path(settings) if settings else None)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None

    configure_logging(level=config.logging.level, json_output=config.logging.json_output)
    return config


def _open_store(config: PipetraceSettings) -> TraceDB:
    return TraceDB.from_url(config.store.url, echo=config.store.echo)


def _echo_json(value: Any) -> None:
    typer.echo(json.dumps(value, indent=2))


SETTINGS_OPTION = typer.Option(
    None,
    "--settings",
    "-s",
    help="Path to settings YAML file (defaults and PIPETRACE_* env vars otherwise).",
)


@app.command()
def ingest(
    file: Path = typer.Argument(..., help="Pipeline document JSON file (object or list)."),
    settings: str | None = SETTINGS_OPTION,
) -> None:
    """Ingest pipeline trace documents into the trace store."""
    from pipetrace.store.ingest import TraceIngestor

    config = _load_config(settings)

    try:
        payload = json.loads(file.read_text(encoding="utf-8"))
    except FileNotFoundError:
        typer.echo(f"Error: File not found: {file}", err=True)
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {file} is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None

    documents = payload if isinstance(payload, list) else [payload]

    with _open_store(config) as db:
        ingestor = TraceIngestor(db)
        for document in documents:
            try:
                pipeline_id = ingestor.ingest(document)
            except (InvalidDocumentError, DuplicatePipelineError) as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(1) from None
            typer.echo(f"Ingested pipeline {pipeline_id}")


@app.command()
def query(
    filter_json: str = typer.Argument(
        "{}", help='Filter request, e.g. \'{"stage": {"type": "retrieval"}}\'.'
    ),
    settings: str | None = SETTINGS_OPTION,
) -> None:
    """Find pipelines matching a filter and print them as JSON."""
    from pipetrace.store.query import TraceQuery

    config = _load_config(settings)

    try:
        request = json.loads(filter_json)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Filter is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None
    if not isinstance(request, dict):
        typer.echo("Error: Filter must be a JSON object", err=True)
        raise typer.Exit(1)

    with _open_store(config) as db:
        try:
            results = TraceQuery(db).run(request)
        except InvalidFilterError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from None

    _echo_json([pipeline_record_to_document(record) for record in results])


@app.command()
def show(
    pipeline_id: str = typer.Argument(..., help="Pipeline id to show."),
    settings: str | None = SETTINGS_OPTION,
) -> None:
    """Print one pipeline with its full stages as JSON."""
    from pipetrace.store.query import TraceQuery

    config = _load_config(settings)

    with _open_store(config) as db:
        record = TraceQuery(db).get_pipeline(pipeline_id)

    if record is None:
        typer.echo(f"Error: Pipeline '{pipeline_id}' not found.", err=True)
        raise typer.Exit(1)

    _echo_json(pipeline_record_to_document(record))


if __name__ == "__main__":
    app()
