import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from driftgate.cli.formatter import OutputFormatter
from driftgate.config.loader import load_config
from driftgate.core.context import DriftgateContext, describe_validation_error
from driftgate.core.models import SchemaArtifact, SourceSettings, utcnow
from driftgate.infrastructure.github import GitHubSchemaFetcher
from driftgate.runtime.controller import DriftgateRuntimeController
from driftgate.schema.builder import GraphQLSchemaBuilder
from driftgate.utils.diagnostics import ConfigurationError, DriftgateError
from driftgate.utils.logging import configure_logging

app = typer.Typer(name="driftgate", help="Driftgate CLI Interface", rich_markup_mode=None)

CONFIG_OPTION = typer.Option(Path("driftgate.yaml"), "--config", "-c", help="Path to driftgate.yaml.")

CONFIG_EXIT_CODE = 2


def _read_config(config_path: Path) -> Dict[str, Any]:
    load_dotenv(find_dotenv(usecwd=True))
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        OutputFormatter.log(str(exc), severity="error")
        raise typer.Exit(code=CONFIG_EXIT_CODE)


def _apply_overrides(config_dict: Dict[str, Any], overrides: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    merged = {section: dict(values) for section, values in config_dict.items()}
    for section, values in overrides.items():
        for key, value in values.items():
            if value is not None:
                merged.setdefault(section, {})[key] = value
    return merged


def _load_context(config_path: Path, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> DriftgateContext:
    config_dict = _apply_overrides(_read_config(config_path), overrides or {})
    try:
        return DriftgateContext.from_config_dict(config_dict, origin=str(config_path))
    except ConfigurationError as exc:
        OutputFormatter.log(str(exc), severity="error")
        raise typer.Exit(code=CONFIG_EXIT_CODE)


def _load_source_settings(config_path: Path) -> SourceSettings:
    config_dict = _read_config(config_path)
    try:
        return SourceSettings(**config_dict.get("source", {}))
    except ValidationError as exc:
        OutputFormatter.log(describe_validation_error(exc), severity="error")
        raise typer.Exit(code=CONFIG_EXIT_CODE)


def _fetch_artifact(source: SourceSettings) -> SchemaArtifact:
    try:
        return asyncio.run(GitHubSchemaFetcher(source).fetch())
    except DriftgateError as exc:
        OutputFormatter.log(str(exc), severity="error")
        raise typer.Exit(code=1)


@app.command()
def serve(
    config: Path = CONFIG_OPTION,
    host: Optional[str] = typer.Option(None, "--host", help="Listen host override."),
    port: Optional[int] = typer.Option(None, "--port", min=1, max=65535, help="Listen port override."),
    interval_ms: Optional[int] = typer.Option(None, "--interval-ms", help="Poll interval override in milliseconds."),
    watch: Optional[bool] = typer.Option(None, "--watch/--no-watch", help="Enable or disable drift polling."),
):
    """
    Serve the remote schema and restart whenever it drifts.
    """
    context = _load_context(
        config,
        overrides={
            "server": {"host": host, "port": port},
            "poller": {"interval_ms": interval_ms, "enabled": watch},
        },
    )
    configure_logging(context.settings.log_level)
    OutputFormatter.log(f"Production mode is: {context.settings.production}")

    controller = DriftgateRuntimeController(context)
    try:
        exit_code = asyncio.run(controller.run())
    except DriftgateError as exc:
        OutputFormatter.log(f"Unable to start server: {exc}", severity="error")
        OutputFormatter.print_diagnostics(controller.diagnostics)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        OutputFormatter.log("Server interrupted. Shutting down.", severity="info")
        exit_code = 0

    if controller.diagnostics:
        OutputFormatter.print_diagnostics(controller.diagnostics)
    OutputFormatter.log("Server stopped.", severity="success")
    raise typer.Exit(code=exit_code)


@app.command()
def fetch(config: Path = CONFIG_OPTION):
    """
    Fetch the remote schema once and print it.
    """
    source = _load_source_settings(config)
    artifact = _fetch_artifact(source)
    OutputFormatter.log(f"Fetched schema from {artifact.source}.", severity="success")
    OutputFormatter.print_data(artifact.content)


@app.command()
def validate(
    config: Path = CONFIG_OPTION,
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Validate a local schema file instead."),
):
    """
    Build the schema and report whether it would boot.
    """
    if file is not None:
        try:
            content = file.read_text(encoding="utf-8")
        except OSError as exc:
            OutputFormatter.log(f"Unable to read {file}: {exc}", severity="error")
            raise typer.Exit(code=1)
        artifact = SchemaArtifact(content=content, retrieved_at=utcnow(), source=str(file))
    else:
        artifact = _fetch_artifact(_load_source_settings(config))

    try:
        executable = GraphQLSchemaBuilder().build(artifact)
    except DriftgateError as exc:
        OutputFormatter.print_diagnostics([exc.to_diagnostic()])
        raise typer.Exit(code=1)

    type_count = len([name for name in executable.schema.type_map if not name.startswith("__")])
    OutputFormatter.log(f"Schema from {artifact.source} is valid ({type_count} types).", severity="success")


@app.command("config")
def show_config(config: Path = CONFIG_OPTION):
    """
    Print the validated effective configuration with secrets masked.
    """
    context = _load_context(config)
    OutputFormatter.print_data(context.masked_dump())


if __name__ == "__main__":
    app()
