import json
from datetime import datetime, timezone
from typing import Any, List

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.table import Table

from driftgate.utils.diagnostics import LifecycleDiagnostic

# Create a stderr console for logging
error_console = Console(stderr=True)


class OutputFormatter:
    """
    Handles output formatting for the CLI.
    Ensures separation of concerns between System Logs (stderr) and Data (stdout).
    """

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """
        Print timestamped system messages to stderr with color coding.
        """
        style = "white"
        prefix = "[SYSTEM]"

        if severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        error_console.print(f"[{style}]\\[{timestamp}] {prefix} {message}[/{style}]", highlight=False)

    @staticmethod
    def print_diagnostics(diagnostics: List[LifecycleDiagnostic]) -> None:
        """
        Prints a table of lifecycle failures.
        """
        if not diagnostics:
            return

        table = Table(title="Driftgate Diagnostics", border_style="red", header_style="bold red")
        table.add_column("Time")
        table.add_column("Severity", style="bold")
        table.add_column("Code")
        table.add_column("Step")
        table.add_column("Message")
        table.add_column("Source")

        for diag in diagnostics:
            color = "red"
            if diag.severity == "warning":
                color = "yellow"
            elif diag.severity == "critical":
                color = "bold red"

            step = diag.step
            if diag.generation_id is not None:
                step += f" (gen {diag.generation_id})"

            table.add_row(
                diag.recorded_at.isoformat(timespec="seconds"),
                f"[{color}]{diag.severity.upper()}[/{color}]",
                diag.error_code,
                step,
                diag.message,
                diag.source or "-",
            )

        error_console.print(table)
        error_console.print()  # spacing

    @staticmethod
    def print_data(data: Any) -> None:
        """
        Print a result to stdout.
        Handles Pydantic models and complex types.
        """
        # 1. Raw Strings (schema text)
        if isinstance(data, str):
            typer.echo(data)
            return

        # 2. Serialize complex objects
        def json_serializer(obj):
            if isinstance(obj, BaseModel):
                return obj.model_dump(mode='json')
            if hasattr(obj, "isoformat"):
                return obj.isoformat()
            return str(obj)

        # 3. Print JSON
        try:
            output = json.dumps(data, indent=2, default=json_serializer)
            typer.echo(output)
        except TypeError as e:
            OutputFormatter.log(f"JSON Serialization failed: {e}", severity="error")
            typer.echo(str(data))
