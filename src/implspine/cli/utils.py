"""
CLI utility helpers: consoles, logging bootstrap, output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from implspine.core.errors import ConfigError
from implspine.core.logging import configure_logging
from implspine.core.settings import get_settings

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging from settings; ``--verbose`` forces DEBUG."""
    try:
        settings = get_settings()
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error:[/bold red] {e.message}")
        raise typer.Exit(code=2) from e

    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.log_format == "json",
        service=settings.service_name,
    )


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def records_table(payload: dict[str, list[dict[str, Any]]], *, title: str = "") -> Table:
    """Render ``{library: [record, ...]}`` as one row per record."""
    table = Table(title=title or None, show_lines=False)
    table.add_column("Library", style="cyan", no_wrap=True)
    table.add_column("Type(s)")
    table.add_column("Synthetic", justify="center")

    for library, records in payload.items():
        if not records:
            table.add_row(escape(library), "[dim](no implementors)[/dim]", "")
            continue
        for record in records:
            types = escape(", ".join(record.get("types") or [])) or "[dim]-[/dim]"
            table.add_row(escape(library), types, "yes" if record.get("synthetic") else "no")
    return table
