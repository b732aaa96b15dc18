"""
CLI: ``implspine merge`` / ``implspine inspect`` -- load and show implementor fragments.
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError as PydanticValidationError

from implspine.cli.utils import console, err_console, print_json, records_table, setup_logging
from implspine.consumers import ImplementorCollector
from implspine.core.broker import page_broker
from implspine.core.errors import FragmentParseError
from implspine.core.models import Contribution
from implspine.fragments.loader import load_fragments_sync
from implspine.fragments.parser import marker_from_path, parse_payload_text


def merge(
    paths: list[Path] = typer.Argument(..., help="Fragment files (.js or .json)"),
    marker: str | None = typer.Option(
        None, "--marker", "-m", help="Marker name (derived from the first path by default)"
    ),
    consumer_first: bool = typer.Option(
        False, "--consumer-first", help="Register the consumer before loading fragments"
    ),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", min=1),
    json_out: bool = typer.Option(False, "--json"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Merge fragments into one implementor list, each library exactly once."""
    setup_logging(verbose)

    marker = marker or marker_from_path(paths[0])
    collector = ImplementorCollector(name="cli")

    with page_broker(marker=marker) as broker:
        if consumer_first:
            broker.register_consumer(collector)
        report = load_fragments_sync(paths, broker, max_concurrency=concurrency)
        if not consumer_first:
            broker.register_consumer(collector)
        stats = broker.stats
        rejects = list(broker.rejects)

    if json_out:
        print_json(
            {
                "marker": marker,
                "implementors": collector.to_payload(),
                "stats": stats.to_dict(),
                "failed": report.failed,
                "rejects": [r.to_dict() for r in rejects],
            }
        )
    else:
        console.print(records_table(collector.to_payload(), title=marker or "implementors"))
        console.print(
            f"[bold]{len(collector)}[/bold] libraries, "
            f"[bold]{len(collector.records)}[/bold] implementors "
            f"({stats.duplicates} duplicate, {stats.rejected} rejected)"
        )
        for reject in rejects:
            err_console.print(
                f"[yellow]Rejected[/yellow] {reject.reason_code}: {reject.reason_detail}"
                + (f" ({reject.source_locator})" if reject.source_locator else "")
            )

    if not report.ok:
        raise typer.Exit(code=1)


def inspect(
    path: Path = typer.Argument(..., help="Fragment file (.js or .json)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Decode a single fragment and show its libraries and records."""
    locator = str(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        err_console.print(f"[bold red]Cannot read[/bold red] {locator}: {e}")
        raise typer.Exit(code=1) from e

    try:
        payload = parse_payload_text(text, source_locator=locator)
    except FragmentParseError as e:
        err_console.print(f"[bold red]Parse error[/bold red] {locator}: {e.message}")
        raise typer.Exit(code=1) from e

    try:
        contributions = [
            Contribution.from_library(library, records, source_locator=locator)
            for library, records in payload.items()
        ]
    except PydanticValidationError as e:
        err_console.print(f"[bold red]Malformed fragment[/bold red] {locator}: {e.error_count()} error(s)")
        raise typer.Exit(code=1) from e

    normalized = {c.source_id: [r.to_wire() for r in c.records] for c in contributions}
    if json_out:
        print_json({"marker": marker_from_path(path), "implementors": normalized})
    else:
        console.print(records_table(normalized, title=marker_from_path(path) or locator))
