"""
Root Typer application for the implspine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from implspine.cli.fragments import inspect, merge

app = Typer(
    name="implspine",
    help="Merge rustdoc implementor fragments for a marker page.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("implspine")
        except PackageNotFoundError:
            from implspine import __version__ as v
        typer.echo(f"implspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Merge and inspect implementor fragments."""


app.command("merge")(merge)
app.command("inspect")(inspect)


if __name__ == "__main__":
    app()
