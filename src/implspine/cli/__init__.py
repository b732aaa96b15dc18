"""implspine command line interface (typer + rich)."""
