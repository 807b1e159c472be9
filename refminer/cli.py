"""Typer-based CLI for refminer."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__, config_manager
from .config import DiffSettings
from .engine import DiffEngine
from .errors import InvalidElement
from .parser import PythonModelBuilder

app = typer.Typer(
    help="Detect refactorings between two versions of a Python code base.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"refminer v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """refminer: structural diff and refactoring detection."""
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.command("diff")
def diff_command(
    left: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory of the old version."),
    right: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory of the new version."),
    as_json: bool = typer.Option(False, "--json", help="Print refactorings as a JSON array."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds before unfinished pairs are dropped."),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Parallel detection tasks."),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging."),
):
    """Detect refactorings from LEFT to RIGHT."""
    _configure_logging(verbose)
    try:
        settings = config_manager.load_settings(timeout=timeout, max_workers=workers)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))

    try:
        left_model = PythonModelBuilder(left).build()
        right_model = PythonModelBuilder(right).build()
    except InvalidElement as exc:
        err_console.print(f"[red]✗[/red] Could not build model: {exc}")
        raise typer.Exit(code=1)

    result = DiffEngine(settings).run(left_model, right_model)

    if as_json:
        typer.echo(json.dumps([r.to_dict() for r in result.refactorings], indent=2))
    elif not result.refactorings:
        typer.echo("No refactorings detected.")
    else:
        for refactoring in result.refactorings:
            typer.echo(refactoring.describe())

    for diagnostic in sorted(result.diagnostics):
        err_console.print(f"[yellow]![/yellow] {diagnostic}")
    if not result.complete:
        err_console.print("[yellow]Analysis incomplete: some class pairs timed out.[/yellow]")


@app.command("show-config")
def show_config():
    """Show the effective diff settings."""
    try:
        settings = config_manager.load_settings()
    except ValueError as exc:
        err_console.print(f"[red]✗[/red] Invalid configuration in {config_manager.CONFIG_FILE}: {exc}")
        raise typer.Exit(code=1)

    stored = config_manager.load_config()
    defaults = DiffSettings().as_dict()
    table = Table(title="Diff settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for name, value in settings.as_dict().items():
        source = "config" if name in stored else "default"
        marker = "" if value == defaults[name] else " *"
        table.add_row(name, f"{value}{marker}", source)
    console.print(table)
    console.print(f"[dim]Config file: {config_manager.CONFIG_FILE}[/dim]")


@app.command("set-threshold")
def set_threshold(
    name: str = typer.Argument(..., help="Setting name, e.g. operation_threshold."),
    value: str = typer.Argument(..., help="New value."),
):
    """Persist one diff setting in the config file."""
    try:
        saved = config_manager.save_setting(name, value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    if not saved:
        err_console.print(f"[red]✗[/red] Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(code=1)
    typer.echo(f"Saved {name} = {value}")


@app.command("reset-config")
def reset_config():
    """Drop all persisted diff settings."""
    if not config_manager.clear_settings():
        raise typer.Exit(code=1)
    typer.echo("Diff settings reset to defaults.")
