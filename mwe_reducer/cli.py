"""Typer-based CLI for reducing failing Python programs."""

from __future__ import annotations

import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ReducerSettings, load_settings
from .config_manager import save_reducer_config
from .errors import ExtractionError, GraphConsistencyError, InitialConditionsError
from .fragments import FragmentBuilder
from .graph_export import export_dot
from .models import FragmentState
from .parser import SourceParser
from .reducer import ALGORITHMS, Reducer

app = typer.Typer(
    help="mwe: reduce a failing Python program to a minimal working example.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

STORES = ("memory", "sqlite")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"mwe-reducer v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """Delta debugging over the syntax tree of a Python project."""
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _shorten(text: str, width: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


@app.command("reduce")
def reduce(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Project containing the failing program."),
    command: str = typer.Option(..., "--command", "-c", help="Command reproducing the failure, run from the project root."),
    expected: str = typer.Option(..., "--expected", "-e", help="Text the failing run prints (stdout or stderr)."),
    algorithm: Optional[str] = typer.Option(None, "--algorithm", "-a", help="ddmin, hdd or gdd."),
    source: str = typer.Option(".", "--source", "-s", help="Directory (relative to the project) holding reducible files."),
    exclude: List[str] = typer.Option([], "--exclude", "-x", help="Glob of files to keep untouched; repeatable."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Folder receiving the reduced project."),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Parallel oracle calls per round."),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", min=0.0, help="Seconds allowed per oracle call."),
    limit: Optional[int] = typer.Option(None, "--limit", min=0, help="Max fragments per frontier batch (gdd, 0 = all)."),
    passes: Optional[int] = typer.Option(None, "--passes", min=1, help="Repeat gdd while a pass still removes fragments."),
    store: Optional[str] = typer.Option(None, "--store", help="Graph store: memory or sqlite."),
    guarantees: Optional[bool] = typer.Option(None, "--guarantees/--no-guarantees", help="Derive guarantee edges."),
    keep_comments: bool = typer.Option(False, "--keep-comments", help="Do not prune comments before reducing."),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Log every oracle call."),
):
    """Reduce a project to a minimal program that still shows the failure."""
    _configure_logging(verbose)
    settings = load_settings().merged(
        algorithm=algorithm,
        workers=workers,
        timeout=timeout,
        fragment_limit=limit,
        passes=passes,
        store=store,
        guarantees=guarantees,
        prune_comments=False if keep_comments else None,
    )
    if settings.algorithm not in ALGORITHMS:
        raise typer.BadParameter(f"Unknown algorithm '{settings.algorithm}'. Choose one of: {', '.join(ALGORITHMS)}.")
    if settings.store not in STORES:
        raise typer.BadParameter(f"Unknown store '{settings.store}'. Choose one of: {', '.join(STORES)}.")

    reducer = Reducer(
        project_path,
        command=command,
        expected=expected,
        settings=settings,
        source=source,
        exclude=exclude,
    )
    try:
        result = reducer.run(output)
    except InitialConditionsError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2)
    except (ExtractionError, GraphConsistencyError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)

    stats = result.statistics
    typer.echo(f"Found a (locally) minimal configuration with {stats.result_size} of {stats.fragments} fragments:")
    typer.echo(result.identifier)
    typer.echo(stats.summary())
    typer.echo(f"Time: {stats.elapsed:.2f}s")

    table = Table(title="Reduced files", show_lines=False)
    table.add_column("File", style="cyan")
    table.add_column("Lines", justify="right", style="green")
    for rel_path, text in sorted(result.files.items()):
        table.add_row(rel_path, str(len(text.splitlines())))
    for rel_path in result.removed_files:
        table.add_row(f"[dim]{rel_path}[/dim]", "removed")
    console.print(table)

    if result.output_dir is not None:
        typer.echo(f"Recreated result in {result.output_dir}")


@app.command("fragments")
def show_fragments(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Python file to split into fragments."),
    width: int = typer.Option(40, "--width", min=10, help="Characters of code shown per fragment."),
):
    """Print the fragment tree of one file."""
    parser = SourceParser()
    try:
        parsed = parser.parse_file(file_path)
    except ExtractionError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    builder = FragmentBuilder()
    builder.build(parsed)

    table = Table(title=f"{file_path.name} ({parser.backend})", show_lines=False)
    table.add_column("Id", justify="right", style="dim")
    table.add_column("Level", justify="right")
    table.add_column("Parent", justify="right", style="dim")
    table.add_column("Kind", style="magenta")
    table.add_column("Code", style="cyan")
    for fragment in sorted(builder.fragments.values(), key=lambda f: f.id):
        parent = "" if fragment.parent is None else str(fragment.parent)
        table.add_row(
            str(fragment.id),
            str(fragment.level),
            parent,
            fragment.kind,
            _shorten(fragment.code, width),
        )
    console.print(table)


@app.command("graph")
def export_graph(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Project to analyse."),
    output: Path = typer.Option(..., "--output", "-o", help="DOT file to write."),
    source: str = typer.Option(".", "--source", "-s", help="Directory (relative to the project) holding reducible files."),
    exclude: List[str] = typer.Option([], "--exclude", "-x", help="Glob of files to skip; repeatable."),
    guarantees: bool = typer.Option(False, "--guarantees", help="Include guarantee edges."),
    keep_comments: bool = typer.Option(False, "--keep-comments", help="Keep comment fragments."),
):
    """Export the fragment dependency graph of a project to Graphviz DOT."""
    settings = load_settings().merged(
        store="memory",
        guarantees=guarantees,
        prune_comments=not keep_comments,
    )
    reducer = Reducer(project_path, settings=settings, source=source, exclude=exclude)
    try:
        store = reducer.prepare()
    except (ExtractionError, GraphConsistencyError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    try:
        export_dot(store, output)
        free = len(store.ids_in_state(FragmentState.FREE))
        edges = len(store.dependency_edges())
    finally:
        store.close()
    typer.echo(f"Exported {free} fragments and {edges} dependencies to {output}")


@app.command("config")
def configure(
    key: Optional[str] = typer.Argument(None, help="Setting to change."),
    value: Optional[str] = typer.Argument(None, help="New value."),
):
    """Show the reducer settings, or persist one of them to config.toml."""
    settings = load_settings()
    if key is None:
        table = Table(title="Reducer settings", show_lines=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for name, current in asdict(settings).items():
            table.add_row(name, str(current))
        console.print(table)
        return

    types = {f.name: type(getattr(ReducerSettings(), f.name)) for f in fields(ReducerSettings)}
    if key not in types:
        raise typer.BadParameter(f"Unknown setting '{key}'. Choose one of: {', '.join(types)}.")
    if value is None:
        typer.echo(f"{key} = {getattr(settings, key)}")
        return
    try:
        if types[key] is bool:
            if value.lower() not in ("true", "false", "1", "0", "yes", "no"):
                raise ValueError(value)
            parsed = value.lower() in ("true", "1", "yes")
        else:
            parsed = types[key](value)
    except ValueError:
        raise typer.BadParameter(f"Invalid value '{value}' for {key}.")
    if not save_reducer_config({key: parsed}):
        typer.echo("Could not write config.toml (is the 'toml' package installed?).", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Saved {key} = {parsed}")


if __name__ == "__main__":
    app()
