from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from surfacemap.catalog.render import NO_DIRECTORY, format_route
from surfacemap.config import HandlerMode, load_settings
from surfacemap.domain.models import SurfaceKind
from surfacemap.errors import RootPathNotFound
from surfacemap.orchestrator.pipeline import run_catalog
from surfacemap.repo.assets import inventory_static_assets


app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()
err_console = Console(stderr=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.command()
def catalog(
    target: str = typer.Argument(..., help="Project directory or compiled assembly (.dll)"),
    assembly: Optional[str] = typer.Option(None, help="Compiled assembly to walk in addition to / instead of sources"),
    assembly_name: Optional[str] = typer.Option(None, help="Assembly name to look for under bin/ (default: .csproj name)"),
    wwwroot: Optional[str] = typer.Option(None, help="Static web root (default: <project>/wwwroot)"),
    handler_mode: Optional[HandlerMode] = typer.Option(None, help="Page handlers: query (one op per verb) or path"),
    format: str = typer.Option("text", help="Output format: text|json"),
    out: Optional[str] = typer.Option(None, help="Output path (default: print to stdout)"),
    summary: bool = typer.Option(False, help="Print a summary table instead of the full report"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    settings = load_settings(handler_mode=handler_mode, assembly_name=assembly_name)
    _setup_logging("DEBUG" if verbose else settings.log_level)

    fmt = format.lower().strip()
    if fmt not in ("text", "json"):
        raise typer.BadParameter("format must be one of: text, json")

    target_path = Path(target).expanduser()
    out_path = Path(out).expanduser() if out else None

    try:
        result = run_catalog(
            target_path,
            assembly=Path(assembly).expanduser() if assembly else None,
            wwwroot=Path(wwwroot).expanduser() if wwwroot else None,
            out=out_path,
            fmt=fmt,
            settings=settings,
        )
    except RootPathNotFound as exc:
        err_console.print(f"[bold red]error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    cat = result.catalog
    if summary:
        table = Table(show_header=True, header_style="bold")
        table.add_column("KIND", no_wrap=True)
        table.add_column("CONTAINER")
        table.add_column("MEMBER")
        table.add_column("VERB", no_wrap=True)
        table.add_column("ROUTE")
        table.add_column("AUTH", no_wrap=True)
        for op in cat.operations:
            table.add_row(
                "page" if op.surface_kind == SurfaceKind.PAGE_HANDLER else "controller",
                op.container_name,
                op.member_name,
                op.http_verb or "-",
                format_route(op),
                op.authorization.summary() if op.authorization else "-",
            )
        console.print(table)
        console.print(f"Warnings: {len(cat.diagnostics)}")
    elif out_path is None:
        console.print(result.report, markup=False, highlight=False, soft_wrap=True, end="")

    if out_path is not None:
        console.print(f"[bold green]Wrote[/bold green] catalog to: {out_path}")
        if cat.diagnostics:
            console.print(f"[yellow]{len(cat.diagnostics)} warning(s)[/yellow], see the report header")


@app.command()
def assets(
    root: str = typer.Argument(..., help="Static web root to list (e.g. wwwroot)"),
) -> None:
    inventory = inventory_static_assets(Path(root).expanduser())
    if not inventory.found:
        console.print(NO_DIRECTORY, markup=False)
        return
    for f in inventory.files:
        console.print(f"- {f}", markup=False, highlight=False, soft_wrap=True)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
