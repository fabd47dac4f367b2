"""
WEBCORE - Main CLI Application

Command-line interface for running the API and inspecting the library
registry and configuration.
"""
import asyncio
import json
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Config, get_config
from core.context import AppContext
from core.errors import WebcoreError
from core.manager import LibraryManager
from libraries import default_loaders
from modules import default_modules

app = typer.Typer(
    name="webcore",
    help="webcore - modular web application scaffold",
    add_completion=False
)

console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload")
):
    """Start the API server."""
    config = get_config()
    host = host or config.api.host
    port = port or config.api.port
    console.print(f"[bold]Starting server at {host}:{port}[/bold]")

    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload or config.api.reload,
    )


@app.command()
def libraries():
    """List registered library loaders and the ones the configuration enables."""
    config = get_config()
    manager = LibraryManager(default_loaders())
    planned = {name for name, _ in AppContext(config, manager).planned_libraries()}

    table = Table(title="Library Loaders")
    table.add_column("Name", style="cyan")
    table.add_column("Parameters")
    table.add_column("Loaded at startup", style="green")

    for name in manager.loaders:
        loader = manager.get_loader(name)
        table.add_row(name, loader.params_type.__name__, "yes" if name in planned else "")

    console.print(table)

    missing = sorted(planned - set(manager.loaders))
    for name in missing:
        console.print(f"[red]Configured library has no loader: {name}[/red]")
    if missing:
        raise typer.Exit(1)


@app.command()
def modules():
    """List the modules mounted by the API."""
    config = get_config()
    table = Table(title="Modules")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Mounted at")

    for module in default_modules():
        table.add_row(module.name, module.version, f"{config.api.base_path.rstrip('/')}/{module.name}")

    console.print(table)


@app.command(name="config")
def show_config():
    """Print the effective configuration (secrets excluded)."""
    console.print_json(json.dumps(get_config().to_dict(), default=str))


@app.command()
def check():
    """Load every configured library, report the result and shut them down."""
    config = get_config()
    console.print(Panel.fit(
        f"[bold blue]webcore[/bold blue] ({config.env.value})",
        border_style="blue"
    ))

    try:
        loaded, failures = asyncio.run(_check_libraries(config))
    except WebcoreError as e:
        console.print(f"[red]Startup failed: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Loaded Libraries")
    table.add_column("Name", style="cyan")
    table.add_column("Key")
    for name, key in loaded:
        table.add_row(name, key)
    console.print(table)

    for failure in failures:
        console.print(f"[yellow]Teardown failed: {failure}[/yellow]")
    if failures:
        raise typer.Exit(1)

    console.print("[green]All configured libraries started and stopped cleanly[/green]")


async def _check_libraries(config: Config):
    manager = LibraryManager(default_loaders(), timeout=config.library_timeout or None)
    context = AppContext(config, manager)
    await context.start()
    loaded: List = manager.loaded()
    failures = await context.destroy()
    return loaded, failures


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
