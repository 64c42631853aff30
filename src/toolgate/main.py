from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .cache import SchemaCache
from .catalog import AvailabilityChecker, load_and_check_tools, load_catalog
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, setup_logging, stderr_console
from .core.result import Err, ExecutionFailure, ExecutionTimeout
from .discovery import DiscoveryEngine, build_oracle
from .gateway import build_gateway

app = typer.Typer(help="toolgate: allowlisted shell access with guided tool discovery.")


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to a toolgate config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    loaded_config, meta = load_config(config_path=config)
    logger = setup_logging(level=loaded_config.log_level, verbose=verbose)
    ctx.obj = AppState(config=loaded_config, config_meta=meta, logger=logger)

    if meta.error:
        stderr_console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {meta.path}:\n{meta.error}\n\n"
                f"[yellow]Using default settings.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded configuration from %s (env overrides: %s)",
            meta.path,
            sorted(meta.env_overrides),
        )


def _print_observed(command: str, is_discovery: bool) -> None:
    tag = "discover" if is_discovery else "run"
    stderr_console.print(f"[dim]{tag}[/dim] {escape(command)}", highlight=False)


def _error(message: object) -> None:
    stderr_console.print(str(message), style="red", markup=False, highlight=False)


@app.command("run")
def run_command(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Command line to run through the gateway."),
    request: str = typer.Option("", "--request", "-r", help="What you are trying to achieve."),
    trace: bool = typer.Option(False, "--trace", help="Print every spawned command."),
    check: bool = typer.Option(True, "--check/--no-check", help="Run tool availability checks."),
) -> None:
    """Validate and run a command; external tools are explored first."""
    state: AppState = ctx.obj

    async def _run() -> int:
        built = await build_gateway(state.config, check_availability=check)
        if isinstance(built, Err):
            _error(built.error)
            return 1
        gateway = built.value
        observer = _print_observed if trace else None
        result = await gateway.invoke({"command": command}, observer=observer, user_request=request)
        if isinstance(result, Err):
            error = result.error
            if isinstance(error, (ExecutionTimeout, ExecutionFailure)) and error.output:
                console.out(error.output, highlight=False)
            _error(error)
            return 1
        console.out(result.value, highlight=False)
        return 0

    code = asyncio.run(_run())
    if code:
        raise typer.Exit(code=code)


@app.command("tools")
def list_tools(ctx: typer.Context) -> None:
    """Show configured external tools and whether they are usable."""
    state: AppState = ctx.obj
    loaded = load_catalog(state.config)
    if isinstance(loaded, Err):
        _error(loaded.error)
        raise typer.Exit(code=1)
    catalog = loaded.value
    if not catalog.tools:
        console.print(f"No external tools configured in {state.config.paths.tools_file}")
        return

    checker = AvailabilityChecker(timeout=state.config.shell.check_timeout)
    _, statuses = asyncio.run(load_and_check_tools(catalog, checker))

    table = Table(title="External tools", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Command", style="white")
    table.add_column("Status", no_wrap=True)
    table.add_column("Message", style="dim")

    for tool in catalog.tools:
        status = statuses[tool.name]
        label = "[green]available[/green]" if status.available else "[red]unavailable[/red]"
        table.add_row(tool.name, tool.shell_command or tool.access.type, label, status.message)
    console.print(table)


@app.command("discover")
def discover(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Base command of a configured external tool."),
    request: str = typer.Option("", "--request", "-r", help="What you are trying to achieve."),
    simple: bool = typer.Option(False, "--simple", help="Skip the oracle and probe help only."),
) -> None:
    """Explore an external tool and print the discovery transcript."""
    state: AppState = ctx.obj
    loaded = load_catalog(state.config)
    if isinstance(loaded, Err):
        _error(loaded.error)
        raise typer.Exit(code=1)

    tool = loaded.value.lookup(command)
    if tool is None:
        _error(f"not a configured external tool: {command}")
        raise typer.Exit(code=1)

    engine = DiscoveryEngine(
        oracle=None if simple else build_oracle(state.config.oracle),
        config=state.config.discovery,
        cache=SchemaCache(state.config.paths.cache_dir),
    )
    result = asyncio.run(engine.discover(tool, request))
    console.out(result.text, highlight=False)
    state.logger.debug(
        "Discovery of %s ended: %s after %d steps",
        command,
        result.outcome.value,
        len(result.steps),
    )


@app.command("cache-list")
def cache_list(ctx: typer.Context) -> None:
    """List cached tool schemas, expired ones included."""
    state: AppState = ctx.obj
    cache = SchemaCache(state.config.paths.cache_dir)
    entries = cache.list_all()
    if not entries:
        console.print("Schema cache is empty.")
        return

    table = Table(title="Schema cache", box=box.SIMPLE, expand=True)
    table.add_column("Command", style="cyan", no_wrap=True)
    table.add_column("Generated", style="white")
    table.add_column("State", no_wrap=True)
    for entry in entries:
        state_label = "[yellow]expired[/yellow]" if cache.is_expired(entry) else "[green]fresh[/green]"
        table.add_row(entry.command, entry.generated_at.isoformat(timespec="seconds"), state_label)
    console.print(table)


@app.command("cache-clear")
def cache_clear(ctx: typer.Context) -> None:
    """Remove every cached tool schema."""
    state: AppState = ctx.obj
    result = SchemaCache(state.config.paths.cache_dir).clear()
    if isinstance(result, Err):
        _error(result.error)
        raise typer.Exit(code=1)
    console.print(f"Removed {result.value} cached schema(s).")


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    config = state.config
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for key, value in config.model_dump().items():
        table.add_row(key, str(value))

    console.print(table)

    meta_lines = [
        f"Path: {meta.path}",
        "File loaded: yes" if meta.file_loaded else "File loaded: no (using defaults + env)",
    ]

    if meta.env_overrides:
        meta_lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))

    console.print(Panel("\n".join(meta_lines), title="Config source", box=box.SIMPLE))


@app.command("version")
def show_version() -> None:
    """Print the toolgate version."""
    console.print(__version__)


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
