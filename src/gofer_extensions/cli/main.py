import asyncio
import json
import signal
from pathlib import Path

import click
import structlog
from rich.console import Console
from rich.table import Table

from gofer_extensions import __version__
from gofer_extensions.config.system import ConfigError, load_system_config

console = Console()


def _run_async(coro):
    """Run an async function from sync Click commands."""
    return asyncio.run(coro)


def _print_config_error(e: ConfigError) -> None:
    console.print("[red]Invalid extension configuration:[/red]")
    for problem in e.problems:
        console.print(f"  - {problem}")


@click.group()
@click.version_option(version=__version__, prog_name="gofer-extension")
def cli() -> None:
    """Gofer extensions — start pipeline runs from schedules and webhooks."""


@cli.command()
@click.argument("source")
def run(source: str) -> None:
    """Run the extension backed by event source SOURCE until shut down."""
    from gofer_extensions.api.host_client import HostClient
    from gofer_extensions.engine.harness import ExtensionHarness, StartupError
    from gofer_extensions.logging_config import configure_logging
    from gofer_extensions.plugins.registry import SourceRegistry

    try:
        config = load_system_config()
    except ConfigError as e:
        _print_config_error(e)
        raise SystemExit(1)

    configure_logging(config.log_level, config.extension_id)
    log = structlog.get_logger()

    registry = SourceRegistry()
    registry.discover()
    if source not in registry.sources:
        console.print(f"[red]Unknown event source '{source}'.[/red] Known: {', '.join(registry.names())}")
        raise SystemExit(1)

    async def run_extension() -> None:
        host = HostClient.from_config(config)
        try:
            event_source = registry.build(source, config, host)
        except ConfigError as e:
            await host.close()
            for problem in e.problems:
                log.critical("invalid extension configuration", problem=problem)
            raise SystemExit(1)

        harness = ExtensionHarness(config, event_source, host=host)

        def handle_signal() -> None:
            harness.request_shutdown()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_signal)

        try:
            await harness.run()
        except StartupError as e:
            log.critical("extension failed to start", error=str(e))
            raise SystemExit(1)

    _run_async(run_extension())


@cli.command()
def sources() -> None:
    """List available event sources."""
    from gofer_extensions.plugins.registry import SourceRegistry

    registry = SourceRegistry()
    registry.discover()

    table = Table(title="Event Sources")
    table.add_column("Name", style="cyan")
    table.add_column("Origin", style="magenta")
    for name in registry.names():
        table.add_row(name, registry.origins.get(name, ""))
    console.print(table)


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
def openapi(path: Path) -> None:
    """Write the lifecycle API's OpenAPI document to PATH."""
    from gofer_extensions.api.app import openapi_document

    path.write_text(json.dumps(openapi_document(), indent=2))
    console.print(f"[green]Wrote OpenAPI document to {path}[/green]")


@cli.command("check-config")
def check_config() -> None:
    """Validate the extension environment and show the non-secret config."""
    try:
        config = load_system_config()
    except ConfigError as e:
        _print_config_error(e)
        raise SystemExit(1)

    table = Table(title=f"Extension: {config.extension_id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in config.public_view().items():
        if isinstance(value, list):
            value = ", ".join(value) or "-"
        table.add_row(key, str(value))
    console.print(table)
    console.print("[green]Configuration valid.[/green]")


if __name__ == "__main__":
    cli()
