"""CLI for the npm install proxy."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .backends import default_backends
from .config import ProxySettings, load_settings
from .errors import ProxyError
from .logging_config import setup_logging
from .npm import NpmClient, NpmError, registry_override
from .parallel import TaskResult, format_results, run_bounded
from .registry import Registry, Service

console = Console()


@dataclass
class RegistrationSummary:
    """Outcome of feeding command-line arguments into the registry."""
    total: int = 0
    passthrough: list[str] = field(default_factory=list)
    failed: list[TaskResult] = field(default_factory=list)
    results: list[TaskResult] = field(default_factory=list)


def build_registry() -> Registry:
    registry = Registry()
    for backend in default_backends():
        registry.add_backend(backend)
    return registry


async def register_arguments(registry: Registry, args: list[str], concurrency: int) -> RegistrationSummary:
    """Register every argument; those no backend accepts are passed to npm."""
    results = await run_bounded(args, registry.register, max_concurrent=concurrency)

    summary = RegistrationSummary(results=results)
    for arg, result in zip(args, results):
        if not result.success:
            summary.failed.append(result)
        elif result.result == 0:
            summary.passthrough.append(arg)
        else:
            summary.total += result.result
    return summary


async def run_proxy(args: list[str], settings: ProxySettings, debug: bool = False) -> int:
    """Serve the given sources and run npm against them. Returns the exit code."""
    registry = build_registry()
    service = Service(settings.base_url, log_level=settings.log_level, access_log=settings.access_log)
    registry.service_provider = service

    summary = await register_arguments(registry, args, settings.concurrency)
    if summary.failed:
        console.print(f"[red]{escape(format_results(summary.results))}[/red]", soft_wrap=True)
    console.print(f"Serving {summary.total} packages")

    await service.run(registry)
    try:
        if debug:
            console.print(f"[bold]Registry listening at {service.url}[/bold] [dim](Ctrl+C to stop)[/dim]")
            await service.wait_closed()
            return 0

        if not summary.passthrough:
            console.print("[yellow]npm install skipped[/yellow]")
            return 1

        client = NpmClient(settings.npm_executable)
        async with registry_override(client, service.url):
            await client.install(summary.passthrough)
        console.print("[green]npm done. Shutting down proxy[/green]")
        return 0
    except (NpmError, OSError) as e:
        console.print(f"[red]An error occurred: {escape(str(e))}[/red]", soft_wrap=True)
        return 1
    finally:
        await service.stop()


@click.command(
    context_settings={"ignore_unknown_options": True, "help_option_names": ["--help"]},
)
@click.version_option(version=__version__, prog_name="npm-install-proxy")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--debug", is_flag=True, help="Start the service and listen on localhost until killed")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="YAML settings file")
@click.option("--concurrency", type=int, default=None, help="Max sources inspected at once")
@click.option("--host", default=None, help="Host the registry binds to")
@click.option("--npm", "npm_executable", default=None, help="npm executable to run")
@click.option("--log-level", default=None, help="Logging level (DEBUG, INFO, ...)")
def cli(
    args: tuple[str, ...],
    debug: bool,
    config_path: Optional[str],
    concurrency: Optional[int],
    host: Optional[str],
    npm_executable: Optional[str],
    log_level: Optional[str],
):
    """Serve local npm tarballs and package directories, then run npm against them.

    \b
    ARGS are tarball files, package directories and npm arguments, e.g.
        npm-install-proxy ./deps/*.tgz ./my-lib install --no-audit
    """
    try:
        settings = load_settings(Path(config_path) if config_path else None)
        overrides = {
            "concurrency": concurrency,
            "host": host,
            "npm_executable": npm_executable,
            "log_level": log_level,
        }
        settings = ProxySettings.from_dict(
            {k: v for k, v in overrides.items() if v is not None}, base=settings
        )
        setup_logging(settings.log_level)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(2)

    try:
        code = asyncio.run(run_proxy(list(args), settings, debug=debug))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
        code = 0
    except ProxyError as e:
        console.print(f"[red]Error: {e}[/red]")
        code = 1
    sys.exit(code)


def main(argv=None):
    """Main entry point."""
    cli(argv)


if __name__ == "__main__":
    main()
