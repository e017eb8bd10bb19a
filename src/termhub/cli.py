"""CLI entry point for termhub."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

import typer
from rich.console import Console
from rich.table import Table

from termhub.config import TermhubConfig

app = typer.Typer(
    name="termhub",
    help="Multiplexed interactive shells on pseudo-terminals.",
    no_args_is_help=True,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


@app.command()
def env(
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Show the environment new terminal sessions will receive."""
    setup_logging(verbose)
    config = TermhubConfig.load(config_file)

    from termhub.pty.environment import ShellEnvironmentResolver

    resolver = ShellEnvironmentResolver(
        login_shell=config.environment.login_shell,
        timeout=config.environment.timeout,
        fallback_paths=config.environment.fallback_paths,
        default_locale=config.environment.default_locale,
        cache=False,
    )
    environment = asyncio.run(resolver.resolve())

    if as_json:
        typer.echo(json.dumps(environment, indent=2, sort_keys=True))
        return

    table = Table(title=f"Environment from {resolver.login_shell}")
    table.add_column("Variable", style="cyan", no_wrap=True)
    table.add_column("Value", overflow="fold")
    for key in sorted(environment):
        table.add_row(key, environment[key])
    console.print(table)


@app.command()
def shells(
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """List shell presets and the default fallback chain."""
    from termhub.pty.shell import SHELL_PRESETS, resolve_shell, shell_candidates

    config = TermhubConfig.load(config_file)
    presets = {**SHELL_PRESETS, **config.shells}

    table = Table(title="Shell presets")
    table.add_column("Name", style="cyan")
    table.add_column("Path")
    table.add_column("Available")
    for name, path in sorted(presets.items()):
        available = resolve_shell(path) is not None
        table.add_row(name, path, "[green]yes[/green]" if available else "[red]no[/red]")
    console.print(table)

    chain = shell_candidates(None, dict(os.environ), config.terminal.default_shell, config.shells)
    console.print("Default chain: " + " -> ".join(chain))


@app.command(name="exec")
def exec_lines(
    lines: list[str] = typer.Argument(help="Command lines to type into the shell."),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory."),
    shell: str | None = typer.Option(None, "--shell", "-s", help="Shell path or preset name."),
    timeout: float = typer.Option(
        60.0, "--timeout", "-t", help="Seconds to wait for the shell to exit."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Run command lines in a fresh terminal session and stream its output."""
    setup_logging(verbose)
    config = TermhubConfig.load(config_file)
    code = asyncio.run(_run_exec(lines, cwd, shell, timeout, config))
    raise typer.Exit(code)


async def _run_exec(
    lines: list[str],
    cwd: str | None,
    shell: str | None,
    timeout: float,
    config: TermhubConfig,
) -> int:
    from termhub.commands import CreateFailed
    from termhub.hub import build_hub
    from termhub.session.wire import EventType, QueueConsumer

    async with build_hub(config) as hub:
        consumer = QueueConsumer()
        with hub.broadcaster.subscribe(consumer):
            result = await hub.commands.create(shell=shell, cwd=cwd)
            if isinstance(result, CreateFailed):
                typer.echo(result.message, err=True)
                return 1

            for line in [*lines, "exit"]:
                hub.commands.write(result.session_id, line + "\n")

            async def _stream() -> int:
                async for event in consumer:
                    if event.session_id != result.session_id:
                        continue
                    if event.type == EventType.DATA:
                        sys.stdout.buffer.write(event.data)
                        sys.stdout.buffer.flush()
                    elif event.type == EventType.EXIT:
                        if event.exit_code is None:
                            return 1
                        # Killed by signal N -> 128 + N, as shells report it.
                        return 128 - event.exit_code if event.exit_code < 0 else event.exit_code
                return 1

            try:
                return await asyncio.wait_for(_stream(), timeout=timeout)
            except asyncio.TimeoutError:
                typer.echo(f"\nShell did not exit within {timeout:.0f}s", err=True)
                return 124


def main() -> None:
    app()


if __name__ == "__main__":
    main()
