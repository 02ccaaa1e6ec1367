"""spawner CLI — run shell commands through the spawner.

`spawner run -- sleep 5` forks a child that runs the command.
`spawner config` shows the defaults read from SPAWNER_* variables.
"""

from __future__ import annotations

import functools
import logging
import subprocess
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from spawner.children import is_alive
from spawner.config import settings
from spawner.dispatch import Spawner
from spawner.exceptions import SpawnFailure
from spawner.types import HandleKind, Strategy

console = Console()

app = typer.Typer(
    name="spawner",
    help="spawner -- run work inline, in a forked child, or in a thread.",
    no_args_is_help=True,
)


@app.callback()
def _configure(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Logging level"),
):
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@app.command("run")
def run(
    command: List[str] = typer.Argument(help="Command to run (put it after --)"),
    strategy: Optional[Strategy] = typer.Option(None, "--strategy", "-s", help="inline, process or task"),
    priority: Optional[int] = typer.Option(None, "--priority", "-p", help="Niceness hint"),
    kill: Optional[bool] = typer.Option(None, "--kill/--no-kill", help="Terminate the child when spawner exits"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Process name shown in ps"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the command to finish"),
):
    """Run a shell command as a unit of work."""
    spawner = Spawner.get()
    overrides = {
        key: value
        for key, value in {
            "strategy": strategy,
            "priority": priority,
            "kill_on_exit": kill,
            "display_name": name,
        }.items()
        if value is not None
    }
    work = functools.partial(subprocess.run, command, check=True)

    try:
        handle = spawner.spawn(work, **overrides)
    except SpawnFailure as e:
        console.print(f"[red]Spawn failed: {e}[/red]")
        raise typer.Exit(code=1)
    except subprocess.CalledProcessError as e:
        # inline work runs in this process and raises straight through
        console.print(f"[red]failed with exit code {e.returncode}[/red]")
        raise typer.Exit(code=e.returncode)

    if handle.kind == HandleKind.PROCESS:
        console.print(f"[cyan]child pid {handle.pid}[/cyan]")
    elif handle.kind == HandleKind.TASK:
        console.print(f"[cyan]task {handle.ref.name}[/cyan]")

    if wait:
        [code] = spawner.wait(handle)
        if code:
            console.print(f"[red]failed with exit code {code}[/red]")
            raise typer.Exit(code=code if code > 0 else 1)
        console.print("[green]done[/green]")


@app.command("config")
def config():
    """Show the effective spawn defaults."""
    defaults = Spawner.get().defaults

    table = Table(title="Spawn defaults")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="white")
    for key, value in defaults.model_dump(mode="json").items():
        table.add_row(key, "-" if value is None else str(value))
    table.add_row("fork", str(settings.fork))
    table.add_row("task_priority_inverted", str(settings.task_priority_inverted))

    console.print(table)


@app.command("alive")
def alive(pid: int = typer.Argument(help="Process id to check")):
    """Report whether a process is still running."""
    if is_alive(pid):
        console.print(f"[green]{pid} is alive[/green]")
    else:
        console.print(f"[red]{pid} is not running[/red]")
        raise typer.Exit(code=1)


@app.command("version")
def version_cmd():
    """Show spawner version."""
    from spawner import __version__
    console.print(f"spawner v{__version__}")
