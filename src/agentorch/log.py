"""Logging utilities with colored output via Rich."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from agentorch.tasks.model import Task

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    return _verbose


def task_tag(task: Task) -> str:
    """Short label used to prefix per-task log lines."""
    return f"[cyan]\\[{task.id[:8]} {task.agent.value}][/cyan]"


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {msg}")


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {msg}")


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {msg}")


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {msg}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {msg}[/dim]")


def output(task: Task, line: str) -> None:
    """Echo one line of agent output when running verbose."""
    if _verbose:
        console.print(f"{task_tag(task)} [dim]{escape(line)}[/dim]")
