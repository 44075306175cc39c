"""
Rich console output for engine runs

RichRunPrinter subscribes to an EventBus and prints a tree per run
(steps, thoughts, tool calls and results, outputs) plus a summary table
when the run ends. install_rich_logging routes stdlib logging through rich.
"""

from __future__ import annotations

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from ..events import EventBus
from ..types import (
    EngineEvent,
    ErrorEvent,
    InputEvent,
    LogEvent,
    OutputEvent,
    RunEndEvent,
    RunStartEvent,
    StepEndEvent,
    StepMarker,
    StepStartEvent,
    Thought,
    ToolCall,
    ToolResult,
)


def _clip(text: Any, limit: int = 120) -> str:
    s = str(text).replace("\n", " ")
    return escape(s if len(s) <= limit else s[: limit - 3] + "...")


class RichRunPrinter:
    """Renders run events as a rich tree, one per conversation run."""

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console()
        self.verbose = verbose
        self._trees: dict[str, Tree] = {}
        self._steps: dict[str, Tree] = {}
        self.stats = {"runs": 0, "steps": 0, "tool_calls": 0, "errors": 0}

    def attach(self, bus: EventBus) -> None:
        bus.on_all(self.handle)

    def handle(self, event: EngineEvent) -> None:
        match event:
            case RunStartEvent():
                self.stats["runs"] += 1
                self._trees[event.conversation_id] = Tree(
                    f"[bold blue]Run[/bold blue] {escape(event.conversation_id)}"
                )
            case StepStartEvent():
                self.stats["steps"] += 1
                tree = self._tree(event.conversation_id)
                self._steps[event.conversation_id] = tree.add(
                    f"[cyan]Step {event.step}/{event.max_steps}[/cyan]"
                )
            case StepEndEvent():
                if self.verbose:
                    self._node(event.conversation_id).add(f"[dim]{event.pending_calls} call(s) settled[/dim]")
            case LogEvent():
                self._log(event)
            case ErrorEvent():
                self.stats["errors"] += 1
                self._node(event.conversation_id).add(f"[red]error[/red] {_clip(event.error)}")
            case RunEndEvent():
                self._finish(event)

    def _tree(self, conversation_id: str) -> Tree:
        return self._trees.setdefault(conversation_id, Tree(escape(conversation_id)))

    def _node(self, conversation_id: str) -> Tree:
        return self._steps.get(conversation_id) or self._tree(conversation_id)

    def _log(self, event: LogEvent) -> None:
        log = event.log
        node = self._node(event.conversation_id)
        match log:
            case InputEvent():
                self._tree(event.conversation_id).add(
                    f"[green]input[/green] {escape(log.type)}: {_clip(log.content if log.content is not None else log.data)}"
                )
            case Thought():
                node.add(f"[magenta]thought[/magenta] {_clip(log.content)}")
            case ToolCall():
                self.stats["tool_calls"] += 1
                node.add(f"[yellow]call[/yellow] {escape(log.name)} {_clip(log.content.strip())}")
            case ToolResult():
                if log.success:
                    node.add(f"[green]result[/green] {escape(log.name)} -> {_clip(log.data)}")
                else:
                    node.add(f"[red]failed[/red] {escape(log.name)} after {log.attempts} attempt(s): {_clip(log.error)}")
            case OutputEvent():
                status = f"[red]{_clip(log.error)}[/red]" if log.error else _clip(log.data)
                node.add(f"[blue]output[/blue] {escape(log.type)} {status}")
            case StepMarker():
                pass

    def _finish(self, event: RunEndEvent) -> None:
        tree = self._trees.pop(event.conversation_id, None)
        self._steps.pop(event.conversation_id, None)
        if tree is not None:
            self.console.print(tree)
        table = Table(title="Run summary", show_header=False)
        table.add_column("key", style="bold")
        table.add_column("value")
        table.add_row("conversation", escape(event.conversation_id))
        table.add_row("reason", event.reason)
        table.add_row("steps", str(event.steps))
        table.add_row("logs", str(event.logs))
        table.add_row("duration", f"{event.duration_ms} ms")
        self.console.print(table)


def install_rich_logging(level: int | str = logging.INFO, logger_name: str = "shuttle") -> logging.Handler:
    """Attach a RichHandler to the package logger and return it."""
    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    target = logging.getLogger(logger_name)
    target.addHandler(handler)
    target.setLevel(level)
    return handler
