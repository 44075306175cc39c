"""Working memory - the ordered log buffer of one conversation's runs."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, TypeVar

from ..types import (
    InputEvent,
    Log,
    OutputEvent,
    StepMarker,
    Thought,
    ToolCall,
    ToolResult,
    log_from_dict,
)

L = TypeVar("L")


class WorkingMemory:
    """Ordered logs plus ``inputs``: external events not yet folded into a step."""

    def __init__(self, logs: Iterable[Log] = (), inputs: Iterable[InputEvent] = ()) -> None:
        self.logs: list[Log] = list(logs)
        self.inputs: list[InputEvent] = list(inputs)
        self._index: dict[str, Log] = {log.id: log for log in self.logs}

    def __len__(self) -> int:
        return len(self.logs)

    def __iter__(self) -> Iterator[Log]:
        return iter(self.logs)

    def push(self, log: Log) -> Log:
        if log.id in self._index:
            raise ValueError(f"Log {log.id} already in working memory")
        self.logs.append(log)
        self._index[log.id] = log
        return log

    def push_input(self, event: InputEvent) -> None:
        self.inputs.append(event)

    def fold_inputs(self) -> list[InputEvent]:
        """Move pending inputs into the log sequence, in arrival order."""
        folded, self.inputs = self.inputs, []
        for event in folded:
            self.push(event)
        return folded

    def find(self, log_id: str) -> Log | None:
        return self._index.get(log_id)

    def unprocessed(self) -> list[Log]:
        return [log for log in self.logs if not log.processed]

    @staticmethod
    def mark_processed(logs: Iterable[Log]) -> None:
        for log in logs:
            log.processed = True

    def of_kind(self, cls: type[L]) -> list[L]:
        return [log for log in self.logs if isinstance(log, cls)]

    @property
    def input_events(self) -> list[InputEvent]:
        return self.of_kind(InputEvent)

    @property
    def thoughts(self) -> list[Thought]:
        return self.of_kind(Thought)

    @property
    def calls(self) -> list[ToolCall]:
        return self.of_kind(ToolCall)

    @property
    def results(self) -> list[ToolResult]:
        return self.of_kind(ToolResult)

    @property
    def outputs(self) -> list[OutputEvent]:
        return self.of_kind(OutputEvent)

    @property
    def steps(self) -> list[StepMarker]:
        return self.of_kind(StepMarker)

    def window(self, size: int | None) -> list[Log]:
        if size is None or size >= len(self.logs):
            return list(self.logs)
        return self.logs[-size:] if size > 0 else []

    def snapshot(self) -> dict[str, Any]:
        return {
            "logs": [log.to_dict() for log in self.logs],
            "inputs": [event.to_dict() for event in self.inputs],
        }

    @classmethod
    def restore(cls, snapshot: dict[str, Any] | None) -> WorkingMemory:
        if not snapshot:
            return cls()
        return cls(
            logs=[log_from_dict(raw) for raw in snapshot.get("logs", [])],
            inputs=[log_from_dict(raw) for raw in snapshot.get("inputs", [])],  # type: ignore[misc]
        )
