"""Event types published on the engine event bus."""

from __future__ import annotations

from dataclasses import dataclass

from .logs import Log


@dataclass
class RunStartEvent:
    conversation_id: str
    type: str = "run:start"


@dataclass
class RunEndEvent:
    conversation_id: str
    steps: int = 0
    logs: int = 0
    duration_ms: int = 0
    reason: str = "complete"  # "complete" | "max_steps" | "abort" | "error"
    type: str = "run:end"


@dataclass
class StepStartEvent:
    conversation_id: str
    step: int
    max_steps: int = 0
    type: str = "step:start"


@dataclass
class StepEndEvent:
    conversation_id: str
    step: int
    pending_calls: int = 0
    type: str = "step:end"


@dataclass
class LogEvent:
    conversation_id: str
    log: Log
    done: bool = True
    type: str = "log"


@dataclass
class ErrorEvent:
    conversation_id: str
    error: str
    recoverable: bool = False
    type: str = "error"


EngineEvent = (
    RunStartEvent
    | RunEndEvent
    | StepStartEvent
    | StepEndEvent
    | LogEvent
    | ErrorEvent
)
