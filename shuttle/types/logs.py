"""Log types - the records a run appends to working memory."""

from __future__ import annotations

import dataclasses
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal


def new_log_id() -> str:
    return uuid.uuid4().hex


@dataclass(kw_only=True)
class _LogBase:
    id: str = field(default_factory=new_log_id)
    processed: bool = False
    timestamp: float = field(default_factory=time.time)
    step: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(kw_only=True)
class InputEvent(_LogBase):
    type: str
    content: Any = None
    data: Any = None
    kind: Literal["input"] = "input"


@dataclass(kw_only=True)
class Thought(_LogBase):
    content: str
    kind: Literal["thought"] = "thought"


@dataclass(kw_only=True)
class ToolCall(_LogBase):
    name: str
    content: str = ""
    data: Any = None
    params: dict[str, str] = field(default_factory=dict)
    kind: Literal["tool_call"] = "tool_call"


@dataclass(kw_only=True)
class ToolResult(_LogBase):
    call_id: str
    name: str
    data: Any = None
    success: bool = True
    error: str | None = None
    attempts: int = 0
    kind: Literal["tool_result"] = "tool_result"


@dataclass(kw_only=True)
class OutputEvent(_LogBase):
    type: str
    content: str = ""
    data: Any = None
    params: dict[str, str] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    kind: Literal["output"] = "output"


@dataclass(kw_only=True)
class StepMarker(_LogBase):
    index: int
    prompt: str = ""
    response: str = ""
    kind: Literal["step"] = "step"


Log = InputEvent | Thought | ToolCall | ToolResult | OutputEvent | StepMarker

_KINDS: dict[str, type] = {
    "input": InputEvent,
    "thought": Thought,
    "tool_call": ToolCall,
    "tool_result": ToolResult,
    "output": OutputEvent,
    "step": StepMarker,
}


def log_from_dict(raw: dict[str, Any]) -> Log:
    kind = raw.get("kind")
    cls = _KINDS.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"Unknown log kind: {kind!r}")
    names = {f.name for f in dataclasses.fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in names})
