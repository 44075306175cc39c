"""Step prompt - collects what a step shows the model and renders it as text."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import assert_never

from pydantic_core import to_jsonable_python

from ..types import InputEvent, Log, Output, OutputEvent, StepMarker, Thought, Tool, ToolCall, ToolResult

_INSTRUCTIONS = """\
You are working step by step. Think inside <think></think>. Call a tool with
<tool_call name="TOOL_NAME">{"arg": "value"}</tool_call>; arguments may use
references such as {{calls[0].field}} to earlier calls of this step or
{{results[0]}} to earlier results. Produce outputs with
<output type="OUTPUT_TYPE">content</output>. Put your final answer in
<response></response>."""


@dataclass
class PromptData:
    step: int
    max_steps: int
    instructions: str = ""
    contexts: list[str] = field(default_factory=list)
    tools: list[Tool] = field(default_factory=list)
    outputs: list[Output] = field(default_factory=list)
    history: list[Log] = field(default_factory=list)
    updates: list[Log] = field(default_factory=list)


PromptTemplate = Callable[[PromptData], str]


def _json(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(to_jsonable_python(value, fallback=str), ensure_ascii=False)


def format_log(log: Log) -> str | None:
    match log:
        case InputEvent():
            return f'<input type="{log.type}">{_json(log.content if log.content is not None else log.data)}</input>'
        case Thought():
            return f"<think>{log.content}</think>"
        case ToolCall():
            return f'<tool_call id="{log.id}" name="{log.name}">{log.content.strip()}</tool_call>'
        case ToolResult():
            body = _json(log.data) if log.success else f"error: {log.error}"
            return f'<tool_result call_id="{log.call_id}" name="{log.name}">{body}</tool_result>'
        case OutputEvent():
            return f'<output type="{log.type}">{log.content.strip()}</output>'
        case StepMarker():
            return None
        case _:
            assert_never(log)


def _tool(tool: Tool) -> str:
    schema = _json(tool.schema.model_json_schema()) if tool.schema else "{}"
    return f'<tool name="{tool.name}" description="{tool.description}">{schema}</tool>'


def _output(output: Output) -> str:
    schema = _json(output.schema.model_json_schema()) if output.schema else "text"
    return f'<output_type type="{output.type}" description="{output.description}">{schema}</output_type>'


def _section(tag: str, lines: list[str]) -> str:
    body = "\n".join(line for line in lines if line)
    return f"<{tag}>\n{body}\n</{tag}>" if body else f"<{tag}/>"


def render_prompt(data: PromptData) -> str:
    """Default template: instructions, contexts, capabilities, then logs."""
    parts = [_INSTRUCTIONS]
    if data.instructions:
        parts.append(data.instructions)
    parts += [
        _section("contexts", data.contexts),
        _section("tools", [_tool(t) for t in data.tools]),
        _section("outputs", [_output(o) for o in data.outputs]),
        _section("history", [format_log(log) or "" for log in data.history]),
        _section("updates", [format_log(log) or "" for log in data.updates]),
        f"Step {data.step} of {data.max_steps}.",
    ]
    return "\n\n".join(parts)
