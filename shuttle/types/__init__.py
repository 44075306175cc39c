"""Core types shared by the engine, re-exported from the sub-modules."""

from .logs import (
    Log, InputEvent, Thought, ToolCall, ToolResult, OutputEvent, StepMarker,
    log_from_dict, new_log_id,
)
from .events import (
    EngineEvent, RunStartEvent, RunEndEvent, StepStartEvent, StepEndEvent, LogEvent, ErrorEvent,
)
from .model import GenerateOptions, GenerateResult, ModelProvider
from .definitions import (
    Conversation, ConversationSettings, Extension, Hook, Input, Output, OutputContext, Service,
    RunContext, Tool, ToolContext,
)

__all__ = [
    "Log", "InputEvent", "Thought", "ToolCall", "ToolResult", "OutputEvent", "StepMarker",
    "log_from_dict", "new_log_id",
    "EngineEvent", "RunStartEvent", "RunEndEvent", "StepStartEvent", "StepEndEvent",
    "LogEvent", "ErrorEvent",
    "GenerateOptions", "GenerateResult", "ModelProvider",
    "Conversation", "ConversationSettings", "Extension", "Hook", "Input", "Output",
    "OutputContext", "RunContext", "Service", "Tool", "ToolContext",
]
