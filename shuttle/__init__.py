"""
Shuttle - streaming agent run engine
====================================

Turns a model's streamed text into thoughts, tool calls and outputs, runs
the side effects under bounded concurrency and keeps per-conversation
state across runs.

## Map

- `shuttle.engine`: `Engine`, its builder, the run registry and the step orchestrator
- `shuttle.streaming`: incremental `StreamAssembler` for the tag grammar
- `shuttle.core`: bounded-concurrency `TaskRunner`
- `shuttle.conversation` / `shuttle.memory`: durable state, working memory, stores
- `shuttle.providers`: `ScriptedModel` for tests, `OpenAIModel`
- `shuttle.visualization`: rich console output

## Quick start

```python
from shuttle import Conversation, Engine, InputEvent, ScriptedModel, define_tool

engine = (Engine.builder()
    .with_model(ScriptedModel(['<tool_call name="add">{"a": 1, "b": 2}</tool_call>']))
    .with_tools([define_tool("add", "Add numbers", None, lambda args, ctx: args["a"] + args["b"])])
    .with_conversations([Conversation(type="chat", max_steps=2)])
    .build())
await engine.start()
logs = await engine.run("chat", chain=[InputEvent(type="message", content="1+2?")])
```
"""

from .config import EngineConfig
from .conversation import ConversationManager, ConversationState
from .core import TaskOptions, TaskRunner
from .engine import Engine, EngineBuilder, InputChannel, RunRegistry, ServiceContainer, StepOrchestrator
from .errors import (
    ConcurrencyViolation,
    EngineNotStartedError,
    ModelCallError,
    ParseError,
    ReferenceResolutionError,
    RunAbortedError,
    ShuttleError,
    ToolExecutionError,
    ValidationError,
)
from .events import EventBus
from .memory import InMemoryStore, JsonFileStore, WorkingMemory
from .providers import OpenAIModel, ScriptedModel
from .streaming import StreamAssembler
from .tools import define_output, define_tool
from .types import (
    Conversation,
    Extension,
    Input,
    InputEvent,
    Log,
    Output,
    OutputEvent,
    Service,
    StepMarker,
    Thought,
    Tool,
    ToolCall,
    ToolResult,
)

__version__ = "0.1.0"

__all__ = [
    "ConcurrencyViolation",
    "Conversation",
    "ConversationManager",
    "ConversationState",
    "Engine",
    "EngineBuilder",
    "EngineConfig",
    "EngineNotStartedError",
    "EventBus",
    "Extension",
    "InMemoryStore",
    "Input",
    "InputChannel",
    "InputEvent",
    "JsonFileStore",
    "Log",
    "ModelCallError",
    "OpenAIModel",
    "Output",
    "OutputEvent",
    "ParseError",
    "ReferenceResolutionError",
    "RunAbortedError",
    "RunRegistry",
    "ScriptedModel",
    "Service",
    "ServiceContainer",
    "ShuttleError",
    "StepMarker",
    "StepOrchestrator",
    "StreamAssembler",
    "TaskOptions",
    "TaskRunner",
    "Thought",
    "Tool",
    "ToolCall",
    "ToolExecutionError",
    "ToolResult",
    "ValidationError",
    "WorkingMemory",
    "define_output",
    "define_tool",
]
