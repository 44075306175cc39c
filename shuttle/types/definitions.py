"""Definitions supplied by applications: tools, outputs, inputs, conversations."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from .logs import OutputEvent, ToolCall
from .model import ModelProvider

if TYPE_CHECKING:
    from ..conversation.manager import ConversationState
    from ..memory.working_memory import WorkingMemory

# Hooks and handlers may be plain functions or coroutine functions.
Hook = Callable[..., Any]


@dataclass
class ConversationSettings:
    max_steps: int | None = None
    max_working_memory_size: int | None = None
    model: str | None = None  # name of a model registered on the engine


@dataclass(kw_only=True)
class RunContext:
    conversation: ConversationState
    working_memory: WorkingMemory
    step: int = 0
    contexts: list[ConversationState] = field(default_factory=list)
    signal: asyncio.Event | None = None
    engine: Any = None

    @property
    def memory(self) -> Any:
        return self.conversation.memory

    @property
    def aborted(self) -> bool:
        return bool(self.signal and self.signal.is_set())


@dataclass(kw_only=True)
class ToolContext(RunContext):
    call: ToolCall
    attempt: int = 1


@dataclass(kw_only=True)
class OutputContext(RunContext):
    output: OutputEvent


@dataclass
class Tool:
    name: str
    handler: Hook  # (args, ToolContext) -> result
    description: str = ""
    schema: type[BaseModel] | None = None
    attributes: type[BaseModel] | None = None
    retry: int = 0
    enabled: Hook | None = None  # (RunContext) -> bool, evaluated per step
    install: Hook | None = None  # (engine) -> None


@dataclass
class Output:
    type: str
    description: str = ""
    schema: type[BaseModel] | None = None
    attributes: type[BaseModel] | None = None
    handler: Hook | None = None  # (data, OutputContext) -> result
    run_async: bool = False
    enabled: Hook | None = None
    install: Hook | None = None


@dataclass
class Input:
    type: str
    schema: type[BaseModel] | None = None
    handler: Hook | None = None  # (data, engine) -> data
    subscribe: Hook | None = None  # (InputChannel) -> unsubscribe callable | None
    install: Hook | None = None


@dataclass
class Conversation:
    type: str
    schema: type[BaseModel] | None = None
    key: Callable[[dict[str, Any]], str] | None = None
    create: Hook | None = None  # (args) -> initial memory
    render: Hook | None = None  # (ConversationState) -> str
    instructions: str = ""
    model: ModelProvider | None = None
    max_steps: int | None = None
    max_working_memory_size: int | None = None
    tools: list[Tool] = field(default_factory=list)
    outputs: list[Output] = field(default_factory=list)
    on_step: Hook | None = None  # (RunContext) -> None
    on_run: Hook | None = None  # (RunContext) -> None
    on_error: Hook | None = None  # (error, RunContext) -> bool, truthy recovers
    should_continue: Hook | None = None  # (RunContext) -> bool


@dataclass
class Service:
    """A long-lived dependency set up once per engine, before inputs subscribe."""

    name: str
    register: Hook | None = None  # (ServiceContainer) -> None, binds instances
    boot: Hook | None = None  # (ServiceContainer) -> None, runs after every register


@dataclass
class Extension:
    name: str
    tools: list[Tool] = field(default_factory=list)
    outputs: list[Output] = field(default_factory=list)
    inputs: list[Input] = field(default_factory=list)
    conversations: list[Conversation] = field(default_factory=list)
    services: list[Service] = field(default_factory=list)
    install: Hook | None = None
