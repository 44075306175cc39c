"""
EngineBuilder - fluent composition of an Engine

Collects models, definitions, extensions and infrastructure, then
composes them into one read-only Registry when ``build`` is called.

Examples:
    >>> engine = (Engine.builder()
    ...     .with_model(ScriptedModel(["<response>hi</response>"]))
    ...     .with_tools([search_tool])
    ...     .with_conversations([chat])
    ...     .build())
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..config import EngineConfig
from ..core import TaskRunner
from ..events import EventBus
from ..memory import DurableStore
from ..types import Conversation, Extension, Input, ModelProvider, Output, Service, Tool
from .composition import compose
from .prompt import PromptTemplate

if TYPE_CHECKING:
    from .engine import Engine


class EngineBuilder:
    def __init__(self) -> None:
        self._models: dict[str, ModelProvider] = {}
        self._tools: list[Tool] = []
        self._outputs: list[Output] = []
        self._inputs: list[Input] = []
        self._conversations: list[Conversation] = []
        self._services: list[Service] = []
        self._extensions: list[Extension] = []
        self.config: dict[str, Any] = {}

    def with_model(self, model: ModelProvider, name: str = "default") -> EngineBuilder:
        """Register a model; ``default`` and ``reasoning`` are the fallback names."""
        self._models[name] = model
        return self

    def with_reasoning_model(self, model: ModelProvider) -> EngineBuilder:
        return self.with_model(model, "reasoning")

    def with_tools(self, tools: list[Tool]) -> EngineBuilder:
        self._tools.extend(tools)
        return self

    def with_outputs(self, outputs: list[Output]) -> EngineBuilder:
        self._outputs.extend(outputs)
        return self

    def with_inputs(self, inputs: list[Input]) -> EngineBuilder:
        self._inputs.extend(inputs)
        return self

    def with_conversations(self, conversations: list[Conversation]) -> EngineBuilder:
        self._conversations.extend(conversations)
        return self

    def with_services(self, services: list[Service]) -> EngineBuilder:
        """Services boot in the order given, before any input subscribes."""
        self._services.extend(services)
        return self

    def with_extensions(self, extensions: list[Extension]) -> EngineBuilder:
        self._extensions.extend(extensions)
        return self

    def with_agent_context(self, definition: Conversation, args: Any = None) -> EngineBuilder:
        """A conversation linked into every run, loaded at ``start``."""
        self.config["agent_context"] = (definition, args)
        return self

    def with_store(self, store: DurableStore) -> EngineBuilder:
        self.config["store"] = store
        return self

    def with_runner(self, runner: TaskRunner) -> EngineBuilder:
        self.config["runner"] = runner
        return self

    def with_event_bus(self, bus: EventBus) -> EngineBuilder:
        self.config["bus"] = bus
        return self

    def with_prompt(self, prompt: PromptTemplate) -> EngineBuilder:
        self.config["prompt"] = prompt
        return self

    def with_config(self, config: EngineConfig | dict[str, Any]) -> EngineBuilder:
        if isinstance(config, dict):
            config = EngineConfig.model_validate(config)
        self.config["config"] = config
        return self

    def build(self) -> Engine:
        from .engine import Engine

        registry = compose(
            models=self._models,
            tools=self._tools,
            outputs=self._outputs,
            inputs=self._inputs,
            conversations=self._conversations,
            services=self._services,
            extensions=self._extensions,
        )
        return Engine(registry, **self.config)
