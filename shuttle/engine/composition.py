"""Definition composition - merges extensions into one read-only registry."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TypeVar

from ..types import Conversation, Extension, Input, ModelProvider, Output, Service, Tool

logger = logging.getLogger(__name__)

D = TypeVar("D")


def _frozen() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class Registry:
    """Everything an engine knows about, fixed before it starts."""

    models: Mapping[str, ModelProvider] = field(default_factory=_frozen)
    tools: Mapping[str, Tool] = field(default_factory=_frozen)
    outputs: Mapping[str, Output] = field(default_factory=_frozen)
    inputs: Mapping[str, Input] = field(default_factory=_frozen)
    conversations: Mapping[str, Conversation] = field(default_factory=_frozen)
    services: tuple[Service, ...] = ()
    extensions: tuple[Extension, ...] = ()


def _index(kind: str, items: Iterable[D], key: str) -> Mapping[str, D]:
    merged: dict[str, D] = {}
    for item in items:
        name = getattr(item, key)
        existing = merged.get(name)
        if existing is not None and existing is not item:
            raise ValueError(f"Duplicate {kind} {name!r}")
        merged[name] = item
    return MappingProxyType(merged)


def compose(
    *,
    models: Mapping[str, ModelProvider] | None = None,
    tools: Iterable[Tool] = (),
    outputs: Iterable[Output] = (),
    inputs: Iterable[Input] = (),
    conversations: Iterable[Conversation] = (),
    services: Iterable[Service] = (),
    extensions: Iterable[Extension] = (),
) -> Registry:
    """Merge direct definitions with those contributed by extensions.

    Names must be unique per kind; the same object registered twice is fine.
    """
    extensions = tuple(extensions)
    all_tools = list(tools)
    all_outputs = list(outputs)
    all_inputs = list(inputs)
    all_conversations = list(conversations)
    all_services = list(services)
    for ext in extensions:
        all_tools += ext.tools
        all_outputs += ext.outputs
        all_inputs += ext.inputs
        all_conversations += ext.conversations
        all_services += ext.services

    registry = Registry(
        models=MappingProxyType(dict(models or {})),
        tools=_index("tool", all_tools, "name"),
        outputs=_index("output", all_outputs, "type"),
        inputs=_index("input", all_inputs, "type"),
        conversations=_index("conversation", all_conversations, "type"),
        services=tuple(_index("service", all_services, "name").values()),
        extensions=extensions,
    )
    logger.debug(
        "Composed registry: %d tools, %d outputs, %d inputs, %d conversations, %d services",
        len(registry.tools), len(registry.outputs), len(registry.inputs), len(registry.conversations),
        len(registry.services),
    )
    return registry
