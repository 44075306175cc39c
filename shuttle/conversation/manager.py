"""Conversation state - durable per-conversation state and its persistence."""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from ..errors import ValidationError
from ..memory import DurableStore, WorkingMemory
from ..types import Conversation, ConversationSettings
from ..utils import maybe_await

logger = logging.getLogger(__name__)

INDEX_KEY = "contexts"


def state_key(conversation_id: str) -> str:
    return f"context:{conversation_id}"


def working_memory_key(conversation_id: str) -> str:
    return f"working-memory:{conversation_id}"


@dataclass
class ConversationState:
    id: str
    type: str
    args: dict[str, Any]
    memory: Any = None
    settings: ConversationSettings = field(default_factory=ConversationSettings)
    contexts: list[str] = field(default_factory=list)
    definition: Conversation | None = field(default=None, repr=False, compare=False)

    def link(self, conversation_id: str) -> None:
        if conversation_id != self.id and conversation_id not in self.contexts:
            self.contexts.append(conversation_id)

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "args": self.args,
            "memory": to_jsonable_python(self.memory, fallback=str),
            "settings": dataclasses.asdict(self.settings),
            "contexts": list(self.contexts),
        }


class ConversationManager:
    """Resolves, creates, caches and persists conversation states.

    States are cached per id for the life of the manager. The single-flight
    run registry guarantees that only one run mutates a given state at a time.
    """

    def __init__(
        self,
        store: DurableStore,
        definitions: Iterable[Conversation] = (),
    ) -> None:
        self.store = store
        self._definitions: dict[str, Conversation] = {d.type: d for d in definitions}
        self._states: dict[str, ConversationState] = {}
        self._ids: set[str] = set()

    def register(self, definition: Conversation) -> None:
        self._definitions.setdefault(definition.type, definition)

    def definition(self, type_: str) -> Conversation | None:
        return self._definitions.get(type_)

    @property
    def ids(self) -> set[str]:
        return set(self._ids)

    # -- Identity --

    def parse_args(self, definition: Conversation, args: Any) -> dict[str, Any]:
        if definition.schema is None:
            if args is None:
                return {}
            if isinstance(args, BaseModel):
                return args.model_dump()
            if not isinstance(args, dict):
                raise ValidationError(definition.type, "conversation args must be a mapping")
            return dict(args)
        try:
            parsed = definition.schema.model_validate(args if args is not None else {})
        except PydanticValidationError as e:
            raise ValidationError(definition.type, str(e), e) from e
        return parsed.model_dump()

    def get_id(self, definition: Conversation, args: Any) -> str:
        parsed = self.parse_args(definition, args)
        if definition.key is not None:
            return f"{definition.type}:{definition.key(parsed)}"
        if not parsed:
            return definition.type
        canonical = json.dumps(
            to_jsonable_python(parsed, fallback=str), sort_keys=True, separators=(",", ":")
        )
        return f"{definition.type}:{canonical}"

    # -- Loading --

    async def load_index(self) -> None:
        saved = await self.store.get(INDEX_KEY)
        if saved:
            logger.debug("Restoring %d saved conversation ids", len(saved))
            self._ids.update(saved)

    async def get(self, definition: Conversation, args: Any) -> ConversationState:
        self.register(definition)
        parsed = self.parse_args(definition, args)
        conversation_id = self.get_id(definition, parsed)

        state = self._states.get(conversation_id)
        if state is not None:
            return state

        snapshot = await self.store.get(state_key(conversation_id))
        if snapshot:
            state = self._from_snapshot(definition, snapshot)
            logger.debug("Loaded conversation %s from store", conversation_id)
        else:
            state = await self._create(definition, conversation_id, parsed)
            logger.debug("Created conversation %s", conversation_id)

        # a concurrent get may have finished first while we awaited the store
        if conversation_id in self._states:
            return self._states[conversation_id]
        await self.save(state)
        return state

    async def get_by_id(self, conversation_id: str) -> ConversationState | None:
        if conversation_id in self._states:
            return self._states[conversation_id]
        type_ = conversation_id.split(":", 1)[0]
        definition = self._definitions.get(type_)
        if definition is None:
            return None
        snapshot = await self.store.get(state_key(conversation_id))
        if not snapshot:
            return None
        state = self._from_snapshot(definition, snapshot)
        self._states[state.id] = state
        self._ids.add(state.id)
        return state

    async def list(self) -> list[ConversationState]:
        states = []
        for conversation_id in sorted(self._ids):
            state = await self.get_by_id(conversation_id)
            if state is not None:
                states.append(state)
        return states

    async def _create(
        self, definition: Conversation, conversation_id: str, args: dict[str, Any]
    ) -> ConversationState:
        memory = None
        if definition.create is not None:
            memory = await maybe_await(definition.create(args))
        settings = ConversationSettings(
            max_steps=definition.max_steps,
            max_working_memory_size=definition.max_working_memory_size,
        )
        return ConversationState(
            id=conversation_id,
            type=definition.type,
            args=args,
            memory=memory,
            settings=settings,
            definition=definition,
        )

    @staticmethod
    def _from_snapshot(definition: Conversation, snapshot: dict[str, Any]) -> ConversationState:
        return ConversationState(
            id=snapshot["id"],
            type=snapshot.get("type", definition.type),
            args=snapshot.get("args", {}),
            memory=snapshot.get("memory"),
            settings=ConversationSettings(**snapshot.get("settings", {})),
            contexts=list(snapshot.get("contexts", [])),
            definition=definition,
        )

    # -- Persistence --

    async def save(self, state: ConversationState, working_memory: WorkingMemory | None = None) -> None:
        self._states[state.id] = state
        is_new = state.id not in self._ids
        self._ids.add(state.id)
        await self.store.set(state_key(state.id), state.snapshot())
        if working_memory is not None:
            await self.save_working_memory(state.id, working_memory)
        if is_new:
            await self.store.set(INDEX_KEY, sorted(self._ids))

    async def get_working_memory(self, conversation_id: str) -> WorkingMemory:
        snapshot = await self.store.get(working_memory_key(conversation_id))
        return WorkingMemory.restore(snapshot)

    async def save_working_memory(self, conversation_id: str, working_memory: WorkingMemory) -> None:
        await self.store.set(
            working_memory_key(conversation_id),
            to_jsonable_python(working_memory.snapshot(), fallback=str),
        )
