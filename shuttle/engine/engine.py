"""Engine: the public facade that starts runs, accepts inputs and exposes state."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..config import EngineConfig
from ..conversation import ConversationManager, ConversationState
from ..core import TaskRunner
from ..errors import EngineNotStartedError, ShuttleError, ValidationError
from ..events import EventBus
from ..memory import DurableStore, InMemoryStore, WorkingMemory
from ..tools import validate
from ..types import Conversation, InputEvent, Log, ModelProvider, Output, Tool
from ..utils import maybe_await
from .builder import EngineBuilder
from .composition import Registry
from .orchestrator import LogCallback, RunRequest, StepOrchestrator
from .prompt import PromptTemplate, render_prompt
from .registry import RunEntry, RunRegistry
from .services import ServiceContainer, ServiceManager

logger = logging.getLogger(__name__)

FALLBACK_MODELS = ("reasoning", "default")

ConversationRef = Conversation | str


@dataclass
class InputMessage:
    conversation: ConversationRef
    args: Any
    input_type: str
    data: Any
    options: dict[str, Any] = field(default_factory=dict)


class InputChannel:
    """Message-passing boundary between input adapters and the engine.

    Adapters ``publish``; the engine's consumer delivers each message with
    ``Engine.send``. Adapters never call into the engine directly.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[InputMessage] = asyncio.Queue(maxsize)

    async def publish(
        self, conversation: ConversationRef, args: Any, input_type: str, data: Any, **options: Any
    ) -> None:
        await self._queue.put(InputMessage(conversation, args, input_type, data, options))

    def publish_nowait(
        self, conversation: ConversationRef, args: Any, input_type: str, data: Any, **options: Any
    ) -> None:
        self._queue.put_nowait(InputMessage(conversation, args, input_type, data, options))

    async def get(self) -> InputMessage:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published message has been delivered."""
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class Engine:
    """Runs conversations against models, tools and outputs.

    One engine owns one run registry, one task runner and one conversation
    manager. Build it with ``Engine.builder()`` and call ``start`` before
    ``run`` or ``send``.
    """

    def __init__(
        self,
        registry: Registry,
        *,
        store: DurableStore | None = None,
        runner: TaskRunner | None = None,
        bus: EventBus | None = None,
        config: EngineConfig | None = None,
        prompt: PromptTemplate | None = None,
        agent_context: tuple[Conversation, Any] | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or EngineConfig()
        self.store = store or InMemoryStore()
        self.runner = runner or TaskRunner(self.config.max_concurrency)
        self.bus = bus or EventBus()
        self.prompt = prompt or render_prompt
        self.conversations = ConversationManager(self.store, registry.conversations.values())
        self.runs = RunRegistry()
        self.inputs = InputChannel()
        self.agent_context = agent_context
        self.agent_state: ConversationState | None = None
        self._started = False
        self._consumer: asyncio.Task | None = None
        self._deliveries: set[asyncio.Task] = set()
        self._unsubscribes: list[Callable[[], Any]] = []
        self.container = ServiceContainer()
        for name, value in (("engine", self), ("store", self.store), ("bus", self.bus), ("runner", self.runner)):
            self.container.instance(name, value)
        self.service_manager = ServiceManager(self.container, registry.services)

    @staticmethod
    def builder() -> EngineBuilder:
        return EngineBuilder()

    @property
    def started(self) -> bool:
        return self._started

    # -- Lifecycle --

    async def start(self, args: Any = None) -> None:
        if self._started:
            return
        await self.service_manager.boot_all()
        for ext in self.registry.extensions:
            if ext.install is not None:
                await maybe_await(ext.install(self))
        for item in (*self.registry.tools.values(), *self.registry.outputs.values(), *self.registry.inputs.values()):
            if item.install is not None:
                await maybe_await(item.install(self))

        await self.conversations.load_index()
        if self.agent_context is not None:
            definition, default_args = self.agent_context
            self.agent_state = await self.conversations.get(definition, args if args is not None else default_args)

        for inp in self.registry.inputs.values():
            if inp.subscribe is None:
                continue
            unsubscribe = await maybe_await(inp.subscribe(self.inputs))
            if callable(unsubscribe):
                self._unsubscribes.append(unsubscribe)

        self._consumer = asyncio.create_task(self._consume())
        self._started = True
        logger.info(
            "Engine started: %d conversation type(s), %d tool(s), %d input(s)",
            len(self.registry.conversations), len(self.registry.tools), len(self.registry.inputs),
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        for unsubscribe in self._unsubscribes:
            try:
                await maybe_await(unsubscribe())
            except Exception:
                logger.exception("Input unsubscribe failed")
        self._unsubscribes.clear()
        tasks = [t for t in (self._consumer, *self._deliveries) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._consumer = None
        logger.info("Engine stopped")

    async def _consume(self) -> None:
        while True:
            message = await self.inputs.get()
            task = asyncio.create_task(self._deliver(message))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, message: InputMessage) -> None:
        try:
            await self.send(
                message.conversation, message.args, message.input_type, message.data, **message.options
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to deliver %s input", message.input_type)
        finally:
            self.inputs.task_done()

    # -- Runs --

    async def run(
        self,
        conversation: ConversationRef,
        args: Any = None,
        *,
        chain: Iterable[Log] | None = None,
        tools: Iterable[Tool] = (),
        outputs: Iterable[Output] = (),
        contexts: Iterable[tuple[ConversationRef, Any]] = (),
        model: ModelProvider | str | None = None,
        signal: asyncio.Event | None = None,
        on_log: LogCallback | None = None,
        wait_joined: bool = False,
    ) -> list[Log]:
        """Run a conversation, or hand ``chain`` to its active run.

        A joined call returns ``[]`` unless ``wait_joined`` is set, in which
        case it waits for the active run and returns that run's logs.
        """
        if not self._started:
            raise EngineNotStartedError()
        definition = self._definition(conversation)
        state = await self.conversations.get(definition, args)

        ticket = self.runs.start_or_join(state.id, chain or ())
        if ticket.joined:
            logger.debug("Conversation %s already running, events handed over", state.id)
            return await ticket.entry.wait() if wait_joined else []

        try:
            request = await self._request(
                state, definition, ticket.entry, tools, outputs, contexts, model, signal, on_log
            )
        except BaseException as exc:
            self.runs.complete(state.id, ticket.entry)
            RunRegistry.settle(ticket.entry, error=exc)
            raise

        orchestrator = StepOrchestrator(
            request,
            runner=self.runner,
            conversations=self.conversations,
            registry=self.runs,
            bus=self.bus,
            config=self.config,
            prompt=self.prompt,
            engine=self,
        )
        return await orchestrator.run()

    async def send(
        self,
        conversation: ConversationRef,
        args: Any,
        input_type: str,
        data: Any,
        *,
        chain: Iterable[Log] | None = None,
        **kwargs: Any,
    ) -> list[Log]:
        """Validate ``data`` as a ``input_type`` input and run it."""
        inp = self.registry.inputs.get(input_type)
        if inp is None:
            raise ValidationError(input_type, "unknown input type")
        payload = validate(inp.schema, data, input_type)
        if inp.handler is not None:
            payload = await maybe_await(inp.handler(payload, self))
        event = InputEvent(type=input_type, content=data, data=payload)
        return await self.run(conversation, args, chain=[*(chain or ()), event], **kwargs)

    async def _request(
        self,
        state: ConversationState,
        definition: Conversation,
        entry: RunEntry,
        tools: Iterable[Tool],
        outputs: Iterable[Output],
        contexts: Iterable[tuple[ConversationRef, Any]],
        model: ModelProvider | str | None,
        signal: asyncio.Event | None,
        on_log: LogCallback | None,
    ) -> RunRequest:
        working_memory = await self.conversations.get_working_memory(state.id)
        linked: list[ConversationState] = []
        if self.agent_state is not None and self.agent_state.id != state.id:
            linked.append(self.agent_state)
        for ref, ctx_args in contexts:
            linked.append(await self.conversations.get(self._definition(ref), ctx_args))
        for ctx_state in linked:
            state.link(ctx_state.id)

        settings = state.settings
        return RunRequest(
            state=state,
            entry=entry,
            working_memory=working_memory,
            model=self._model(definition, state, model),
            tools={**self.registry.tools, **{t.name: t for t in definition.tools}, **{t.name: t for t in tools}},
            outputs={
                **self.registry.outputs,
                **{o.type: o for o in definition.outputs},
                **{o.type: o for o in outputs},
            },
            contexts=linked,
            max_steps=max(1, settings.max_steps or definition.max_steps or self.config.default_max_steps),
            max_working_memory_size=(
                settings.max_working_memory_size
                or definition.max_working_memory_size
                or self.config.default_max_working_memory_size
            ),
            signal=signal or asyncio.Event(),
            on_log=on_log,
        )

    def _definition(self, conversation: ConversationRef) -> Conversation:
        if isinstance(conversation, Conversation):
            return conversation
        definition = self.registry.conversations.get(conversation) or self.conversations.definition(conversation)
        if definition is None:
            raise ValidationError(conversation, "unknown conversation type")
        return definition

    def _model(self, definition: Conversation, state: ConversationState, model: ModelProvider | str | None) -> ModelProvider:
        if model is not None:
            return self._named_model(model) if isinstance(model, str) else model
        if definition.model is not None:
            return definition.model
        if state.settings.model:
            return self._named_model(state.settings.model)
        for name in FALLBACK_MODELS:
            if name in self.registry.models:
                return self.registry.models[name]
        raise ShuttleError("MODEL_NOT_FOUND", f"No model configured for {state.id}")

    def _named_model(self, name: str) -> ModelProvider:
        found = self.registry.models.get(name)
        if found is None:
            raise ShuttleError("MODEL_NOT_FOUND", f"Unknown model {name!r}")
        return found

    # -- State access --

    async def get_conversation(self, conversation: ConversationRef, args: Any = None) -> ConversationState:
        return await self.conversations.get(self._definition(conversation), args)

    async def get_conversation_by_id(self, conversation_id: str) -> ConversationState | None:
        return await self.conversations.get_by_id(conversation_id)

    async def get_conversations(self) -> list[ConversationState]:
        return await self.conversations.list()

    async def get_working_memory(self, conversation_id: str) -> WorkingMemory:
        """The live working memory while a run is active, else the stored one."""
        entry = self.runs.get(conversation_id)
        if entry is not None and entry.working_memory is not None:
            return entry.working_memory
        return await self.conversations.get_working_memory(conversation_id)

    def is_running(self, conversation_id: str) -> bool:
        return conversation_id in self.runs
