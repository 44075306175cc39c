"""
Step Orchestrator - the per-run control loop

One orchestrator drives one run of one conversation:

    STARTING -> STEPPING(1) -> ... -> STEPPING(k) -> COMPLETING -> DONE
                     |                                  ^
                     +-----------> ERRORING ------------+

Each step folds pending inputs, renders a prompt, streams the model
response through the assembler inside a scheduler task, dispatches the
completed elements, and waits for the tool work they started before
deciding whether to go on.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from ..config import EngineConfig
from ..conversation import ConversationManager, ConversationState
from ..core import TaskContext, TaskOptions, TaskRunner
from ..errors import ModelCallError, RunAbortedError, ShuttleError, ToolExecutionError, ValidationError
from ..events import EventBus
from ..memory import WorkingMemory
from ..streaming import TEXT, Element, StreamAssembler
from ..tools import PydanticSchema, parse_content, validate
from ..types import (
    EngineEvent,
    ErrorEvent,
    GenerateOptions,
    InputEvent,
    Log,
    LogEvent,
    ModelProvider,
    Output,
    OutputContext,
    OutputEvent,
    RunContext,
    RunEndEvent,
    RunStartEvent,
    StepEndEvent,
    StepMarker,
    StepStartEvent,
    Thought,
    Tool,
    ToolCall,
    ToolContext,
    ToolResult,
)
from ..utils import maybe_await
from .prompt import PromptData, PromptTemplate, render_prompt
from .references import ReferenceResolver
from .registry import RunEntry, RunRegistry

logger = logging.getLogger(__name__)

TOOL_TAG = "tool_call"
OUTPUT_TAG = "output"
THOUGHT_TAGS = frozenset({TEXT, "think", "response"})

LogCallback = Callable[[Log, bool], Any]

D = TypeVar("D", Tool, Output)


class RunPhase(StrEnum):
    STARTING = "starting"
    STEPPING = "stepping"
    ERRORING = "erroring"
    COMPLETING = "completing"
    DONE = "done"


@dataclass
class RunRequest:
    """Everything the engine resolved before handing a run to the orchestrator."""

    state: ConversationState
    entry: RunEntry
    working_memory: WorkingMemory
    model: ModelProvider
    tools: Mapping[str, Tool] = field(default_factory=dict)
    outputs: Mapping[str, Output] = field(default_factory=dict)
    contexts: list[ConversationState] = field(default_factory=list)
    max_steps: int = 5
    max_working_memory_size: int | None = None
    signal: asyncio.Event = field(default_factory=asyncio.Event)
    on_log: LogCallback | None = None


@dataclass(eq=False)
class _Step:
    marker: StepMarker
    context: RunContext
    tools: dict[str, Tool]
    outputs: dict[str, Output]
    calls: list[asyncio.Future] = field(default_factory=list)
    tasks: list[asyncio.Task] = field(default_factory=list)
    produced: list[Log] = field(default_factory=list)
    fragments: list[str] = field(default_factory=list)
    response: str = ""


def _retryable(exc: Exception) -> bool:
    return isinstance(exc, ModelCallError) and not exc.partial


class StepOrchestrator:
    def __init__(
        self,
        request: RunRequest,
        *,
        runner: TaskRunner,
        conversations: ConversationManager,
        registry: RunRegistry,
        bus: EventBus | None = None,
        config: EngineConfig | None = None,
        prompt: PromptTemplate | None = None,
        engine: Any = None,
    ) -> None:
        self.request = request
        self.runner = runner
        self.conversations = conversations
        self.registry = registry
        self.bus = bus
        self.config = config or EngineConfig()
        self.prompt = prompt or render_prompt
        self.engine = engine
        self.phase = RunPhase.STARTING
        self.step = 0
        self._start_index = 0
        self._started = 0.0

    @property
    def conversation_id(self) -> str:
        return self.request.state.id

    @property
    def wm(self) -> WorkingMemory:
        return self.request.working_memory

    @property
    def entry(self) -> RunEntry:
        return self.request.entry

    @property
    def signal(self) -> asyncio.Event:
        return self.request.signal

    @property
    def aborted(self) -> bool:
        return self.signal.is_set()

    async def run(self) -> list[Log]:
        """Drive the run to completion and return the logs it appended."""
        self._started = time.monotonic()
        try:
            await self._start()
            reason = await self._loop()
            return await self._complete(reason)
        except BaseException as exc:
            self._release(exc)
            raise

    # -- Phases --

    async def _start(self) -> None:
        self.entry.working_memory = self.wm
        self._start_index = len(self.wm.logs)
        logger.info("Run started for %s (max_steps=%d)", self.conversation_id, self.request.max_steps)
        await self._emit(RunStartEvent(conversation_id=self.conversation_id))

    async def _loop(self) -> str:
        max_steps = self.request.max_steps
        while self.step < max_steps:
            if self.aborted:
                return "abort"
            self.step += 1
            self.phase = RunPhase.STEPPING
            try:
                await self._run_step(self.step)
                if self.aborted:
                    return "abort"
                if self.step >= max_steps:
                    break
                if not await self._should_continue():
                    return "complete"
            except RunAbortedError:
                logger.info("Run for %s aborted at step %d", self.conversation_id, self.step)
                return "abort"
            except Exception as exc:
                self.phase = RunPhase.ERRORING
                if not await self._recover(exc):
                    return "error"
        return "max_steps"

    async def _run_step(self, index: int) -> None:
        self.entry.step = index
        marker = StepMarker(index=index)
        for log in self._fold(marker):
            await self._notify(log)
        await self._push(marker)
        await self._emit(StepStartEvent(self.conversation_id, index, self.request.max_steps))
        logger.debug("Step %d/%d for %s", index, self.request.max_steps, self.conversation_id)

        ctx = self._context(index)
        tools = await self._enabled(self.request.tools, ctx)
        outputs = await self._enabled(self.request.outputs, ctx)
        fed = [log for log in self.wm.unprocessed() if log is not marker]
        marker.prompt = self._render(index, tools, outputs, fed, marker)

        step = _Step(marker=marker, context=ctx, tools=tools, outputs=outputs)
        error: Exception | None = None
        try:
            await self.runner.enqueue(
                self._generate,
                step,
                TaskOptions(
                    retry=self.config.model_retry,
                    signal=self.signal,
                    priority=1,
                    name=f"model:{self.conversation_id}#{index}",
                    retry_on=_retryable,
                ),
            )
        except Exception as exc:
            error = exc

        marker.response = step.response or "".join(step.fragments)
        WorkingMemory.mark_processed(fed)
        await self._save_working_memory()
        await self._settle(step)
        WorkingMemory.mark_processed(step.produced)
        if error is not None:
            raise error

        marker.processed = True
        await self._save_working_memory()
        await self._run_hooks("on_step", index)
        await self._save_states()
        await self._emit(StepEndEvent(self.conversation_id, index, pending_calls=len(step.calls)))

    async def _recover(self, exc: Exception) -> bool:
        definition = self.request.state.definition
        hook = definition.on_error if definition else None
        if isinstance(exc, ShuttleError):
            logger.warning("Step %d of %s failed: %s", self.step, self.conversation_id, exc)
        else:
            logger.exception("Step %d of %s failed", self.step, self.conversation_id)
        await self._emit(ErrorEvent(self.conversation_id, str(exc), recoverable=hook is not None))
        await self._persist_quietly()
        if hook is None:
            return False
        try:
            return bool(await maybe_await(hook(exc, self._context(self.step))))
        except Exception:
            logger.exception("on_error hook failed for %s", self.conversation_id)
            return False

    async def _complete(self, reason: str) -> list[Log]:
        self.phase = RunPhase.COMPLETING
        WorkingMemory.mark_processed(self.wm.logs)
        try:
            await self._run_hooks("on_run", self.step)
        except Exception:
            logger.exception("on_run hook failed for %s", self.conversation_id)
        await self._persist()

        leftover = self.registry.complete(self.conversation_id, self.entry)
        if leftover:
            logger.debug("Keeping %d late event(s) for the next run of %s", len(leftover), self.conversation_id)
            for log in leftover:
                self._stash(log)
            await self._save_working_memory()

        chain = self.wm.logs[self._start_index:]
        RunRegistry.settle(self.entry, chain)
        self.phase = RunPhase.DONE
        duration_ms = int((time.monotonic() - self._started) * 1000)
        logger.info(
            "Run completed for %s: %d step(s), %d log(s), %s",
            self.conversation_id, self.step, len(chain), reason,
        )
        await self._emit(
            RunEndEvent(self.conversation_id, steps=self.step, logs=len(chain), duration_ms=duration_ms, reason=reason)
        )
        return chain

    def _release(self, error: BaseException) -> None:
        for task in self.entry.tasks:
            task.cancel()
        if self.registry.get(self.conversation_id) is self.entry:
            for log in self.registry.complete(self.conversation_id, self.entry):
                self._stash(log)
        RunRegistry.settle(self.entry, error=error)
        self.phase = RunPhase.DONE

    # -- Model call --

    async def _generate(self, step: _Step, task: TaskContext) -> None:
        if task.attempt > 1:
            logger.info("Retrying model call for %s (attempt %d)", self.conversation_id, task.attempt)
        assembler = StreamAssembler(self._vocabulary(), strict=self.config.strict_parsing)
        stream_errors: list[Exception] = []
        options = GenerateOptions(signal=self.signal, on_error=stream_errors.append)

        try:
            result = await self.request.model.generate(step.marker.prompt, options)
        except (RunAbortedError, ModelCallError):
            raise
        except Exception as e:
            raise ModelCallError(f"Model call failed: {e}", e) from e

        stream = aiter(result.stream)
        try:
            while True:
                if self.aborted:
                    raise RunAbortedError()
                try:
                    fragment = await anext(stream)
                except StopAsyncIteration:
                    break
                except (RunAbortedError, ModelCallError):
                    raise
                except Exception as e:
                    raise ModelCallError(f"Model stream failed: {e}", e, partial=bool(step.fragments)) from e
                step.fragments.append(fragment)
                for element in assembler.feed(fragment):
                    await self._dispatch(element, step)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        for element in assembler.finish():
            await self._dispatch(element, step)
        if stream_errors:
            err = stream_errors[0]
            raise ModelCallError(f"Model stream failed: {err}", err, partial=bool(step.fragments))

        try:
            step.response = await result.text()
        except Exception as e:
            logger.warning("Final text unavailable for %s, using streamed text: %s", self.conversation_id, e)
            step.response = "".join(step.fragments)

    def _vocabulary(self) -> set[str]:
        return set(THOUGHT_TAGS - {TEXT}) | {TOOL_TAG, OUTPUT_TAG}

    # -- Dispatch --

    async def _dispatch(self, element: Element, step: _Step) -> None:
        """Route one completed element; text, ``think`` and ``response`` become thoughts.

        Element content excludes nested elements, so a ``response`` wrapping a
        tool call yields only its own text as the thought.
        """
        if not element.done:
            logger.warning(
                "Discarding unterminated <%s> in step %d of %s", element.tag, step.marker.index, self.conversation_id
            )
            return
        if element.tag == TOOL_TAG:
            await self._dispatch_call(element, step)
        elif element.tag == OUTPUT_TAG:
            await self._dispatch_output(element, step)
        elif element.tag in THOUGHT_TAGS:
            text = element.content.strip()
            if text:
                await self._push(Thought(content=text, step=step.marker.id), step)

    async def _dispatch_call(self, element: Element, step: _Step) -> None:
        call = ToolCall(
            name=element.attributes.get("name", ""),
            content=element.content,
            params=dict(element.attributes),
            step=step.marker.id,
        )
        await self._push(call, step)
        earlier = list(step.calls)
        future = asyncio.get_running_loop().create_future()
        step.calls.append(future)
        task = asyncio.create_task(self._settle_call(call, future, earlier, step))
        step.tasks.append(task)
        self.entry.tasks.append(task)

    async def _settle_call(self, call: ToolCall, future: asyncio.Future, earlier: list[asyncio.Future], step: _Step) -> None:
        attempts = 0
        try:
            tool = step.tools.get(call.name)
            if tool is None:
                raise ValidationError(call.name or TOOL_TAG, "unknown or disabled tool")
            if tool.attributes is not None:
                validate(tool.attributes, _without(call.params, "name"), f"{tool.name} attributes")
            arguments = await self._arguments(tool, call, earlier)
            ctx = ToolContext(**self._context_fields(step.context), call=call)

            async def execute(args: Any, task: TaskContext) -> Any:
                nonlocal attempts
                attempts = task.attempt
                return await maybe_await(tool.handler(args, dataclasses.replace(ctx, attempt=task.attempt)))

            data = await self.runner.enqueue(
                execute, arguments, TaskOptions(retry=tool.retry, signal=self.signal, name=f"tool:{tool.name}")
            )
        except asyncio.CancelledError:
            future.cancel()
            self.wm.push(self._result(call, attempts, error="cancelled"))
            raise
        except Exception as exc:
            error: Exception = exc
            if attempts and not isinstance(exc, ShuttleError):
                error = ToolExecutionError(call.name, attempts, exc)
            logger.warning("Tool call %s failed: %s", call.name or "<unnamed>", error)
            future.set_exception(error)
            future.exception()
            await self._push(self._result(call, attempts, error=str(error)))
        else:
            future.set_result(data)
            await self._push(self._result(call, attempts, data=data))

    @staticmethod
    def _result(call: ToolCall, attempts: int, data: Any = None, error: str | None = None) -> ToolResult:
        return ToolResult(
            call_id=call.id,
            name=call.name,
            data=data,
            success=error is None,
            error=error,
            attempts=attempts,
            step=call.step,
        )

    async def _arguments(self, tool: Tool, call: ToolCall, earlier: list[asyncio.Future]) -> Any:
        chain = self.wm.logs[self._start_index:]
        resolver = ReferenceResolver({
            "calls": earlier,
            "results": [log.data for log in chain if isinstance(log, ToolResult) and log.success],
            "inputs": [
                log.data if log.data is not None else log.content
                for log in self.wm.logs if isinstance(log, InputEvent)
            ],
            "outputs": [log.data for log in chain if isinstance(log, OutputEvent) and log.error is None],
        })
        resolved = await resolver.resolve(parse_content(call.content))
        if tool.schema is None:
            call.data = resolved
            return resolved
        parsed = PydanticSchema(tool.schema, tool.name).parse(resolved)
        call.data = parsed.model_dump()
        return parsed

    async def _dispatch_output(self, element: Element, step: _Step) -> None:
        type_ = element.attributes.get("type", "")
        event = OutputEvent(
            type=type_, content=element.content, params=dict(element.attributes), step=step.marker.id
        )
        output = step.outputs.get(type_)
        try:
            if output is None:
                raise ValidationError(type_ or OUTPUT_TAG, "unknown or disabled output")
            if output.schema is not None:
                event.data = validate(output.schema, parse_content(element.content), output.type)
            else:
                event.data = element.content.strip()
            if output.attributes is not None:
                validate(output.attributes, _without(event.params, "type"), f"{output.type} attributes")
        except ValidationError as e:
            logger.warning("Invalid output in %s: %s", self.conversation_id, e)
            event.error = str(e)
            await self._push(event, step)
            return

        await self._push(event, step)
        if output.handler is None:
            return
        if output.run_async:
            task = asyncio.create_task(self._schedule_output(output, event, step))
            step.tasks.append(task)
            self.entry.tasks.append(task)
        else:
            await self._handle_output(output, event, step)

    async def _handle_output(self, output: Output, event: OutputEvent, step: _Step) -> None:
        ctx = OutputContext(**self._context_fields(step.context), output=event)
        try:
            event.result = await maybe_await(output.handler(event.data, ctx))
        except Exception as e:
            logger.warning("Output handler %s failed: %s", output.type, e)
            event.error = str(e)
        await self._notify(event)

    async def _schedule_output(self, output: Output, event: OutputEvent, step: _Step) -> None:
        async def handle(_: Any, task: TaskContext) -> None:
            await self._handle_output(output, event, step)

        try:
            await self.runner.enqueue(handle, None, TaskOptions(signal=self.signal, name=f"output:{output.type}"))
        except RunAbortedError as e:
            event.error = str(e)
            await self._notify(event)

    async def _settle(self, step: _Step) -> None:
        if not step.tasks:
            return
        logger.debug("Waiting for %d pending task(s) in %s", len(step.tasks), self.conversation_id)
        await asyncio.gather(*step.tasks, return_exceptions=True)
        for task in step.tasks:
            if task in self.entry.tasks:
                self.entry.tasks.remove(task)

    # -- Working memory --

    def _fold(self, marker: StepMarker) -> list[Log]:
        folded: list[Log] = []
        for log in self.entry.drain():
            if isinstance(log, InputEvent):
                self.wm.push_input(log)
            else:
                folded.append(self.wm.push(log))
        folded += self.wm.fold_inputs()
        for log in folded:
            log.step = marker.id
        return folded

    def _stash(self, log: Log) -> None:
        if isinstance(log, InputEvent):
            self.wm.push_input(log)
        else:
            self.wm.push(log)

    async def _push(self, log: Log, step: _Step | None = None) -> None:
        self.wm.push(log)
        if step is not None:
            step.produced.append(log)
        await self._notify(log)

    async def _notify(self, log: Log, done: bool = True) -> None:
        await self._emit(LogEvent(self.conversation_id, log, done))
        if self.request.on_log is not None:
            try:
                await maybe_await(self.request.on_log(log, done))
            except Exception:
                logger.exception("on_log callback failed for %s", self.conversation_id)

    async def _should_continue(self) -> bool:
        definition = self.request.state.definition
        if definition is not None and definition.should_continue is not None:
            return bool(await maybe_await(definition.should_continue(self._context(self.step))))
        if self.entry.has_pending() or self.wm.inputs:
            return True
        return any(
            isinstance(log, (InputEvent, ToolResult)) and not log.processed for log in self.wm.logs
        )

    # -- Context, hooks, persistence --

    def _context(self, index: int, state: ConversationState | None = None) -> RunContext:
        return RunContext(
            conversation=state or self.request.state,
            working_memory=self.wm,
            step=index,
            contexts=list(self.request.contexts),
            signal=self.signal,
            engine=self.engine,
        )

    @staticmethod
    def _context_fields(ctx: RunContext) -> dict[str, Any]:
        return {f.name: getattr(ctx, f.name) for f in dataclasses.fields(RunContext)}

    async def _enabled(self, items: Mapping[str, D], ctx: RunContext) -> dict[str, D]:
        enabled: dict[str, D] = {}
        for name, item in items.items():
            if item.enabled is None or await maybe_await(item.enabled(ctx)):
                enabled[name] = item
        return enabled

    def _states(self) -> list[ConversationState]:
        return [self.request.state, *self.request.contexts]

    async def _run_hooks(self, name: str, index: int) -> None:
        for state in self._states():
            hook = getattr(state.definition, name, None) if state.definition else None
            if hook is not None:
                await maybe_await(hook(self._context(index, state)))

    def _render(
        self,
        index: int,
        tools: dict[str, Tool],
        outputs: dict[str, Output],
        fed: list[Log],
        marker: StepMarker,
    ) -> str:
        fed_ids = {log.id for log in fed}
        history = [
            log for log in self.wm.window(self.request.max_working_memory_size)
            if log is not marker and log.id not in fed_ids
        ]
        definition = self.request.state.definition
        data = PromptData(
            step=index,
            max_steps=self.request.max_steps,
            instructions=definition.instructions if definition else "",
            contexts=[_render_state(state) for state in self._states()],
            tools=list(tools.values()),
            outputs=list(outputs.values()),
            history=history,
            updates=fed,
        )
        return self.prompt(data)

    async def _save_working_memory(self) -> None:
        await self.conversations.save_working_memory(self.conversation_id, self.wm)

    async def _save_states(self) -> None:
        for state in self._states():
            await self.conversations.save(state)

    async def _persist(self) -> None:
        await self.conversations.save(self.request.state, self.wm)
        for state in self.request.contexts:
            await self.conversations.save(state)

    async def _persist_quietly(self) -> None:
        try:
            await self._persist()
        except Exception:
            logger.exception("Persisting %s failed", self.conversation_id)

    async def _emit(self, event: EngineEvent) -> None:
        if self.bus is not None:
            await self.bus.emit(event)


def _without(params: dict[str, str], key: str) -> dict[str, str]:
    return {k: v for k, v in params.items() if k != key}


def _render_state(state: ConversationState) -> str:
    definition = state.definition
    if definition is not None and definition.render is not None:
        body = str(definition.render(state))
    elif state.memory is not None:
        body = str(state.memory)
    else:
        body = ""
    return f'<context type="{state.type}" id="{state.id}">{body}</context>'
