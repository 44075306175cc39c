from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..errors import RunAbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class SchedulerConfig:
    max_concurrency: int = 3


@dataclass
class TaskOptions:
    retry: int = 0
    signal: asyncio.Event | None = None
    priority: int = 0
    name: str | None = None
    retry_on: Callable[[Exception], bool] | None = None


@dataclass
class TaskContext:
    task_id: str
    attempt: int = 1
    signal: asyncio.Event | None = None

    @property
    def aborted(self) -> bool:
        return bool(self.signal and self.signal.is_set())


TaskFn = Callable[[Any, TaskContext], Awaitable[Any]]


@dataclass(eq=False)
class _QueuedTask:
    fn: TaskFn
    params: Any
    options: TaskOptions
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    entry: tuple | None = None
    watcher: asyncio.Task | None = None
    handle: asyncio.Task | None = None


class TaskRunner:
    """Bounded-concurrency executor with a priority queue, retries and abort signals.

    Tasks are coroutine functions ``fn(params, ctx)``. At most
    ``max_concurrency`` run at once; the rest wait ordered by priority
    (higher first), FIFO among equal priorities.
    """

    def __init__(self, max_concurrency: int | None = None, config: SchedulerConfig | None = None) -> None:
        self.config = config or SchedulerConfig()
        if max_concurrency is not None:
            self.config.max_concurrency = max_concurrency
        if self.config.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._lock = threading.Lock()
        self._queue: list[tuple[int, int, _QueuedTask]] = []
        self._seq = itertools.count()
        self._running = 0

    @property
    def max_concurrency(self) -> int:
        return self.config.max_concurrency

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._queue)

    def set_concurrency(self, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        with self._lock:
            self.config.max_concurrency = max_concurrency
        self._drain()

    async def enqueue(self, fn: TaskFn, params: Any = None, options: TaskOptions | None = None) -> Any:
        opts = options or TaskOptions()
        if opts.signal is not None and opts.signal.is_set():
            raise RunAbortedError(f"Task {opts.name or fn.__name__} dropped: signal already set")

        loop = asyncio.get_running_loop()
        item = _QueuedTask(fn=fn, params=params, options=opts, future=loop.create_future(), loop=loop)
        item.entry = (-opts.priority, next(self._seq), item)
        with self._lock:
            heapq.heappush(self._queue, item.entry)
        if opts.signal is not None:
            item.watcher = loop.create_task(self._watch_signal(item))
        self._drain()

        try:
            return await item.future
        except asyncio.CancelledError:
            self._cancel(item)
            raise

    def _drain(self) -> None:
        while True:
            with self._lock:
                if self._running >= self.config.max_concurrency or not self._queue:
                    return
                _, _, item = heapq.heappop(self._queue)
                if item.future.done():
                    continue
                self._running += 1
            if item.watcher is not None:
                item.watcher.cancel()
            item.handle = item.loop.create_task(self._execute(item))

    async def _execute(self, item: _QueuedTask) -> None:
        try:
            result = await self._attempt(item)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as exc:
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            with self._lock:
                self._running -= 1
            self._drain()

    async def _attempt(self, item: _QueuedTask) -> Any:
        opts = item.options
        attempt = 0
        while True:
            attempt += 1
            ctx = TaskContext(task_id=item.task_id, attempt=attempt, signal=opts.signal)
            try:
                return await item.fn(item.params, ctx)
            except RunAbortedError:
                raise
            except Exception as exc:
                if attempt > opts.retry or ctx.aborted:
                    raise
                if opts.retry_on is not None and not opts.retry_on(exc):
                    raise
                logger.debug(
                    "Task %s failed (attempt %d/%d), retrying: %s",
                    opts.name or item.task_id, attempt, opts.retry + 1, exc,
                )

    async def _watch_signal(self, item: _QueuedTask) -> None:
        await item.options.signal.wait()
        with self._lock:
            try:
                self._queue.remove(item.entry)
            except ValueError:
                return
            heapq.heapify(self._queue)
        if not item.future.done():
            item.future.set_exception(
                RunAbortedError(f"Task {item.options.name or item.task_id} dropped before start")
            )

    def _cancel(self, item: _QueuedTask) -> None:
        if item.watcher is not None:
            item.watcher.cancel()
        if item.handle is not None:
            item.handle.cancel()
            return
        with self._lock:
            try:
                self._queue.remove(item.entry)
            except ValueError:
                return
            heapq.heapify(self._queue)
