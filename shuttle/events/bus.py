"""Event bus - publish/subscribe for engine events with prefix patterns."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from ..types import EngineEvent

logger = logging.getLogger(__name__)

# Handlers may be sync or async.
Handler = Callable[[EngineEvent], Awaitable[None] | None]


class EventBus:
    """Dispatches engine events to exact, pattern ('run:*') and catch-all handlers.

    Handler failures are logged and never reach the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._wildcard: list[Handler] = []

    def on(self, event_type: str, handler: Handler) -> Callable[[], None]:
        self._handlers[event_type].append(handler)
        return lambda: self.off(event_type, handler)

    def on_pattern(self, pattern: str, handler: Handler) -> Callable[[], None]:
        if not pattern.endswith(":*"):
            raise ValueError(f"Pattern must end with ':*', got {pattern!r}")
        return self.on(pattern, handler)

    def on_all(self, handler: Handler) -> Callable[[], None]:
        self._wildcard.append(handler)
        return lambda: self._wildcard.remove(handler) if handler in self._wildcard else None

    def off(self, event_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def has_subscribers(self) -> bool:
        return bool(self._wildcard) or any(self._handlers.values())

    async def emit(self, event: EngineEvent) -> None:
        event_type = event.type
        for h in list(self._handlers.get(event_type, [])) + list(self._wildcard):
            await self._call(h, event, event_type)
        # 'run:*' matches 'run:start', 'run:end'
        for pat, handlers in list(self._handlers.items()):
            if not pat.endswith(":*"):
                continue
            if event_type.startswith(pat[:-1]):
                for h in list(handlers):
                    await self._call(h, event, pat)

    @staticmethod
    async def _call(handler: Handler, event: EngineEvent, label: str) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Event handler error for %s", label)
