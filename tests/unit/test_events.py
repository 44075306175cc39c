"""Unit tests for the event bus."""

import logging

import pytest

from shuttle.events import EventBus
from shuttle.types import RunEndEvent, RunStartEvent, StepStartEvent


class TestEventBus:
    async def test_exact_subscription(self):
        bus = EventBus()
        seen = []
        bus.on("run:start", seen.append)
        await bus.emit(RunStartEvent(conversation_id="c"))
        await bus.emit(RunEndEvent(conversation_id="c"))
        assert [e.type for e in seen] == ["run:start"]

    async def test_async_handler_and_pattern(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event.type)

        bus.on_pattern("run:*", handler)
        await bus.emit(RunStartEvent(conversation_id="c"))
        await bus.emit(StepStartEvent(conversation_id="c", step=1))
        await bus.emit(RunEndEvent(conversation_id="c"))
        assert seen == ["run:start", "run:end"]

    def test_pattern_must_be_prefix(self):
        with pytest.raises(ValueError):
            EventBus().on_pattern("run", print)

    async def test_on_all_and_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.on_all(seen.append)
        assert bus.has_subscribers()
        await bus.emit(StepStartEvent(conversation_id="c", step=1))
        unsubscribe()
        await bus.emit(StepStartEvent(conversation_id="c", step=2))
        assert [e.step for e in seen] == [1]
        assert not bus.has_subscribers()

    async def test_off(self):
        bus = EventBus()
        seen = []
        bus.on("run:end", seen.append)
        bus.off("run:end", seen.append)
        await bus.emit(RunEndEvent(conversation_id="c"))
        assert seen == []

    async def test_handler_failure_is_logged(self, caplog):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("handler broke")

        bus.on("run:start", broken)
        bus.on("run:start", seen.append)
        with caplog.at_level(logging.ERROR, logger="shuttle.events.bus"):
            await bus.emit(RunStartEvent(conversation_id="c"))
        assert len(seen) == 1
        assert "Event handler error for run:start" in caplog.text
