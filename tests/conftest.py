"""
Pytest configuration and fixtures
"""

from __future__ import annotations

import pytest

from shuttle import Engine, InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
async def make_engine():
    """Builds and starts engines; stops them after the test."""
    engines: list[Engine] = []

    async def factory(model=None, **kwargs) -> Engine:
        builder = Engine.builder()
        if model is not None:
            builder.with_model(model)
        for key in ("tools", "outputs", "inputs", "conversations", "services", "extensions"):
            if key in kwargs:
                getattr(builder, f"with_{key}")(kwargs.pop(key))
        if "store" in kwargs:
            builder.with_store(kwargs.pop("store"))
        if "config" in kwargs:
            builder.with_config(kwargs.pop("config"))
        if "bus" in kwargs:
            builder.with_event_bus(kwargs.pop("bus"))
        if "agent_context" in kwargs:
            builder.with_agent_context(*kwargs.pop("agent_context"))
        assert not kwargs, f"unexpected options: {sorted(kwargs)}"
        engine = builder.build()
        await engine.start()
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        await engine.stop()
