"""Model provider contract."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass
class GenerateOptions:
    signal: asyncio.Event | None = None
    on_error: Callable[[Exception], None] | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class GenerateResult:
    """A response in flight: ordered text fragments plus the final text."""

    stream: AsyncIterator[str]
    text: Callable[[], Awaitable[str]]


@runtime_checkable
class ModelProvider(Protocol):
    async def generate(self, prompt: str, options: GenerateOptions) -> GenerateResult: ...
