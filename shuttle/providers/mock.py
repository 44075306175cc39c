"""
Scripted model provider for tests and demos

Replays canned responses, one per ``generate`` call, streamed in fixed-size
chunks. No API keys, fully deterministic.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass

from ..types import GenerateOptions, GenerateResult


@dataclass
class StreamFailure:
    """Stream ``text`` then fail with ``error``."""

    error: Exception
    text: str = ""


Script = str | Exception | StreamFailure | Callable[[str], str]


class ScriptedModel:
    """A ModelProvider that returns canned responses.

    Each script entry is a response string, a callable ``(prompt) -> str``,
    an exception raised by ``generate`` itself, or a ``StreamFailure``.
    When the script runs out, ``default`` is returned.
    """

    def __init__(
        self,
        responses: Iterable[Script] = (),
        *,
        chunk_size: int | None = None,
        delay: float = 0.0,
        default: str = "",
    ) -> None:
        if chunk_size is not None and chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.responses: deque[Script] = deque(responses)
        self.chunk_size = chunk_size
        self.delay = delay
        self.default = default
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def add(self, *responses: Script) -> ScriptedModel:
        self.responses.extend(responses)
        return self

    async def generate(self, prompt: str, options: GenerateOptions) -> GenerateResult:
        self.prompts.append(prompt)
        script = self.responses.popleft() if self.responses else self.default
        if isinstance(script, Exception):
            raise script
        failure: Exception | None = None
        if isinstance(script, StreamFailure):
            failure, text = script.error, script.text
        elif callable(script):
            text = script(prompt)
        else:
            text = script

        sent: list[str] = []

        async def stream() -> AsyncIterator[str]:
            for chunk in self._chunks(text):
                if options.signal is not None and options.signal.is_set():
                    return
                if self.delay:
                    await asyncio.sleep(self.delay)
                sent.append(chunk)
                yield chunk
            if failure is not None:
                raise failure

        async def final_text() -> str:
            return "".join(sent)

        return GenerateResult(stream=stream(), text=final_text)

    def _chunks(self, text: str) -> list[str]:
        if not text:
            return []
        size = self.chunk_size or len(text)
        return [text[i:i + size] for i in range(0, len(text), size)]
