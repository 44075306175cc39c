"""OpenAI-compatible model provider (streaming chat completions)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from ..types import GenerateOptions, GenerateResult
from ..utils import maybe_await

logger = logging.getLogger(__name__)


class OpenAIModel:
    """Sends the rendered step prompt as one user message and streams the reply."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError("pip install openai") from None
            client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._client = client
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _messages(self, prompt: str) -> list[dict]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate(self, prompt: str, options: GenerateOptions) -> GenerateResult:
        kwargs: dict = {"model": self.model, "messages": self._messages(prompt), "stream": True}
        temperature = options.temperature if options.temperature is not None else self.temperature
        max_tokens = options.max_tokens if options.max_tokens is not None else self.max_tokens
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        resp = await self._client.chat.completions.create(**kwargs)
        parts: list[str] = []

        async def stream() -> AsyncIterator[str]:
            try:
                async for chunk in resp:
                    if options.signal is not None and options.signal.is_set():
                        break
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta and delta.content:
                        parts.append(delta.content)
                        yield delta.content
            except Exception as e:
                if options.on_error is None:
                    raise
                logger.warning("OpenAI stream failed: %s", e)
                options.on_error(e)
            finally:
                close = getattr(resp, "close", None)
                if close is not None:
                    await maybe_await(close())

        async def text() -> str:
            return "".join(parts)

        return GenerateResult(stream=stream(), text=text)
