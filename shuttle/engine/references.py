"""Reference expressions inside tool arguments.

Grammar: ``{{root[index].field["key"][0]}}`` where ``root`` is one of
``calls``, ``results``, ``inputs`` or ``outputs``. A string that is exactly
one reference evaluates to the referenced value; references embedded in
longer strings are interpolated with ``str()``.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

from ..errors import ReferenceResolutionError

ROOTS = ("calls", "results", "inputs", "outputs")

_REFERENCE = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")
_ROOT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SEGMENT = re.compile(
    r"""\.(?P<attr>[A-Za-z_][A-Za-z0-9_]*)"""
    r"""|\[\s*(?P<index>\d+)\s*\]"""
    r"""|\[\s*"(?P<dq>[^"]*)"\s*\]"""
    r"""|\[\s*'(?P<sq>[^']*)'\s*\]"""
)


def parse_reference(expression: str) -> tuple[str, list[int | str]]:
    """Split ``root[0].a["b"]`` into ``("root", [0, "a", "b"])``."""
    m = _ROOT.match(expression)
    if not m or m.group(0) not in ROOTS:
        raise ReferenceResolutionError(expression, f"unknown root, expected one of {', '.join(ROOTS)}")
    root, pos = m.group(0), m.end()
    path: list[int | str] = []
    while pos < len(expression):
        seg = _SEGMENT.match(expression, pos)
        if not seg:
            raise ReferenceResolutionError(expression, f"unexpected {expression[pos:]!r}")
        if seg.group("index") is not None:
            path.append(int(seg.group("index")))
        else:
            path.append(next(v for v in (seg.group("attr"), seg.group("dq"), seg.group("sq")) if v is not None))
        pos = seg.end()
    if not path or not isinstance(path[0], int):
        raise ReferenceResolutionError(expression, f"{root} must be indexed, e.g. {root}[0]")
    return root, path


class ReferenceResolver:
    """Evaluates references against per-run roots.

    Each root is a sequence. Entries of ``calls`` may be futures of tool
    calls still in flight; they are awaited on first use.
    """

    def __init__(self, roots: Mapping[str, Sequence[Any]]) -> None:
        self.roots = roots

    async def evaluate(self, expression: str) -> Any:
        root, path = parse_reference(expression)
        value: Any = self.roots.get(root, ())
        for depth, segment in enumerate(path):
            value = self._step(value, segment, expression)
            if depth == 0 and inspect.isawaitable(value):
                try:
                    value = await (asyncio.shield(value) if isinstance(value, asyncio.Future) else value)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    raise ReferenceResolutionError(expression, f"referenced call failed: {e}", e) from e
        return value

    async def resolve(self, value: Any) -> Any:
        """Resolve every reference in strings nested in dicts and lists."""
        if isinstance(value, str):
            return await self._resolve_string(value)
        if isinstance(value, dict):
            return {k: await self.resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [await self.resolve(v) for v in value]
        return value

    async def _resolve_string(self, text: str) -> Any:
        whole = _REFERENCE.fullmatch(text.strip())
        if whole:
            return await self.evaluate(whole.group(1))
        parts: list[str] = []
        last = 0
        for m in _REFERENCE.finditer(text):
            parts.append(text[last:m.start()])
            parts.append(str(await self.evaluate(m.group(1))))
            last = m.end()
        if not parts:
            return text
        parts.append(text[last:])
        return "".join(parts)

    @staticmethod
    def _step(value: Any, segment: int | str, expression: str) -> Any:
        try:
            if isinstance(segment, int):
                return value[segment]
            if isinstance(value, Mapping):
                return value[segment]
            if isinstance(value, BaseModel) or hasattr(value, "__dataclass_fields__"):
                return getattr(value, segment)
        except (IndexError, KeyError, AttributeError, TypeError) as e:
            raise ReferenceResolutionError(expression, f"no value at {segment!r}", e) from e
        raise ReferenceResolutionError(expression, f"cannot read {segment!r} from {type(value).__name__}")
