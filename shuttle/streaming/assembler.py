"""
Stream Assembler - incremental element parser for model output

Turns text fragments of any size into completed elements of a small
XML-like grammar. Only tags in the vocabulary are structural; everything
else (unknown tags, stray ``<``, over-long delimiters) is literal text.

The parser is a character-level state machine, so the emitted sequence
depends only on the concatenated input, never on where chunks split.
"""

from __future__ import annotations

import html
import re
import string
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..errors import ParseError

TEXT = "#text"

_NAME_START = frozenset(string.ascii_letters + "_")
_NAME_CHARS = _NAME_START | frozenset(string.digits + "-.:")
_ATTR_RE = re.compile(
    r"""([A-Za-z_][A-Za-z0-9_.:-]*)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?"""
)


@dataclass
class Element:
    index: int
    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    content: str = ""
    done: bool = False
    parent: int | None = None
    depth: int = 0


def parse_attributes(raw: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for m in _ATTR_RE.finditer(raw):
        name, dq, sq, bare = m.groups()
        value = next((v for v in (dq, sq, bare) if v is not None), "")
        attrs[name] = html.unescape(value)
    return attrs


class StreamAssembler:
    """Stack-based assembler over a fixed tag vocabulary.

    ``feed`` returns the elements completed by a chunk; ``finish`` flushes
    trailing text and returns unterminated elements with ``done=False``
    (raising ``ParseError`` instead when ``strict``).
    """

    def __init__(
        self,
        tags: Iterable[str],
        strict: bool = False,
        max_tag_length: int = 256,
    ) -> None:
        self.tags = frozenset(tags)
        self.strict = strict
        self.max_tag_length = max_tag_length
        self._stack: list[Element] = []
        self._text = ""
        self._delimiter: str | None = None
        self._quote: str | None = None
        self._count = 0
        self._finished = False

    @property
    def open_elements(self) -> tuple[Element, ...]:
        return tuple(self._stack)

    def feed(self, chunk: str) -> list[Element]:
        if self._finished:
            raise RuntimeError("Assembler already finished")
        out: list[Element] = []
        for ch in chunk:
            self._consume(ch, out)
        return out

    def finish(self) -> list[Element]:
        if self._finished:
            return []
        self._finished = True
        out: list[Element] = []
        if self._delimiter is not None:
            self._append_text("<" + self._delimiter)
            self._delimiter = None
            self._quote = None
        self._flush_text(out)
        unterminated = list(reversed(self._stack))
        self._stack.clear()
        out.extend(unterminated)
        if unterminated and self.strict:
            tags = ", ".join(e.tag for e in unterminated)
            raise ParseError(f"Unterminated element(s) at end of stream: {tags}", unterminated)
        return out

    # -- State machine --

    def _consume(self, ch: str, out: list[Element]) -> None:
        if self._delimiter is None:
            if ch == "<":
                self._delimiter = ""
            else:
                self._append_text(ch)
            return

        buf = self._delimiter
        if self._quote is not None:
            if ch == self._quote:
                self._quote = None
            self._grow(buf + ch)
            return

        if ch == ">":
            self._delimiter = None
            self._complete_delimiter(buf, out)
            return

        if not self._accepts(buf, ch):
            self._delimiter = None
            self._append_text("<" + buf)
            self._consume(ch, out)
            return

        if ch in "\"'":
            self._quote = ch
        self._grow(buf + ch)

    def _grow(self, buf: str) -> None:
        if len(buf) > self.max_tag_length:
            self._delimiter = None
            self._quote = None
            self._append_text("<" + buf)
        else:
            self._delimiter = buf

    def _accepts(self, buf: str, ch: str) -> bool:
        if buf == "" and ch == "/":
            return True
        closing = buf.startswith("/")
        body = buf[1:] if closing else buf
        n = 0
        while n < len(body) and body[n] in _NAME_CHARS:
            n += 1
        name, rest = body[:n], body[n:]

        if rest:
            # attribute region; closing delimiters only allow trailing space
            if closing:
                return ch.isspace()
            return ch != "<"

        if ch in _NAME_CHARS:
            if not name and ch not in _NAME_START:
                return False
            candidate = name + ch
            return any(t.startswith(candidate) for t in self.tags)
        if not name or name not in self.tags:
            return False
        if closing:
            return ch.isspace()
        return ch.isspace() or ch == "/"

    def _complete_delimiter(self, buf: str, out: list[Element]) -> None:
        closing = buf.startswith("/")
        body = buf[1:] if closing else buf
        self_closing = not closing and body.endswith("/")
        if self_closing:
            body = body[:-1]
        m = re.match(r"([A-Za-z_][A-Za-z0-9_.:-]*)(.*)\Z", body, re.S)
        if not m or m.group(1) not in self.tags:
            self._append_text("<" + buf + ">")
            return
        name, rest = m.groups()
        if closing:
            if rest.strip() or not self._close(name, out):
                self._append_text("<" + buf + ">")
            return
        self._open(name, parse_attributes(rest), self_closing, out)

    def _open(self, tag: str, attributes: dict[str, str], self_closing: bool, out: list[Element]) -> None:
        self._flush_text(out)
        parent = self._stack[-1] if self._stack else None
        element = Element(
            index=self._next_index(),
            tag=tag,
            attributes=attributes,
            parent=parent.index if parent else None,
            depth=len(self._stack),
        )
        if self_closing:
            element.done = True
            out.append(element)
        else:
            self._stack.append(element)

    def _close(self, tag: str, out: list[Element]) -> bool:
        for i in range(len(self._stack) - 1, -1, -1):
            if self._stack[i].tag == tag:
                break
        else:
            return False
        while len(self._stack) > i + 1:
            out.append(self._stack.pop())  # closed implicitly, left done=False
        element = self._stack.pop()
        element.done = True
        out.append(element)
        return True

    def _append_text(self, text: str) -> None:
        if self._stack:
            self._stack[-1].content += text
        else:
            self._text += text

    def _flush_text(self, out: list[Element]) -> None:
        if self._text.strip():
            out.append(Element(index=self._next_index(), tag=TEXT, content=self._text, done=True))
        self._text = ""

    def _next_index(self) -> int:
        index = self._count
        self._count += 1
        return index
