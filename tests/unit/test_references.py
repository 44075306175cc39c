"""Unit tests for reference expressions in tool arguments."""

import asyncio

import pytest

from shuttle.engine import ReferenceResolver, parse_reference
from shuttle.errors import ReferenceResolutionError


class TestParseReference:
    def test_paths(self):
        assert parse_reference("calls[0]") == ("calls", [0])
        assert parse_reference('results[1].data["hits"][2]') == ("results", [1, "data", "hits", 2])
        assert parse_reference("inputs[0]['text']") == ("inputs", [0, "text"])

    @pytest.mark.parametrize("expression", ["memory[0]", "calls.first", "calls", "calls[0]x", "calls[a]"])
    def test_invalid(self, expression):
        with pytest.raises(ReferenceResolutionError) as exc:
            parse_reference(expression)
        assert exc.value.code == "REFERENCE_ERROR"
        assert exc.value.expression == expression


class TestReferenceResolver:
    async def test_whole_string_keeps_type(self):
        resolver = ReferenceResolver({"results": [{"hits": [3, 4]}]})
        assert await resolver.resolve("{{results[0].hits}}") == [3, 4]
        assert await resolver.resolve("  {{ results[0].hits[1] }} ") == 4

    async def test_interpolation(self):
        resolver = ReferenceResolver({"inputs": [{"user": "ada"}]})
        assert await resolver.resolve("hello {{inputs[0].user}}!") == "hello ada!"
        assert await resolver.resolve("no references") == "no references"

    async def test_adjacent_references_interpolate_separately(self):
        resolver = ReferenceResolver({"inputs": [{"a": 1, "b": 2}]})
        assert await resolver.resolve("{{inputs[0].a}}-{{inputs[0].b}}") == "1-2"
        assert await resolver.resolve("{{inputs[0].a}}{{inputs[0].b}}") == "12"

    async def test_nested_structures(self):
        resolver = ReferenceResolver({"outputs": [{"id": 7}]})
        resolved = await resolver.resolve({"ids": ["{{outputs[0].id}}", 1], "keep": None})
        assert resolved == {"ids": [7, 1], "keep": None}

    async def test_awaits_pending_call(self):
        loop = asyncio.get_running_loop()
        pending = loop.create_future()
        resolver = ReferenceResolver({"calls": [pending]})
        loop.call_later(0.01, pending.set_result, {"city": "Oslo"})
        assert await resolver.evaluate("calls[0].city") == "Oslo"

    async def test_failed_call(self):
        failed = asyncio.get_running_loop().create_future()
        failed.set_exception(RuntimeError("tool broke"))
        resolver = ReferenceResolver({"calls": [failed]})
        with pytest.raises(ReferenceResolutionError, match="tool broke"):
            await resolver.evaluate("calls[0]")

    async def test_missing_values(self):
        resolver = ReferenceResolver({"results": [{"a": 1}]})
        with pytest.raises(ReferenceResolutionError):
            await resolver.evaluate("results[3]")
        with pytest.raises(ReferenceResolutionError):
            await resolver.evaluate("results[0].b")
        with pytest.raises(ReferenceResolutionError):
            await resolver.evaluate("calls[0]")
