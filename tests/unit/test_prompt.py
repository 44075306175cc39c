"""Unit tests for step prompt rendering."""

from pydantic import BaseModel

from shuttle.engine import PromptData, format_log, render_prompt
from shuttle.tools import define_output, define_tool
from shuttle.types import InputEvent, OutputEvent, StepMarker, Thought, ToolCall, ToolResult


class Query(BaseModel):
    q: str


class TestFormatLog:
    def test_each_kind(self):
        call = ToolCall(name="search", content=' {"q": "x"} ')
        assert format_log(InputEvent(type="message", content="hi")) == '<input type="message">hi</input>'
        assert format_log(InputEvent(type="message", data={"a": 1})) == '<input type="message">{"a": 1}</input>'
        assert format_log(Thought(content="hmm")) == "<think>hmm</think>"
        assert format_log(call) == f'<tool_call id="{call.id}" name="search">{{"q": "x"}}</tool_call>'
        assert format_log(OutputEvent(type="reply", content="ok")) == '<output type="reply">ok</output>'
        assert format_log(StepMarker(index=1)) is None

    def test_tool_results(self):
        ok = ToolResult(call_id="c1", name="search", data={"hits": 2})
        failed = ToolResult(call_id="c1", name="search", success=False, error="boom")
        assert format_log(ok) == '<tool_result call_id="c1" name="search">{"hits": 2}</tool_result>'
        assert format_log(failed) == '<tool_result call_id="c1" name="search">error: boom</tool_result>'


class TestRenderPrompt:
    def test_sections(self):
        data = PromptData(
            step=2,
            max_steps=3,
            instructions="Be brief.",
            contexts=['<context type="profile" id="profile:u1">likes tea</context>'],
            tools=[define_tool("search", "Search the web", Query, lambda a, c: None)],
            outputs=[define_output("reply", "Reply to the user")],
            history=[Thought(content="earlier")],
            updates=[InputEvent(type="message", content="new")],
        )
        prompt = render_prompt(data)
        assert "Be brief." in prompt
        assert '<context type="profile"' in prompt
        assert '<tool name="search" description="Search the web">' in prompt
        assert '<output_type type="reply" description="Reply to the user">text</output_type>' in prompt
        assert "<history>\n<think>earlier</think>\n</history>" in prompt
        assert '<updates>\n<input type="message">new</input>\n</updates>' in prompt
        assert prompt.endswith("Step 2 of 3.")

    def test_empty_sections(self):
        prompt = render_prompt(PromptData(step=1, max_steps=1))
        assert "<contexts/>" in prompt
        assert "<history/>" in prompt
