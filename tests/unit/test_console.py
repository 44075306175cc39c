"""Tests for rich console rendering of runs."""

import logging

from rich.console import Console
from rich.logging import RichHandler

from shuttle import Conversation, EventBus, InputEvent, ScriptedModel, define_tool
from shuttle.visualization import RichRunPrinter, install_rich_logging


class TestRichRunPrinter:
    async def test_prints_tree_and_summary(self, make_engine):
        console = Console(record=True, width=120)
        printer = RichRunPrinter(console)
        bus = EventBus()
        printer.attach(bus)
        engine = await make_engine(
            ScriptedModel(['<tool_call name="lookup">{}</tool_call>', "<response>all done</response>"]),
            tools=[define_tool("lookup", "", None, lambda args, ctx: "42")],
            conversations=[Conversation(type="chat", max_steps=2)],
            bus=bus,
        )
        await engine.run("chat", chain=[InputEvent(type="message", content="go")])

        text = console.export_text()
        assert "Run summary" in text
        assert "lookup" in text
        assert "all done" in text
        assert printer.stats == {"runs": 1, "steps": 2, "tool_calls": 1, "errors": 0}


class TestRichLogging:
    def test_installs_handler(self):
        handler = install_rich_logging(logging.DEBUG, "shuttle.test")
        target = logging.getLogger("shuttle.test")
        try:
            assert isinstance(handler, RichHandler)
            assert handler in target.handlers
            assert target.level == logging.DEBUG
        finally:
            target.removeHandler(handler)
