"""Unit tests for working memory and durable stores."""

import asyncio

import pytest

from shuttle.memory import InMemoryStore, JsonFileStore, WorkingMemory
from shuttle.types import InputEvent, StepMarker, Thought, ToolCall, ToolResult


class TestWorkingMemory:
    def test_push_keeps_order(self):
        wm = WorkingMemory()
        a = wm.push(Thought(content="a"))
        b = wm.push(Thought(content="b"))
        assert wm.logs == [a, b]
        assert wm.find(b.id) is b
        assert len(wm) == 2

    def test_duplicate_id_rejected(self):
        wm = WorkingMemory()
        log = wm.push(Thought(content="a"))
        with pytest.raises(ValueError):
            wm.push(log)

    def test_fold_inputs_in_arrival_order(self):
        wm = WorkingMemory()
        first = InputEvent(type="message", content="1")
        second = InputEvent(type="message", content="2")
        wm.push_input(first)
        wm.push_input(second)
        assert wm.logs == []

        assert wm.fold_inputs() == [first, second]
        assert wm.inputs == []
        assert wm.input_events == [first, second]

    def test_processed_tracking(self):
        wm = WorkingMemory()
        a = wm.push(Thought(content="a"))
        b = wm.push(Thought(content="b"))
        WorkingMemory.mark_processed([a])
        assert wm.unprocessed() == [b]

    def test_kind_accessors(self):
        wm = WorkingMemory()
        call = wm.push(ToolCall(name="search"))
        result = wm.push(ToolResult(call_id=call.id, name="search", data=1))
        step = wm.push(StepMarker(index=1))
        assert wm.calls == [call]
        assert wm.results == [result]
        assert wm.steps == [step]
        assert wm.thoughts == []

    def test_window(self):
        wm = WorkingMemory(Thought(content=str(i)) for i in range(5))
        assert [log.content for log in wm.window(2)] == ["3", "4"]
        assert len(wm.window(None)) == 5
        assert len(wm.window(10)) == 5
        assert wm.window(0) == []

    def test_snapshot_restore(self):
        wm = WorkingMemory()
        call = wm.push(ToolCall(name="search", content="{}", params={"name": "search"}))
        wm.push(ToolResult(call_id=call.id, name="search", data={"hits": [1, 2]}, attempts=2))
        wm.push_input(InputEvent(type="message", content="late"))

        restored = WorkingMemory.restore(wm.snapshot())
        assert [type(log) for log in restored.logs] == [ToolCall, ToolResult]
        assert restored.logs[1].data == {"hits": [1, 2]}
        assert restored.logs[1].attempts == 2
        assert restored.find(call.id).params == {"name": "search"}
        assert restored.inputs[0].content == "late"

    def test_restore_empty(self):
        assert len(WorkingMemory.restore(None)) == 0


class TestInMemoryStore:
    async def test_get_set_delete(self):
        store = InMemoryStore()
        assert await store.get("missing") is None
        await store.set("k", {"a": [1]})
        assert await store.get("k") == {"a": [1]}
        await store.delete("k")
        await store.delete("k")
        assert await store.get("k") is None

    async def test_values_are_copied(self):
        store = InMemoryStore()
        value = {"a": [1]}
        await store.set("k", value)
        value["a"].append(2)
        fetched = await store.get("k")
        fetched["a"].append(3)
        assert await store.get("k") == {"a": [1]}


class TestJsonFileStore:
    async def test_round_trip_and_reopen(self, tmp_path):
        store = JsonFileStore(tmp_path / "state")
        key = 'context:chat:{"user":"u/1"}'
        await store.set(key, {"memory": {"count": 1}})
        await store.set("contexts", ["chat"])

        reopened = JsonFileStore(tmp_path / "state")
        assert await reopened.get(key) == {"memory": {"count": 1}}
        assert sorted(await reopened.keys()) == sorted([key, "contexts"])

    async def test_delete_and_missing(self, tmp_path):
        store = JsonFileStore(tmp_path)
        assert await store.get("nope") is None
        await store.set("k", 1)
        await store.delete("k")
        await store.delete("k")
        assert await store.get("k") is None

    async def test_concurrent_sets_of_one_key(self, tmp_path):
        store = JsonFileStore(tmp_path)
        await asyncio.gather(*(store.set("contexts", list(range(i))) for i in range(20)))

        assert isinstance(await store.get("contexts"), list)
        assert await store.keys() == ["contexts"]
        assert list(tmp_path.glob("*.tmp")) == []
