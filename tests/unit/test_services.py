"""Unit tests for services: container, boot order and engine start."""

import pytest
from pydantic import BaseModel

from shuttle import Conversation, Extension, Input, InputEvent, ScriptedModel, Service, define_tool
from shuttle.engine import ServiceContainer, ServiceManager, compose
from shuttle.errors import ShuttleError


class LookupArgs(BaseModel):
    key: str


class TestServiceContainer:
    def test_instance_and_resolve(self):
        container = ServiceContainer()
        db = {"a": 1}
        assert container.instance("db", db) is db
        assert container.resolve("db") is db
        assert "db" in container
        assert container.names() == ["db"]

    def test_resolve_missing(self):
        with pytest.raises(ShuttleError) as exc:
            ServiceContainer().resolve("db")
        assert exc.value.code == "SERVICE_NOT_FOUND"


class TestServiceManager:
    async def test_registers_all_before_booting_in_order(self):
        calls = []

        def service(name):
            async def boot(container):
                calls.append(("boot", name, sorted(container.names())))

            return Service(
                name=name,
                register=lambda container: calls.append(("register", name)) or container.instance(name, name),
                boot=boot,
            )

        manager = ServiceManager(ServiceContainer(), [service("db"), service("cache")])
        await manager.boot_all()

        assert calls == [
            ("register", "db"),
            ("register", "cache"),
            ("boot", "db", ["cache", "db"]),
            ("boot", "cache", ["cache", "db"]),
        ]
        assert manager.booted

    async def test_boot_all_runs_once(self):
        boots = []
        manager = ServiceManager(ServiceContainer(), [Service(name="db", boot=boots.append)])
        await manager.boot_all()
        await manager.boot_all()
        assert len(boots) == 1

    async def test_add_after_boot(self):
        manager = ServiceManager(ServiceContainer())
        service = Service(name="db")
        manager.add(service)
        manager.add(service)
        assert manager.services == [service]
        await manager.boot_all()
        with pytest.raises(ShuttleError) as exc:
            manager.add(Service(name="late"))
        assert exc.value.code == "SERVICES_BOOTED"

    def test_compose_rejects_duplicate_names(self):
        with pytest.raises(ValueError, match="Duplicate service 'db'"):
            compose(services=[Service(name="db")], extensions=[
                Extension(name="storage", services=[Service(name="db")]),
            ])

    def test_compose_orders_direct_services_first(self):
        db, cache = Service(name="db"), Service(name="cache")
        registry = compose(services=[db], extensions=[Extension(name="fast", services=[cache])])
        assert registry.services == (db, cache)


class TestEngineServices:
    async def test_services_boot_before_inputs_subscribe(self, make_engine):
        order = []

        def subscribe(channel):
            order.append("subscribe")

        ext = Extension(
            name="storage",
            services=[Service(name="db", boot=lambda container: order.append("boot"))],
            inputs=[Input(type="message", subscribe=subscribe)],
            install=lambda engine: order.append("install"),
        )
        engine = await make_engine(extensions=[ext])

        assert order == ["boot", "install", "subscribe"]
        assert engine.service_manager.booted

    async def test_engine_infrastructure_is_bound(self, make_engine, store):
        engine = await make_engine(store=store)
        assert engine.container.resolve("engine") is engine
        assert engine.container.resolve("store") is store
        assert engine.container.resolve("bus") is engine.bus
        assert engine.container.resolve("runner") is engine.runner

    async def test_tool_reads_bound_instance(self, make_engine):
        db = {"tea": "green"}
        lookup = define_tool(
            "lookup", "Read a value", LookupArgs,
            lambda args, ctx: ctx.engine.container.resolve("db")[args.key],
        )
        model = ScriptedModel(['<tool_call name="lookup">{"key": "tea"}</tool_call>'])
        engine = await make_engine(
            model,
            tools=[lookup],
            services=[Service(name="db", register=lambda container: container.instance("db", db))],
            conversations=[Conversation(type="chat", max_steps=1)],
        )
        logs = await engine.run("chat", chain=[InputEvent(type="message", content="tea?")])

        result = next(log for log in logs if log.kind == "tool_result")
        assert result.success and result.data == "green"
