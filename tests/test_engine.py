from __future__ import annotations

import asyncio

import pytest

from conftest import wait_for
from engine import EngineState, GameEngine
from quest_dsl import (
    CredentialError,
    InboundEvent,
    ScriptBuilder,
    TransportBindingError,
    STATE_FINISH,
    STATE_START,
    text,
)
from scenarios.registry import PersonaRegistry
from session_store import SessionStore


def build_engine(gateway, resolver, finish_delay=0.0):
    builder = ScriptBuilder("guide")
    builder.command("one", steps=[text("один")])
    builder.command("two", steps=[text("два")])
    builder.command("three", steps=[text("три")])
    builder.command("go", steps=[text("поехали")], transition_to=STATE_FINISH)
    builder.edge(STATE_START, STATE_FINISH)
    builder.on_enter(STATE_FINISH, steps=[text("конец")], delay=finish_delay)

    registry = PersonaRegistry()
    registry.register_script(builder.build(), {})
    registry.register("echo", {}, {}, {}, fallback_reply="эхо")
    return GameEngine(registry, SessionStore(), gateway, resolver)


async def start_engine(engine):
    await engine.initialize()
    task = asyncio.create_task(engine.run())
    await wait_for(lambda: engine.state is EngineState.RUNNING)
    return task


async def stop_engine(engine, task):
    engine.request_shutdown()
    await asyncio.wait_for(task, timeout=2)


def test_events_of_one_chat_are_handled_in_arrival_order(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)
    gateway.delays["один"] = 0.05

    async def scenario():
        task = await start_engine(engine)
        for command in ("/one", "/two", "/three"):
            gateway.push("guide", 1, command)
        await wait_for(lambda: len(gateway.sent) == 3)
        await stop_engine(engine, task)

    asyncio.run(scenario())

    assert gateway.contents(chat_id=1) == ["один", "два", "три"]
    assert engine.state is EngineState.STOPPED


def test_slow_chat_does_not_block_other_chats(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)
    gateway.delays["один"] = 0.3

    async def scenario():
        task = await start_engine(engine)
        gateway.push("guide", 1, "/one")
        gateway.push("guide", 2, "/two")
        gateway.push("echo", 1, "привет")
        await wait_for(lambda: len(gateway.sent) == 3)
        await engine.wait_idle()
        lanes_after = engine.lanes
        await stop_engine(engine, task)
        return lanes_after

    lanes_after = asyncio.run(scenario())

    assert gateway.sent[-1] == ("guide", 1, "text", "один")
    assert {entry[:2] for entry in gateway.sent[:2]} == {("guide", 2), ("echo", 1)}
    assert ("echo", 1, "plain", "Ответ модели") in gateway.sent
    assert lanes_after == 0


def test_idle_lane_is_released_and_recreated(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)

    async def scenario():
        task = await start_engine(engine)
        gateway.push("guide", 1, "/one")
        await wait_for(lambda: len(gateway.sent) == 1)
        await engine.wait_idle()
        released = engine.lanes
        gateway.push("guide", 1, "/two")
        await wait_for(lambda: len(gateway.sent) == 2)
        await engine.wait_idle()
        await stop_engine(engine, task)
        return released, engine.lanes

    released, lanes_after = asyncio.run(scenario())

    assert released == 0
    assert lanes_after == 0
    assert gateway.contents(chat_id=1) == ["один", "два"]


def test_shutdown_cancels_pending_continuations(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver, finish_delay=30)

    async def scenario():
        task = await start_engine(engine)
        gateway.push("guide", 1, "/go")
        await wait_for(lambda: engine.scheduler.pending == 1)
        await stop_engine(engine, task)
        return engine.scheduler.pending

    pending_after = asyncio.run(scenario())

    assert pending_after == 0
    assert gateway.contents() == ["поехали"]
    assert engine.store.get_state("guide", 1) == STATE_FINISH
    assert engine.state is EngineState.STOPPED
    assert gateway.closed is True
    assert resolver.closed is True


def test_submit_is_rejected_unless_running(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)

    assert engine.submit(InboundEvent(persona="guide", chat_id=1, text="/one")) is False
    assert engine.lanes == 0


def test_initialize_freezes_registry_and_starts_transport(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)

    asyncio.run(engine.initialize())

    assert engine.registry.frozen is True
    assert gateway.started is True
    assert engine.state is EngineState.INITIALIZING


def test_credential_failure_stops_engine(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)
    resolver.credential_error = CredentialError("ключ отклонен")

    with pytest.raises(CredentialError):
        asyncio.run(engine.initialize())

    assert engine.state is EngineState.STOPPED
    assert gateway.started is False
    assert gateway.closed is True
    assert resolver.closed is True


def test_transport_binding_failure_stops_engine(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)
    gateway.start_error = TransportBindingError("неверный токен")

    with pytest.raises(TransportBindingError):
        asyncio.run(engine.initialize())

    assert engine.state is EngineState.STOPPED


def test_run_requires_successful_initialization(gateway, resolver) -> None:
    engine = build_engine(gateway, resolver)

    with pytest.raises(RuntimeError):
        asyncio.run(engine.run())
