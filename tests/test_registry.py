from __future__ import annotations

import asyncio

import pytest

from quest_dsl import (
    ConfigurationError,
    ScriptBuilder,
    StoryEdge,
    StoryGraph,
    STATE_FINISH,
    STATE_START,
    text,
)
from scenarios.registry import PersonaRegistry


def build_guide_script():
    builder = ScriptBuilder("guide", "Проводник")
    builder.command("hello", steps=[text("Привет от {friend}!")], transition_to="met")
    builder.edge(STATE_START, "met")
    builder.edge("met", STATE_FINISH, condition="игрок называет пароль", reply="Верно, {friend}!")
    builder.on_enter(STATE_FINISH, steps=[text("Финал")])
    return builder.build()


def test_placeholders_are_bound_at_registration() -> None:
    registry = PersonaRegistry()
    persona = registry.register_script(build_guide_script(), {"friend": "@liza"})

    handler = persona.commands["hello"]
    assert handler.bound is True
    assert handler.steps[0].content == "Привет от @liza!"
    assert persona.graph.edge("met", STATE_FINISH).reply == "Верно, @liza!"


def test_missing_placeholder_is_rejected() -> None:
    registry = PersonaRegistry()

    with pytest.raises(ConfigurationError, match="friend"):
        registry.register_script(build_guide_script(), {})
    assert registry.get_persona("guide") is None


def test_cycle_in_story_graph_is_rejected() -> None:
    graph = StoryGraph([
        StoryEdge(STATE_START, "a"),
        StoryEdge("a", "b"),
        StoryEdge("b", "a"),
    ])

    with pytest.raises(ConfigurationError, match="цикл"):
        graph.validate("guide")


def test_finish_must_be_terminal() -> None:
    builder = ScriptBuilder("guide")
    builder.edge(STATE_START, STATE_FINISH)
    builder.edge(STATE_FINISH, "epilogue")

    with pytest.raises(ConfigurationError, match=STATE_FINISH):
        builder.build()


def test_duplicate_edge_is_rejected() -> None:
    registry = PersonaRegistry()
    edges = [StoryEdge(STATE_START, "met"), StoryEdge(STATE_START, "met", condition="снова")]

    with pytest.raises(ConfigurationError, match="дважды"):
        registry.register("guide", {}, {}, {}, edges=edges)


def test_transition_for_unknown_state_is_rejected() -> None:
    registry = PersonaRegistry()

    async def handler(chat_id, sender):
        return None

    with pytest.raises(ConfigurationError, match="nowhere"):
        registry.register("guide", {}, {"nowhere": handler}, {}, edges=[StoryEdge(STATE_START, "met")])


def test_command_requesting_unknown_state_is_rejected() -> None:
    builder = ScriptBuilder("guide")
    builder.command("jump", steps=[text("Прыжок")], transition_to="moon")
    builder.edge(STATE_START, "met")

    with pytest.raises(ConfigurationError, match="moon"):
        PersonaRegistry().register_script(builder.build(), {})


def test_non_callable_handler_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        PersonaRegistry().register("guide", {"broken": "не функция"}, {}, {})


def test_registry_is_read_only_after_freeze() -> None:
    registry = PersonaRegistry()
    registry.register_script(build_guide_script(), {"friend": "@liza"})
    registry.freeze()

    assert registry.frozen is True
    with pytest.raises(ConfigurationError, match="заморожен"):
        registry.register("other", {}, {}, {})
    with pytest.raises(TypeError):
        registry.get_persona("guide").commands["extra"] = None


def test_duplicate_persona_is_rejected() -> None:
    registry = PersonaRegistry()
    registry.register("guide", {}, {}, {})

    with pytest.raises(ConfigurationError, match="уже зарегистрирован"):
        registry.register("guide", {}, {}, {})


def test_unknown_persona_lookup_returns_none() -> None:
    assert PersonaRegistry().get_persona("ghost") is None


def test_statistics_describe_registered_personas() -> None:
    registry = PersonaRegistry()
    registry.register_script(build_guide_script(), {"friend": "@liza"})

    stats = registry.get_statistics()
    assert stats["total_personas"] == 1
    assert stats["personas"]["guide"]["commands"] == ["hello"]
    assert stats["personas"]["guide"]["states"] == ["finish", "met", "start"]


def test_composed_handler_runs_steps_then_next_handler() -> None:
    builder = ScriptBuilder("guide")
    start = builder.command("start", steps=[text("Начало")], transition_to="met")
    builder.command("restart", steps=[text("Сброс")], reset=True, then=start)
    builder.edge(STATE_START, "met")

    persona = PersonaRegistry().register_script(builder.build(), {})

    class RecordingSender:
        def __init__(self):
            self.texts = []

        async def send_text(self, content):
            self.texts.append(content)

    sender = RecordingSender()
    outcome = asyncio.run(persona.commands["restart"](1, sender))

    assert sender.texts == ["Сброс", "Начало"]
    assert outcome.reset is True
    assert outcome.transition_to == "met"
