#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Реестр персонажей - центральная регистрация команд, переходов и графов истории
"""

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from quest_dsl import ConfigurationError, PersonaScript, StoryEdge, StoryGraph, STATE_START


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Persona:
    """Персонаж квеста. Неизменяем после построения."""
    id: str
    name: str
    placeholders: Mapping[str, str]
    commands: Mapping[str, Any]
    transitions: Mapping[str, Any]
    graph: StoryGraph = field(default_factory=StoryGraph)
    prompt: str = ""
    fallback_reply: str = ""


class PersonaRegistry:
    """Реестр всех персонажей.

    Заполняется до запуска движка; после freeze() доступен только на чтение
    и не требует блокировок.
    """

    def __init__(self):
        self._personas: Dict[str, Persona] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, persona_id: str, commands: Mapping[str, Any], transitions: Mapping[str, Any],
                 placeholders: Mapping[str, str], edges: List[StoryEdge] = None, name: str = "",
                 prompt: str = "", fallback_reply: str = "") -> Persona:
        """Зарегистрировать персонажа"""
        if self._frozen:
            raise ConfigurationError(f"Реестр заморожен, регистрация '{persona_id}' невозможна")
        if persona_id in self._personas:
            raise ConfigurationError(f"Персонаж '{persona_id}' уже зарегистрирован")

        placeholders = dict(placeholders)
        graph = StoryGraph(self._render_edge(persona_id, edge, placeholders) for edge in edges or [])
        graph.validate(persona_id)

        bound_commands = {
            command: self._bind(persona_id, handler, placeholders, graph)
            for command, handler in commands.items()
        }
        bound_transitions = {}
        for state, handler in transitions.items():
            if state not in graph.states:
                raise ConfigurationError(f"{persona_id}: переход в неизвестное состояние '{state}'")
            bound_transitions[state] = self._bind(persona_id, handler, placeholders, graph)

        persona = Persona(
            id=persona_id,
            name=name or persona_id,
            placeholders=MappingProxyType(placeholders),
            commands=MappingProxyType(bound_commands),
            transitions=MappingProxyType(bound_transitions),
            graph=graph,
            prompt=prompt,
            fallback_reply=fallback_reply,
        )
        self._personas[persona_id] = persona

        logger.info(
            f"Зарегистрирован персонаж '{persona_id}': команд {len(bound_commands)}, "
            f"переходов {len(bound_transitions)}, состояний {len(graph.states)}"
        )
        return persona

    def register_script(self, script: PersonaScript, placeholders: Mapping[str, str],
                        prompt: str = "", fallback_reply: str = "") -> Persona:
        """Зарегистрировать персонажа по сценарию"""
        return self.register(
            script.persona_id,
            commands=script.commands,
            transitions=script.transitions,
            placeholders=placeholders,
            edges=script.edges,
            name=script.name,
            prompt=prompt,
            fallback_reply=fallback_reply,
        )

    def _bind(self, persona_id: str, handler: Any, placeholders: Dict[str, str], graph: StoryGraph) -> Any:
        if not callable(handler):
            raise ConfigurationError(f"{persona_id}: обработчик {handler!r} не вызываемый")

        # Обработчики-данные проверяются и получают значения плейсхолдеров
        if hasattr(handler, 'bind'):
            for target in handler.requested_targets():
                if target not in graph.states:
                    raise ConfigurationError(
                        f"{persona_id}: обработчик '{handler.name}' запрашивает неизвестное состояние '{target}'"
                    )
            return handler.bind(placeholders)
        return handler

    @staticmethod
    def _render_edge(persona_id: str, edge: StoryEdge, placeholders: Mapping[str, str]) -> StoryEdge:
        if not edge.reply:
            return edge
        try:
            return replace(edge, reply=edge.reply.format_map(dict(placeholders)))
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(f"{persona_id}: некорректный шаблон ответа {edge.reply!r}: {e}")

    def freeze(self) -> None:
        """Закрыть реестр для изменений"""
        if not self._frozen:
            self._frozen = True
            logger.info(f"Реестр персонажей заморожен ({len(self._personas)} персонажей)")

    def get_persona(self, persona_id: str) -> Optional[Persona]:
        """Получить персонажа по ID"""
        return self._personas.get(persona_id)

    def persona_ids(self) -> List[str]:
        """ID всех персонажей"""
        return list(self._personas)

    def get_statistics(self) -> Dict[str, Any]:
        """Статистика реестра"""
        return {
            "total_personas": len(self._personas),
            "frozen": self._frozen,
            "personas": {
                persona_id: {
                    "commands": sorted(persona.commands),
                    "transitions": sorted(persona.transitions),
                    "states": sorted(persona.graph.states),
                    "initial_state": STATE_START,
                }
                for persona_id, persona in self._personas.items()
            },
        }
