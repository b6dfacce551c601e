#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Регистрация сценариев персонажей через декоратор и их обнаружение
"""

import importlib
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List

from quest_dsl import ConfigurationError, PersonaScript


logger = logging.getLogger(__name__)

SCENARIO_MODULES = (
    'scenarios.personas.main_bot',
    'scenarios.personas.liza',
    'scenarios.personas.katya',
)


@dataclass(frozen=True)
class ScenarioFactory:
    """Фабрика сценария персонажа"""
    persona_id: str
    build: Callable[[], PersonaScript]
    module: str


# Каталог фабрик, заполняется декоратором при импорте модулей сценариев
_factories: Dict[str, ScenarioFactory] = {}


def quest_scenario(persona: str):
    """
    Декоратор для регистрации фабрики сценария персонажа

    Использование:
    @quest_scenario(persona="main")
    def create_main_scenario():
        builder = ScriptBuilder("main", "Рассказчик")
        ...
        return builder.build()
    """
    def decorator(func: Callable[[], PersonaScript]):
        if persona in _factories and _factories[persona].module != func.__module__:
            raise ConfigurationError(
                f"Сценарий персонажа '{persona}' уже объявлен в {_factories[persona].module}"
            )
        _factories[persona] = ScenarioFactory(persona_id=persona, build=func, module=func.__module__)
        logger.debug(f"Объявлен сценарий персонажа '{persona}' ({func.__module__})")
        return func

    return decorator


class ScenarioDiscovery:
    """Обнаружение сценариев персонажей"""

    @staticmethod
    def discover(modules=SCENARIO_MODULES) -> Dict[str, ScenarioFactory]:
        """Импортировать модули сценариев и вернуть фабрики по персонажам"""
        for module in modules:
            try:
                importlib.import_module(module)
            except ImportError as e:
                raise ConfigurationError(f"Ошибка импорта сценариев {module}: {e}") from e

        logger.info(f"Обнаружено сценариев: {len(_factories)}")
        return dict(_factories)

    @staticmethod
    def build_all(modules=SCENARIO_MODULES) -> List[PersonaScript]:
        """Построить сценарии всех обнаруженных персонажей"""
        scripts = []
        for persona_id, factory in ScenarioDiscovery.discover(modules).items():
            script = factory.build()
            if script.persona_id != persona_id:
                raise ConfigurationError(
                    f"Фабрика {factory.module} объявлена для '{persona_id}', а строит '{script.persona_id}'"
                )
            scripts.append(script)
        return scripts
