#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Пакет scenarios - реестр персонажей, диспетчер событий и сценарии квеста
"""

from .registry import Persona, PersonaRegistry
from .executor import DispatchAction, QuestDispatcher, parse_command
from .auto_register import ScenarioDiscovery, quest_scenario

__all__ = [
    'Persona', 'PersonaRegistry',
    'DispatchAction', 'QuestDispatcher', 'parse_command',
    'ScenarioDiscovery', 'quest_scenario',
]
