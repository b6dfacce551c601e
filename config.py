#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Конфигурация квеста: YAML-файл с подстановкой переменных окружения
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from quest_dsl import ConfigurationError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'
DEFAULT_MODEL_NAME = 'gemini-2.0-flash'
DEFAULT_FALLBACK_REPLY = 'Хм, я задумался. Попробуй сформулировать иначе.'

_ENV_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}')


@dataclass(frozen=True)
class GenerationConfig:
    """Параметры генерации языковой модели"""
    model_name: str = DEFAULT_MODEL_NAME
    temperature: float = 0.7
    max_output_tokens: int = 512
    timeout_seconds: int = 30


@dataclass(frozen=True)
class EngineSettings:
    """Настройки движка"""
    history_limit: int = 10
    poll_timeout: int = 30


@dataclass(frozen=True)
class BotConfig:
    """Конфигурация одного бота-персонажа"""
    id: str
    token: str
    placeholders: Mapping[str, str] = field(default_factory=dict)
    prompt: str = ""
    fallback_reply: str = DEFAULT_FALLBACK_REPLY


@dataclass(frozen=True)
class QuestConfig:
    """Полная конфигурация квеста"""
    llm_api_key: str
    generation_config: GenerationConfig
    engine: EngineSettings
    bots: Mapping[str, BotConfig]


def expand_env(value: Any) -> Any:
    """Подставить ${VAR} и ${VAR:-default} из окружения"""
    if isinstance(value, str):
        def substitute(match):
            name, default = match.group(1), match.group(2)
            resolved = os.getenv(name, default)
            if resolved is None:
                raise ConfigurationError(f"Переменная окружения {name} не установлена")
            return resolved
        return _ENV_PATTERN.sub(substitute, value)
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Секция '{key}' должна быть словарем")
    return value


def _number(section: Dict[str, Any], key: str, default: Any, kind: type, where: str) -> Any:
    raw = section.get(key, default)
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{where}.{key}: ожидается {kind.__name__}, получено {raw!r}")


def parse_config(data: Optional[Dict[str, Any]]) -> QuestConfig:
    """Разобрать словарь конфигурации"""
    if not isinstance(data, dict):
        raise ConfigurationError("Конфигурация должна быть словарем")

    data = expand_env(data)

    llm_api_key = os.getenv('LLM_API_KEY') or data.get('llm_api_key') or ''
    if not llm_api_key:
        raise ConfigurationError("Не задан llm_api_key (или переменная LLM_API_KEY)")

    generation = _section(data, 'generation_config')
    generation_config = GenerationConfig(
        model_name=str(generation.get('model_name') or DEFAULT_MODEL_NAME),
        temperature=_number(generation, 'temperature', 0.7, float, 'generation_config'),
        max_output_tokens=_number(generation, 'max_output_tokens', 512, int, 'generation_config'),
        timeout_seconds=_number(generation, 'timeout_seconds', 30, int, 'generation_config'),
    )

    engine_section = _section(data, 'engine')
    engine = EngineSettings(
        history_limit=_number(engine_section, 'history_limit', 10, int, 'engine'),
        poll_timeout=_number(engine_section, 'poll_timeout', 30, int, 'engine'),
    )

    bots_section = _section(data, 'bots')
    if not bots_section:
        raise ConfigurationError("Секция 'bots' пуста")

    bots = {}
    for bot_id, raw in bots_section.items():
        if not isinstance(raw, dict):
            raise ConfigurationError(f"bots.{bot_id}: ожидается словарь")
        token = str(raw.get('token') or '')
        if not token:
            raise ConfigurationError(f"bots.{bot_id}: не задан token")
        placeholders = raw.get('placeholders') or {}
        if not isinstance(placeholders, dict):
            raise ConfigurationError(f"bots.{bot_id}.placeholders должен быть словарем")
        bots[bot_id] = BotConfig(
            id=bot_id,
            token=token,
            placeholders={str(key): str(value) for key, value in placeholders.items()},
            prompt=str(raw.get('prompt') or ''),
            fallback_reply=str(raw.get('fallback_reply') or DEFAULT_FALLBACK_REPLY),
        )

    return QuestConfig(
        llm_api_key=llm_api_key,
        generation_config=generation_config,
        engine=engine,
        bots=bots,
    )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> QuestConfig:
    """Загрузить конфигурацию из YAML-файла"""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Файл конфигурации {path} не найден")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Ошибка разбора {path}: {e}")

    config = parse_config(data)
    logger.info(f"Конфигурация загружена из {path}: ботов {len(config.bots)}")
    return config
