#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Система инициализации и запуска квеста
"""

import asyncio
import logging
import signal
from typing import Any, Dict, Optional

from config import QuestConfig
from engine import EngineState, GameEngine
from interfaces import Resolver, TransportGateway
from quest_dsl import ConfigurationError, QuestError
from scenarios.auto_register import ScenarioDiscovery
from scenarios.registry import PersonaRegistry
from session_store import SessionStore


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INIT_FAILED = 1


def build_registry(config: QuestConfig) -> PersonaRegistry:
    """Построить и заморозить реестр персонажей по сценариям и конфигурации"""
    registry = PersonaRegistry()

    for script in ScenarioDiscovery.build_all():
        bot = config.bots.get(script.persona_id)
        if bot is None:
            raise ConfigurationError(f"Нет конфигурации бота для персонажа '{script.persona_id}'")
        registry.register_script(script, bot.placeholders, prompt=bot.prompt, fallback_reply=bot.fallback_reply)

    # Боты без сценария отвечают только через языковую модель
    for bot_id, bot in config.bots.items():
        if registry.get_persona(bot_id) is None:
            logger.warning(f"Для бота '{bot_id}' нет сценария, он будет отвечать только через языковую модель")
            registry.register(bot_id, {}, {}, bot.placeholders, prompt=bot.prompt,
                              fallback_reply=bot.fallback_reply)

    registry.freeze()
    return registry


class QuestBootstrap:
    """Инициализация квеста: реестр, языковая модель, транспорт, движок"""

    def __init__(self, config: QuestConfig, gateway: TransportGateway = None, resolver: Resolver = None):
        self.config = config
        self.gateway = gateway
        self.resolver = resolver
        self.registry: Optional[PersonaRegistry] = None
        self.engine: Optional[GameEngine] = None

        self.init_stats = {
            "personas_loaded": 0,
            "errors": [],
            "warnings": []
        }

    async def initialize(self) -> Dict[str, Any]:
        """Полная инициализация. Любая ошибка фатальна."""
        try:
            logger.info("Начинаем инициализацию квеста...")

            # 1. Реестр персонажей
            self.registry = build_registry(self.config)
            self.init_stats["personas_loaded"] = len(self.registry.persona_ids())

            # 2. Внешние сервисы
            if self.resolver is None:
                from resolver import LanguageModelResolver
                self.resolver = LanguageModelResolver.from_config(
                    self.config.llm_api_key, self.config.generation_config
                )
            if self.gateway is None:
                from telegram_gateway import TelegramGateway
                self.gateway = TelegramGateway(
                    {bot_id: bot.token for bot_id, bot in self.config.bots.items()},
                    poll_timeout=self.config.engine.poll_timeout,
                )

            # 3. Движок: проверка ключа и подключение ботов
            store = SessionStore(history_limit=self.config.engine.history_limit)
            self.engine = GameEngine(self.registry, store, self.gateway, self.resolver)
            await self.engine.initialize()

            logger.info("Квест успешно инициализирован")
            return {
                "success": True,
                "stats": self.init_stats
            }

        except QuestError as e:
            logger.error(f"Критическая ошибка инициализации ({type(e).__name__}): {e}")
            self.init_stats["errors"].append(str(e))
        except Exception as e:
            logger.exception(f"Непредвиденная ошибка инициализации: {e}")
            self.init_stats["errors"].append(str(e))

        if self.engine is None:
            await self._close_adapters()
        return {
            "success": False,
            "error": self.init_stats["errors"][-1],
            "stats": self.init_stats
        }

    async def _close_adapters(self) -> None:
        for adapter in (self.gateway, self.resolver):
            if adapter is not None:
                try:
                    await adapter.close()
                except Exception as e:
                    logger.error(f"Ошибка закрытия {type(adapter).__name__}: {e}")

    def get_initialization_report(self) -> str:
        """Получить отчет об инициализации"""
        report = "🚀 Отчет об инициализации квеста\n\n"

        if self.registry is not None:
            stats = self.registry.get_statistics()
            report += f"✅ Загружено персонажей: {stats['total_personas']}\n"
            for persona_id, info in stats["personas"].items():
                commands = ", ".join(f"/{c}" for c in info["commands"]) or "нет"
                report += f"• {persona_id}: команды {commands}; состояния {', '.join(info['states'])}\n"

        if self.init_stats["errors"]:
            report += f"\n❌ Ошибки ({len(self.init_stats['errors'])}):\n"
            for error in self.init_stats["errors"]:
                report += f"• {error}\n"
        else:
            report += "\n🎉 Квест готов к работе!"

        return report


class QuestLauncher:
    """Запуск квеста с обработкой сигналов остановки"""

    def __init__(self, config: QuestConfig, gateway: TransportGateway = None, resolver: Resolver = None):
        self.bootstrap = QuestBootstrap(config, gateway=gateway, resolver=resolver)

    async def launch(self) -> int:
        """Запустить квест и вернуть код выхода"""
        init_result = await self.bootstrap.initialize()
        logger.info(self.bootstrap.get_initialization_report())

        if not init_result["success"]:
            return EXIT_INIT_FAILED

        engine = self.bootstrap.engine
        self._install_signal_handlers(engine)

        try:
            await engine.run()
        finally:
            self._remove_signal_handlers()

        logger.info("Квест остановлен")
        return EXIT_OK if engine.state is EngineState.STOPPED else EXIT_INIT_FAILED

    def _install_signal_handlers(self, engine: GameEngine) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, engine.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Windows: остановка через KeyboardInterrupt
                pass

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
