#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Игровой движок - жизненный цикл, чтение потоков событий персонажей и
последовательная обработка событий каждого чата
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from interfaces import Resolver, TransportGateway
from quest_dsl import InboundEvent
from scenarios.executor import QuestDispatcher
from scenarios.registry import PersonaRegistry
from scheduler import ContinuationScheduler
from session_store import SessionStore


logger = logging.getLogger(__name__)


class EngineState(Enum):
    """Состояния движка"""
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class ChatLane:
    """Линия обработки одного чата: очередь событий и ее обработчик"""
    key: Tuple[str, int]
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: Optional[asyncio.Task] = None
    processed: int = 0


class GameEngine:
    """Движок квеста.

    Для каждого персонажа читает поток событий, для каждой пары
    (персонаж, чат) держит отдельную линию, где события обрабатываются строго
    по порядку поступления. Разные чаты и персонажи не ждут друг друга.
    """

    def __init__(self, registry: PersonaRegistry, store: SessionStore, gateway: TransportGateway,
                 resolver: Resolver):
        self.registry = registry
        self.store = store
        self.gateway = gateway
        self.resolver = resolver
        self.scheduler = ContinuationScheduler()
        self.dispatcher = QuestDispatcher(registry, store, gateway, resolver, self.scheduler)

        self.state = EngineState.INITIALIZING
        self._initialized = False
        self._lanes: Dict[Tuple[str, int], ChatLane] = {}
        self._consumers: List[asyncio.Task] = []
        self._shutdown_event: Optional[asyncio.Event] = None

    async def initialize(self) -> None:
        """Инициализация: заморозка реестра, проверка ключа, подключение транспорта.

        Любая ошибка переводит движок в STOPPED и пробрасывается дальше.
        """
        if self.state is not EngineState.INITIALIZING:
            raise RuntimeError(f"Инициализация невозможна в состоянии {self.state.value}")

        try:
            self.registry.freeze()
            logger.info("Проверка ключа языковой модели...")
            await self.resolver.validate_credentials()
            logger.info("Подключение ботов...")
            await self.gateway.start()
        except BaseException:
            self.state = EngineState.STOPPED
            await self._close_adapters()
            raise

        self._initialized = True
        logger.info("✅ Движок инициализирован")

    async def run(self) -> None:
        """Основной цикл: работает до request_shutdown() или отмены"""
        if self.state is not EngineState.INITIALIZING or not self._initialized:
            raise RuntimeError(f"Запуск невозможен в состоянии {self.state.value}")

        self._shutdown_event = asyncio.Event()
        self.state = EngineState.RUNNING

        for persona_id in self.registry.persona_ids():
            task = asyncio.create_task(self._consume(persona_id), name=f"consume:{persona_id}")
            self._consumers.append(task)

        logger.info(f"🤖 Движок запущен, персонажей: {len(self._consumers)}")

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("Движок отменен")
            await self._shutdown()
            raise

        await self._shutdown()

    def request_shutdown(self) -> None:
        """Запросить остановку (например, по сигналу)"""
        if self._shutdown_event is not None and not self._shutdown_event.is_set():
            logger.info("Получен сигнал остановки")
            self._shutdown_event.set()

    async def _consume(self, persona_id: str) -> None:
        try:
            async for event in self.gateway.events(persona_id):
                self.submit(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Поток событий '{persona_id}' завершился с ошибкой")
        else:
            logger.warning(f"Поток событий '{persona_id}' закрыт")

    def submit(self, event: InboundEvent) -> bool:
        """Поставить событие в линию его чата"""
        if self.state is not EngineState.RUNNING:
            logger.debug(f"Событие {event.persona}/{event.chat_id} отброшено: движок {self.state.value}")
            return False

        key = (event.persona, event.chat_id)
        lane = self._lanes.get(key)
        if lane is None:
            lane = ChatLane(key=key)
            lane.worker = asyncio.create_task(self._drain_lane(lane), name=f"lane:{key[0]}/{key[1]}")
            self._lanes[key] = lane
        lane.queue.put_nowait(event)
        return True

    async def _drain_lane(self, lane: ChatLane) -> None:
        """Обработать очередь чата и освободить линию, когда очередь опустела"""
        while True:
            event = await lane.queue.get()
            try:
                await self.dispatcher.dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Ошибка обработки события в чате {lane.key[0]}/{lane.key[1]}")
            finally:
                lane.processed += 1
                lane.queue.task_done()

            # Между проверкой и удалением нет await, поэтому submit создаст новую линию
            if lane.queue.empty():
                if self._lanes.get(lane.key) is lane:
                    del self._lanes[lane.key]
                logger.debug(f"Линия {lane.key[0]}/{lane.key[1]} освобождена (событий: {lane.processed})")
                return

    async def wait_idle(self) -> None:
        """Дождаться обработки всех поставленных событий и освобождения линий"""
        while self._lanes:
            workers = [lane.worker for lane in self._lanes.values() if lane.worker is not None]
            await asyncio.gather(*workers, return_exceptions=True)

    @property
    def lanes(self) -> int:
        return len(self._lanes)

    async def _shutdown(self) -> None:
        self.state = EngineState.SHUTTING_DOWN
        logger.info("Остановка движка...")

        for task in self._consumers:
            task.cancel()
        await asyncio.gather(*self._consumers, return_exceptions=True)

        workers = [lane.worker for lane in self._lanes.values() if lane.worker is not None]
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        await self.scheduler.cancel_all()
        await self._close_adapters()

        self.state = EngineState.STOPPED
        logger.info(f"Движок остановлен (сессий: {len(self.store)})")

    async def _close_adapters(self) -> None:
        for adapter in (self.gateway, self.resolver):
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"Ошибка закрытия {type(adapter).__name__}: {e}")
