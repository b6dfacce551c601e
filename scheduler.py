#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Отложенные продолжения сценариев (таймеры с отменой при остановке)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, Optional, Set


logger = logging.getLogger(__name__)


class ContinuationScheduler:
    """Планировщик отложенных продолжений.

    Продолжение - задача, которая ждет delay секунд и затем выполняет
    callback. Ожидание не занимает линию чата. Продолжения можно отменить
    по ключу (например, при сбросе сессии чата), при остановке отменяются все.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._by_key: Dict[Hashable, Set[asyncio.Task]] = {}
        self._closed = False

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]], name: str = "",
                 key: Optional[Hashable] = None) -> asyncio.Task:
        """Запланировать продолжение"""
        if self._closed:
            raise RuntimeError("Планировщик остановлен")

        task = asyncio.create_task(self._fire(delay, callback, name), name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if key is not None:
            self._by_key.setdefault(key, set()).add(task)
            task.add_done_callback(lambda done: self._forget(key, done))
        logger.debug(f"Запланировано продолжение '{name}' через {delay} сек")
        return task

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        tasks = self._by_key.get(key)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._by_key[key]

    async def _fire(self, delay: float, callback: Callable[[], Awaitable[None]], name: str) -> None:
        try:
            await asyncio.sleep(delay)
            await callback()
        except asyncio.CancelledError:
            logger.info(f"Продолжение '{name}' отменено")
            raise
        except Exception:
            logger.exception(f"Ошибка в продолжении '{name}'")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def pending_for(self, key: Hashable) -> int:
        return len(self._by_key.get(key, ()))

    def cancel(self, key: Hashable) -> int:
        """Отменить продолжения, запланированные с ключом key"""
        tasks = [task for task in self._by_key.get(key, ()) if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Отменено продолжений для {key}: {len(tasks)}")
        return len(tasks)

    async def wait_idle(self) -> None:
        """Дождаться завершения всех продолжений"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Отменить все продолжения и закрыть планировщик"""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Отменено продолжений: {len(tasks)}")
