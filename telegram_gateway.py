#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Транспорт Telegram: long polling для каждого бота-персонажа и отправка сообщений
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, Mapping, Optional

from telegram import Bot, Update
from telegram.constants import ParseMode
from telegram.error import InvalidToken, NetworkError, RetryAfter, TelegramError

from interfaces import TransportGateway
from quest_dsl import InboundEvent, SenderInfo, TransportBindingError, TransportSendError


logger = logging.getLogger(__name__)

MAX_BACKOFF = 30.0


def update_to_event(persona: str, update: Update) -> Optional[InboundEvent]:
    """Преобразовать Update в событие квеста (только текстовые сообщения)"""
    message = update.message
    if message is None or not message.text or update.effective_chat is None:
        return None

    user = update.effective_user
    sender = SenderInfo(
        user_id=user.id if user else None,
        username=user.username if user else None,
        first_name=user.first_name if user else None,
    )
    return InboundEvent(persona=persona, chat_id=update.effective_chat.id, text=message.text, sender=sender)


class TelegramGateway(TransportGateway):
    """Транспорт на python-telegram-bot: по одному Bot на персонажа"""

    def __init__(self, tokens: Mapping[str, str], poll_timeout: int = 30):
        self.poll_timeout = poll_timeout
        self.bots: Dict[str, Bot] = {persona: Bot(token) for persona, token in tokens.items()}

    def _bot(self, persona: str) -> Bot:
        bot = self.bots.get(persona)
        if bot is None:
            raise TransportSendError(f"Бот для персонажа '{persona}' не настроен")
        return bot

    async def start(self) -> None:
        for persona, bot in self.bots.items():
            try:
                await bot.initialize()
            except InvalidToken as e:
                raise TransportBindingError(f"Неверный токен бота '{persona}': {e}") from e
            except TelegramError as e:
                raise TransportBindingError(f"Не удалось подключить бота '{persona}': {e}") from e
            logger.info(f"✅ Бот '{persona}' подключен как @{bot.username}")

    async def events(self, persona: str) -> AsyncIterator[InboundEvent]:
        bot = self.bots[persona]
        offset = None
        backoff = 1.0

        while True:
            try:
                updates = await bot.get_updates(
                    offset=offset,
                    timeout=self.poll_timeout,
                    allowed_updates=[Update.MESSAGE],
                )
            except RetryAfter as e:
                delay = e.retry_after.total_seconds() if hasattr(e.retry_after, 'total_seconds') else e.retry_after
                logger.warning(f"[{persona}] Flood control, ожидание {delay} сек")
                await asyncio.sleep(float(delay))
                continue
            except NetworkError as e:
                logger.warning(f"[{persona}] Сетевая ошибка polling: {e}, повтор через {backoff} сек")
                await asyncio.sleep(backoff)
                backoff = min(MAX_BACKOFF, backoff * 2)
                continue
            except TelegramError as e:
                logger.error(f"[{persona}] Ошибка polling: {e}, повтор через {backoff} сек")
                await asyncio.sleep(backoff)
                backoff = min(MAX_BACKOFF, backoff * 2)
                continue

            backoff = 1.0
            for update in updates:
                offset = update.update_id + 1
                event = update_to_event(persona, update)
                if event is not None:
                    yield event

    async def send_text(self, persona: str, chat_id: int, text: str, formatted: bool = True) -> None:
        bot = self._bot(persona)
        parse_mode = ParseMode.HTML if formatted else None
        try:
            await bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode)
        except TelegramError as e:
            raise TransportSendError(f"send_message в чат {chat_id}: {e}") from e

    async def send_photo(self, persona: str, chat_id: int, path: str) -> None:
        bot = self._bot(persona)
        try:
            with open(path, 'rb') as photo_file:
                await bot.send_photo(chat_id=chat_id, photo=photo_file)
        except OSError as e:
            raise TransportSendError(f"Файл {path} недоступен: {e}") from e
        except TelegramError as e:
            raise TransportSendError(f"send_photo в чат {chat_id}: {e}") from e

    async def close(self) -> None:
        for persona, bot in self.bots.items():
            try:
                await bot.shutdown()
            except TelegramError as e:
                logger.error(f"Ошибка отключения бота '{persona}': {e}")
