#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Интерфейсы внешних сервисов квеста: транспорт сообщений и языковая модель
"""

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Sequence

from quest_dsl import InboundEvent, MessageSender, TransportSendError
from session_store import ChatTurn


logger = logging.getLogger(__name__)


class TransportGateway(ABC):
    """Транспорт сообщений: поток входящих событий и отправка по персонажам"""

    @abstractmethod
    async def start(self) -> None:
        """Подключить всех ботов"""
        pass

    @abstractmethod
    def events(self, persona: str) -> AsyncIterator[InboundEvent]:
        """Бесконечный поток входящих событий персонажа"""
        pass

    @abstractmethod
    async def send_text(self, persona: str, chat_id: int, text: str, formatted: bool = True) -> None:
        """Отправить текст: HTML-разметка при formatted, иначе как есть (TransportSendError при ошибке)"""
        pass

    @abstractmethod
    async def send_photo(self, persona: str, chat_id: int, path: str) -> None:
        """Отправить фото (TransportSendError при ошибке)"""
        pass

    async def close(self) -> None:
        """Закрыть соединения"""
        pass


class Resolver(ABC):
    """Языковая модель для ответов на свободный текст"""

    @abstractmethod
    async def validate_credentials(self) -> None:
        """Проверить ключ (CredentialError при ошибке)"""
        pass

    @abstractmethod
    async def resolve(self, prompt: str, state: str, history: Sequence[ChatTurn], text: str) -> str:
        """Ответ на свободный текст (ResolverError при ошибке)"""
        pass

    @abstractmethod
    async def check_condition(self, prompt: str, state: str, history: Sequence[ChatTurn],
                              text: str, condition: str) -> bool:
        """Выполнено ли условие квеста (ResolverError при ошибке)"""
        pass

    async def close(self) -> None:
        """Освободить ресурсы"""
        pass


class ChatSender(MessageSender):
    """Отправитель, привязанный к паре (персонаж, чат)"""

    def __init__(self, gateway: TransportGateway, persona: str, chat_id: int):
        self.gateway = gateway
        self.persona = persona
        self.chat_id = chat_id

    async def send_text(self, text: str, formatted: bool = True) -> None:
        await self.gateway.send_text(self.persona, self.chat_id, text, formatted=formatted)

    async def send_photo(self, path: str) -> None:
        await self.gateway.send_photo(self.persona, self.chat_id, path)

    async def send_text_best_effort(self, text: str, formatted: bool = True) -> bool:
        try:
            await self.send_text(text, formatted=formatted)
            return True
        except TransportSendError as e:
            logger.error(f"[{self.persona}/{self.chat_id}] Не удалось отправить текст: {e}")
            return False

    async def send_photo_best_effort(self, path: str) -> bool:
        try:
            await self.send_photo(path)
            return True
        except TransportSendError as e:
            logger.error(f"[{self.persona}/{self.chat_id}] Не удалось отправить фото {path}: {e}")
            return False
