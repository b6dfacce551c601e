#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Языковая модель квеста: ответы персонажей и проверка условий сюжета
"""

import asyncio
import logging
from typing import Dict, List, Sequence

import aiohttp

from config import GenerationConfig
from gemini_client import GeminiAuthError, GeminiClient, GeminiError
from interfaces import Resolver
from quest_dsl import CredentialError, ResolverError
from session_store import ChatTurn


logger = logging.getLogger(__name__)

CONDITION_SCHEMA = '{"satisfied": true|false}'


class LanguageModelResolver(Resolver):
    """Resolver поверх Gemini"""

    def __init__(self, client: GeminiClient):
        self.client = client

    @classmethod
    def from_config(cls, api_key: str, generation_config: GenerationConfig) -> 'LanguageModelResolver':
        client = GeminiClient(
            api_key=api_key,
            model=generation_config.model_name,
            timeout_seconds=generation_config.timeout_seconds,
            temperature=generation_config.temperature,
            max_output_tokens=generation_config.max_output_tokens,
        )
        return cls(client)

    async def validate_credentials(self) -> None:
        try:
            await self.client.validate_api_key()
        except GeminiAuthError as e:
            raise CredentialError(str(e)) from e
        except GeminiError as e:
            raise CredentialError(f"Не удалось проверить ключ: {e}") from e
        logger.info(f"Ключ языковой модели подтвержден (модель {self.client.model})")

    @staticmethod
    def build_messages(prompt: str, state: str, history: Sequence[ChatTurn], text: str) -> List[Dict[str, str]]:
        """Собрать сообщения для модели"""
        messages = []
        if prompt:
            messages.append({"role": "system", "content": prompt})
        messages.append({"role": "system", "content": f"Текущий этап истории: {state}"})
        for turn in history:
            messages.append({"role": "assistant" if turn.role == "model" else "user", "content": turn.text})
        messages.append({"role": "user", "content": text})
        return messages

    async def resolve(self, prompt: str, state: str, history: Sequence[ChatTurn], text: str) -> str:
        messages = self.build_messages(prompt, state, history, text)
        try:
            return await self.client.chat(messages)
        except (GeminiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ResolverError(str(e)) from e

    async def check_condition(self, prompt: str, state: str, history: Sequence[ChatTurn],
                              text: str, condition: str) -> bool:
        messages = self.build_messages(prompt, state, history, text)
        messages.append({
            "role": "system",
            "content": (
                "Ты судья квеста. Определи, выполнил ли игрок последним сообщением условие: "
                f"{condition}"
            ),
        })
        try:
            verdict = await self.client.json_chat(messages, CONDITION_SCHEMA)
        except (GeminiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ResolverError(str(e)) from e

        if verdict is None:
            raise ResolverError("Модель вернула некорректный JSON")
        return verdict.get("satisfied") is True

    async def close(self) -> None:
        await self.client.close()
