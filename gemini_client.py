#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Клиент Gemini generateContent поверх aiohttp
"""

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List, Optional

import aiohttp


logger = logging.getLogger(__name__)

RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}


class GeminiError(RuntimeError):
    """Ошибка запроса к Gemini"""


class GeminiAuthError(GeminiError):
    """Ключ API отклонен"""


class GeminiClient:
    """Клиент generateContent: повторы при временных ошибках, извлечение текста, JSON-ответы.

    Сессия aiohttp создается в start() и закрывается в close().
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int = 30,
        temperature: float = 0.7,
        max_output_tokens: int = 512,
        base_url: str = "https://generativelanguage.googleapis.com",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.max_output_tokens: Optional[int] = int(max_output_tokens) if int(max_output_tokens) > 0 else None
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            raise GeminiError("Сессия aiohttp не запущена")
        return self._session

    def _model_url(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}"

    def _endpoint(self) -> str:
        return f"{self._model_url()}:generateContent"

    def _params(self) -> Dict[str, str]:
        return {"key": self.api_key}

    async def validate_api_key(self) -> None:
        """Проверить ключ запросом описания модели"""
        await self.start()
        session = self._require_session()

        try:
            async with session.get(self._model_url(), params=self._params()) as response:
                if response.status == 200:
                    return
                text = await response.text()
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise GeminiError(f"Gemini недоступен: {exc}") from exc

        if response.status in {400, 401, 403}:
            raise GeminiAuthError(f"Gemini отклонил ключ ({response.status}): {text}")
        if response.status == 404:
            raise GeminiError(f"Модель {self.model} не найдена: {text}")
        raise GeminiError(f"Ошибка Gemini {response.status}: {text}")

    @staticmethod
    def _map_messages(messages: List[Dict[str, str]]) -> Dict[str, Any]:
        system_lines: List[str] = []
        contents: List[Dict[str, Any]] = []

        for message in messages:
            role = str(message.get("role", "")).strip().lower()
            content = str(message.get("content", "")).strip()
            if not content:
                continue
            if role == "system":
                system_lines.append(content)
                continue
            mapped_role = "model" if role in {"assistant", "model"} else "user"
            contents.append({"role": mapped_role, "parts": [{"text": content}]})

        payload: Dict[str, Any] = {"contents": contents}
        if system_lines:
            payload["systemInstruction"] = {
                "parts": [{"text": "\n\n".join(system_lines)}],
            }
        return payload

    async def _request(self, payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        await self.start()
        session = self._require_session()

        last_error: Optional[Exception] = None

        for attempt in range(1, retries + 1):
            try:
                async with session.post(self._endpoint(), params=self._params(), json=payload) as response:
                    text = await response.text()
                    if response.status == 200:
                        return json.loads(text)

                    if response.status not in RETRIABLE_STATUSES:
                        raise GeminiError(f"Ошибка Gemini {response.status}: {text}")
                    last_error = GeminiError(f"Временная ошибка Gemini {response.status}: {text}")
            except asyncio.CancelledError:
                raise
            except GeminiError:
                raise
            except Exception as exc:
                last_error = exc

            if attempt < retries:
                logger.debug(f"Повтор запроса к Gemini ({attempt}/{retries}): {last_error}")
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        raise GeminiError(f"Запрос к Gemini не удался после повторов: {last_error}")

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            prompt_feedback = data.get("promptFeedback") or {}
            block_reason = prompt_feedback.get("blockReason")
            if block_reason:
                raise GeminiError(f"Gemini заблокировал ответ: {block_reason}")
            raise GeminiError("Gemini не вернул вариантов ответа")

        first = candidates[0]
        content = first.get("content") or {}
        parts = content.get("parts") or []
        chunks: List[str] = []

        for part in parts:
            part_text = part.get("text")
            if isinstance(part_text, str) and part_text.strip():
                chunks.append(part_text.strip())

        joined = "\n".join(chunks).strip()
        if joined:
            return joined

        finish_reason = first.get("finishReason")
        if finish_reason:
            raise GeminiError(f"Пустой ответ Gemini (finishReason={finish_reason})")
        raise GeminiError("Пустой ответ Gemini")

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        payload = self._map_messages(messages)
        generation_config: Dict[str, Any] = {
            "temperature": self.temperature if temperature is None else temperature,
        }
        selected_tokens = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        if selected_tokens is not None and int(selected_tokens) > 0:
            generation_config["maxOutputTokens"] = int(selected_tokens)
        payload["generationConfig"] = generation_config
        data = await self._request(payload)
        return self._extract_text(data)

    @staticmethod
    def _strip_json_fences(text: str) -> str:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r"^```(?:json)?", "", cleaned, flags=re.IGNORECASE).strip()
            cleaned = re.sub(r"```$", "", cleaned).strip()
        return cleaned

    async def json_chat(
        self,
        messages: List[Dict[str, str]],
        schema_hint: str,
        temperature: float = 0.1,
        max_output_tokens: int = 200,
    ) -> Optional[Dict[str, Any]]:
        strict_messages = list(messages)
        strict_messages.append(
            {
                "role": "system",
                "content": (
                    "Верни только корректный JSON-объект без markdown и без пояснений. "
                    f"Схема: {schema_hint}"
                ),
            }
        )
        raw = await self.chat(
            strict_messages,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        cleaned = self._strip_json_fences(raw)
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed
