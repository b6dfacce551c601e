#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Хранилище сессий квеста в памяти процесса
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from quest_dsl import STATE_START


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatTurn:
    """Реплика разговора"""
    role: str  # user | model
    text: str


@dataclass
class ChatSession:
    """Сессия чата с персонажем"""
    persona: str
    chat_id: int
    state: str = STATE_START
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    turns: Deque[ChatTurn] = field(default_factory=deque)


class SessionStore:
    """Единственный владелец состояния сессий.

    Сессия создается лениво при первом обращении со состоянием start и живет
    до конца процесса. Все операции атомарны.
    """

    def __init__(self, history_limit: int = 10):
        self.history_limit = history_limit
        self._sessions: Dict[Tuple[str, int], ChatSession] = {}
        self._lock = threading.Lock()

    def _ensure(self, persona: str, chat_id: int) -> ChatSession:
        key = (persona, chat_id)
        session = self._sessions.get(key)
        if session is None:
            session = ChatSession(
                persona=persona,
                chat_id=chat_id,
                turns=deque(maxlen=self.history_limit),
            )
            self._sessions[key] = session
            logger.debug(f"Создана сессия {persona}/{chat_id}")
        return session

    def get_state(self, persona: str, chat_id: int) -> str:
        """Текущее состояние (создает сессию при отсутствии)"""
        with self._lock:
            return self._ensure(persona, chat_id).state

    def set_state(self, persona: str, chat_id: int, new_state: str) -> None:
        """Установить состояние"""
        with self._lock:
            session = self._ensure(persona, chat_id)
            old_state = session.state
            session.state = new_state
            session.updated_at = time.time()
        logger.info(f"Сессия {persona}/{chat_id}: {old_state} -> {new_state}")

    def compare_and_set_state(self, persona: str, chat_id: int, expected: str, new_state: str) -> bool:
        """Установить состояние, только если текущее равно expected"""
        with self._lock:
            session = self._ensure(persona, chat_id)
            if session.state != expected:
                return False
            session.state = new_state
            session.updated_at = time.time()
        logger.info(f"Сессия {persona}/{chat_id}: {expected} -> {new_state}")
        return True

    def touch(self, persona: str, chat_id: int) -> None:
        """Отметить активность в чате"""
        with self._lock:
            self._ensure(persona, chat_id).last_activity = time.time()

    def append_turn(self, persona: str, chat_id: int, role: str, text: str) -> None:
        """Добавить реплику в историю разговора"""
        with self._lock:
            self._ensure(persona, chat_id).turns.append(ChatTurn(role, text))

    def history(self, persona: str, chat_id: int) -> List[ChatTurn]:
        """Последние реплики разговора"""
        with self._lock:
            return list(self._ensure(persona, chat_id).turns)

    def get_session(self, persona: str, chat_id: int) -> Optional[ChatSession]:
        """Снимок сессии без создания"""
        with self._lock:
            session = self._sessions.get((persona, chat_id))
            if session is None:
                return None
            return ChatSession(
                persona=session.persona,
                chat_id=session.chat_id,
                state=session.state,
                created_at=session.created_at,
                updated_at=session.updated_at,
                last_activity=session.last_activity,
                turns=deque(session.turns, maxlen=session.turns.maxlen),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
