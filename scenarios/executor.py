#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Диспетчер событий - выбор действия для входящего сообщения: команда,
переход по графу истории или ответ языковой модели
"""

import logging
from enum import Enum
from typing import Any, Optional

from interfaces import ChatSender, Resolver, TransportGateway
from quest_dsl import (
    HandlerLogicError,
    HandlerOutcome,
    InboundEvent,
    MessageSender,
    ResolverError,
    StoryEdge,
    TransportSendError,
    STATE_START,
)
from scheduler import ContinuationScheduler
from session_store import SessionStore
from .registry import Persona, PersonaRegistry


logger = logging.getLogger(__name__)


class DispatchAction(Enum):
    """Действие, выбранное для события"""
    COMMAND = "command"
    TRANSITION = "transition"
    FALLBACK = "fallback"
    IGNORED = "ignored"


def parse_command(text: str) -> Optional[str]:
    """Имя команды из текста вида '/name', '/name@bot' или '/name аргументы'"""
    if not text or not text.startswith('/'):
        return None
    token = text.split(maxsplit=1)[0][1:]
    token = token.split('@', 1)[0]
    return token or None


class QuestDispatcher:
    """Диспетчер событий квеста"""

    def __init__(self, registry: PersonaRegistry, store: SessionStore, gateway: TransportGateway,
                 resolver: Resolver, scheduler: ContinuationScheduler = None):
        self.registry = registry
        self.store = store
        self.gateway = gateway
        self.resolver = resolver
        self.scheduler = scheduler or ContinuationScheduler()

    async def dispatch(self, event: InboundEvent) -> DispatchAction:
        """Обработать одно событие"""
        persona = self.registry.get_persona(event.persona)
        if persona is None:
            logger.warning(f"Событие для неизвестного персонажа '{event.persona}' пропущено")
            return DispatchAction.IGNORED

        self.store.touch(persona.id, event.chat_id)
        sender = ChatSender(self.gateway, persona.id, event.chat_id)

        command = parse_command(event.text)
        if command is not None and command in persona.commands:
            await self._run_command(persona, event, command, sender)
            return DispatchAction.COMMAND

        state = self.store.get_state(persona.id, event.chat_id)
        history = self.store.history(persona.id, event.chat_id)
        self.store.append_turn(persona.id, event.chat_id, "user", event.text)

        edge = await self._match_edge(persona, state, history, event)
        if edge is not None:
            await self.apply_transition(persona, event.chat_id, edge.source, edge.target, sender, reply=edge.reply)
            return DispatchAction.TRANSITION

        await self._fallback(persona, state, history, event, sender)
        return DispatchAction.FALLBACK

    async def _run_command(self, persona: Persona, event: InboundEvent, command: str,
                           sender: MessageSender) -> None:
        handler = persona.commands[command]
        logger.info(f"[{persona.id}/{event.chat_id}] Команда /{command}")

        outcome = await self._invoke(persona, event.chat_id, f"/{command}", handler, sender)
        if outcome is None:
            return

        if outcome.reset:
            # Отложенные продолжения прежней сессии не должны сработать после сброса
            self.scheduler.cancel((persona.id, event.chat_id))
            self.store.set_state(persona.id, event.chat_id, STATE_START)

        if outcome.transition_to:
            source = self.store.get_state(persona.id, event.chat_id)
            if not persona.graph.has_edge(source, outcome.transition_to):
                logger.warning(
                    f"[{persona.id}/{event.chat_id}] Команда /{command} запросила недопустимый переход "
                    f"{source} -> {outcome.transition_to}"
                )
                return
            await self.apply_transition(persona, event.chat_id, source, outcome.transition_to, sender)

    async def _invoke(self, persona: Persona, chat_id: int, label: str, handler: Any,
                      sender: MessageSender) -> Optional[HandlerOutcome]:
        """Вызвать обработчик; None означает прерванную цепочку"""
        try:
            outcome = await handler(chat_id, sender)
        except TransportSendError as e:
            logger.error(f"[{persona.id}/{chat_id}] Цепочка {label} прервана: критичная отправка не удалась: {e}")
            return None
        except HandlerLogicError as e:
            logger.error(f"[{persona.id}/{chat_id}] Обработчик {label} сообщил об ошибке: {e}")
            return None
        return outcome or HandlerOutcome()

    async def _match_edge(self, persona: Persona, state: str, history: list,
                          event: InboundEvent) -> Optional[StoryEdge]:
        """Найти переход, условие которого выполнено свободным текстом"""
        for edge in persona.graph.outgoing(state):
            if not edge.condition:
                continue
            try:
                satisfied = await self.resolver.check_condition(
                    persona.prompt, state, history, event.text, edge.condition
                )
            except ResolverError as e:
                logger.warning(
                    f"[{persona.id}/{event.chat_id}] Не удалось проверить условие {edge.source} -> {edge.target}: {e}"
                )
                continue
            if satisfied:
                return edge
        return None

    async def apply_transition(self, persona: Persona, chat_id: int, source: str, target: str,
                               sender: MessageSender, reply: Optional[str] = None) -> bool:
        """Перевести сессию в target и запустить обработчик перехода.

        Состояние обновляется до вызова обработчика, поэтому последующие события
        видят новое состояние, даже если обработчик отложен.
        """
        if not self.store.compare_and_set_state(persona.id, chat_id, source, target):
            logger.warning(f"[{persona.id}/{chat_id}] Переход {source} -> {target} отклонен: состояние изменилось")
            return False

        handler = persona.transitions.get(target)
        if handler is None:
            if reply:
                await sender.send_text_best_effort(reply)
            return True

        delay = getattr(handler, 'delay', 0) or 0
        if delay > 0:
            async def continuation():
                current = self.store.get_state(persona.id, chat_id)
                if current != target:
                    logger.info(
                        f"[{persona.id}/{chat_id}] Отложенный переход в '{target}' пропущен: состояние '{current}'"
                    )
                    return
                await self._run_transition(persona, chat_id, source, target, handler, sender)

            self.scheduler.schedule(delay, continuation, name=f"{persona.id}/{chat_id}:{target}",
                                    key=(persona.id, chat_id))
        else:
            await self._run_transition(persona, chat_id, source, target, handler, sender)
        return True

    async def _run_transition(self, persona: Persona, chat_id: int, source: str, target: str,
                              handler: Any, sender: MessageSender) -> None:
        outcome = await self._invoke(persona, chat_id, target, handler, sender)
        if outcome is None:
            if self.store.compare_and_set_state(persona.id, chat_id, target, source):
                logger.info(f"[{persona.id}/{chat_id}] Состояние возвращено в '{source}'")
            return

        if outcome.transition_to and persona.graph.has_edge(target, outcome.transition_to):
            await self.apply_transition(persona, chat_id, target, outcome.transition_to, sender)

    async def _fallback(self, persona: Persona, state: str, history: list, event: InboundEvent,
                        sender: MessageSender) -> None:
        """Ответ языковой модели; состояние сессии не меняется"""
        try:
            reply = await self.resolver.resolve(persona.prompt, state, history, event.text)
        except ResolverError as e:
            logger.warning(f"[{persona.id}/{event.chat_id}] Языковая модель недоступна: {e}")
            reply = ""

        if not reply:
            reply = persona.fallback_reply
        if not reply:
            return

        # Текст модели отправляется как есть, без HTML-разметки
        if await sender.send_text_best_effort(reply, formatted=False):
            self.store.append_turn(persona.id, event.chat_id, "model", reply)
