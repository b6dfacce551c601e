#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DSL для описания сценариев квеста: шаги отправки, обработчики команд и переходов,
граф истории персонажа и построитель сценариев
"""

import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple


STATE_START = "start"
STATE_FINISH = "finish"


class QuestError(Exception):
    """Базовая ошибка квеста"""


class ConfigurationError(QuestError):
    """Некорректная конфигурация персонажей, плейсхолдеров или команд"""


class CredentialError(QuestError):
    """Не прошла проверка ключа языковой модели"""


class TransportBindingError(QuestError):
    """Не удалось подключить бота к транспорту"""


class TransportSendError(QuestError):
    """Ошибка отправки сообщения"""


class ResolverError(QuestError):
    """Ошибка или таймаут языковой модели"""


class HandlerLogicError(QuestError):
    """Обработчик сообщил о неустранимой ошибке"""


class SendKind(Enum):
    """Типы исходящих сообщений"""
    TEXT = "text"
    PHOTO = "photo"


@dataclass(frozen=True)
class SenderInfo:
    """Метаданные отправителя входящего сообщения"""
    user_id: Optional[int] = None
    username: Optional[str] = None
    first_name: Optional[str] = None


@dataclass(frozen=True)
class InboundEvent:
    """Входящее событие чата"""
    persona: str
    chat_id: int
    text: str
    sender: SenderInfo = field(default_factory=SenderInfo)
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class HandlerOutcome:
    """Результат обработчика: запрошенный переход и/или сброс в start"""
    transition_to: Optional[str] = None
    reset: bool = False


def template_keys(template: str) -> Set[str]:
    """Имена плейсхолдеров, на которые ссылается шаблон"""
    keys = set()
    for _, field_name, _, _ in string.Formatter().parse(template):
        if field_name:
            keys.add(field_name.split('.')[0].split('[')[0])
    return keys


@dataclass(frozen=True)
class SendStep:
    """Шаг отправки: текст или фото, критичный или best-effort"""
    kind: SendKind
    content: str
    critical: bool = True

    def required_placeholders(self) -> Set[str]:
        if self.kind is SendKind.TEXT:
            return template_keys(self.content)
        return set()

    def render(self, placeholders: Mapping[str, str]) -> 'SendStep':
        if self.kind is not SendKind.TEXT:
            return self
        return replace(self, content=self.content.format_map(dict(placeholders)))


def text(content: str, critical: bool = True) -> SendStep:
    """Шаг отправки текста"""
    return SendStep(SendKind.TEXT, content, critical)


def photo(path: str, critical: bool = True) -> SendStep:
    """Шаг отправки фото"""
    return SendStep(SendKind.PHOTO, path, critical)


class MessageSender(ABC):
    """Возможность отправки сообщений в конкретный чат конкретного персонажа.

    Критичные операции (send_text, send_photo) выбрасывают TransportSendError,
    best-effort операции логируют ошибку и возвращают False.
    formatted=False отправляет текст без HTML-разметки (например, ответ модели).
    """

    @abstractmethod
    async def send_text(self, text: str, formatted: bool = True) -> None:
        pass

    @abstractmethod
    async def send_photo(self, path: str) -> None:
        pass

    @abstractmethod
    async def send_text_best_effort(self, text: str, formatted: bool = True) -> bool:
        pass

    @abstractmethod
    async def send_photo_best_effort(self, path: str) -> bool:
        pass


Handler = Callable[[int, MessageSender], Awaitable[Optional[HandlerOutcome]]]


@dataclass(frozen=True)
class ScriptedHandler:
    """Обработчик команды или перехода, описанный данными.

    Шаги выполняются по порядку; после них по явной композиции вызывается
    обработчик then. Значения плейсхолдеров подставляются в bind() при
    построении реестра и хранятся в шагах как готовый текст.
    """
    name: str
    steps: Tuple[SendStep, ...] = ()
    transition_to: Optional[str] = None
    reset: bool = False
    then: Optional['ScriptedHandler'] = None
    delay: float = 0.0
    bound: bool = False

    def required_placeholders(self) -> Set[str]:
        keys = set()
        for step in self.steps:
            keys |= step.required_placeholders()
        if self.then is not None:
            keys |= self.then.required_placeholders()
        return keys

    def requested_targets(self) -> Set[str]:
        targets = {self.transition_to} if self.transition_to else set()
        if self.then is not None:
            targets |= self.then.requested_targets()
        return targets

    def bind(self, placeholders: Mapping[str, str]) -> 'ScriptedHandler':
        missing = self.required_placeholders() - set(placeholders)
        if missing:
            raise ConfigurationError(
                f"Обработчик '{self.name}' использует неизвестные плейсхолдеры: {sorted(missing)}"
            )
        if self.bound:
            return self
        return replace(
            self,
            steps=tuple(step.render(placeholders) for step in self.steps),
            then=self.then.bind(placeholders) if self.then is not None else None,
            bound=True,
        )

    async def __call__(self, chat_id: int, sender: MessageSender) -> HandlerOutcome:
        for step in self.steps:
            await self._perform(step, sender)

        outcome = HandlerOutcome(transition_to=self.transition_to, reset=self.reset)
        if self.then is None:
            return outcome

        chained = await self.then(chat_id, sender)
        return HandlerOutcome(
            transition_to=chained.transition_to or outcome.transition_to,
            reset=outcome.reset or chained.reset,
        )

    @staticmethod
    async def _perform(step: SendStep, sender: MessageSender) -> None:
        if step.kind is SendKind.PHOTO:
            if step.critical:
                await sender.send_photo(step.content)
            else:
                await sender.send_photo_best_effort(step.content)
        else:
            if step.critical:
                await sender.send_text(step.content)
            else:
                await sender.send_text_best_effort(step.content)


@dataclass(frozen=True)
class StoryEdge:
    """Ребро графа истории.

    condition: описание условия квеста для языковой модели; None означает,
    что переход возможен только по запросу обработчика команды.
    """
    source: str
    target: str
    condition: Optional[str] = None
    reply: Optional[str] = None


class StoryGraph:
    """Ацикличный граф состояний персонажа"""

    def __init__(self, edges: Iterable[StoryEdge] = ()):
        self.edges: Tuple[StoryEdge, ...] = tuple(edges)
        self._outgoing: Dict[str, Tuple[StoryEdge, ...]] = {}
        states = {STATE_START}
        for edge in self.edges:
            states.update((edge.source, edge.target))
            self._outgoing[edge.source] = self._outgoing.get(edge.source, ()) + (edge,)
        self.states = frozenset(states)

    def outgoing(self, state: str) -> Tuple[StoryEdge, ...]:
        return self._outgoing.get(state, ())

    def edge(self, source: str, target: str) -> Optional[StoryEdge]:
        for edge in self.outgoing(source):
            if edge.target == target:
                return edge
        return None

    def has_edge(self, source: str, target: str) -> bool:
        return self.edge(source, target) is not None

    def validate(self, owner: str = "") -> None:
        """Проверить ацикличность и терминальность finish"""
        if self.outgoing(STATE_FINISH):
            raise ConfigurationError(f"{owner}: из состояния '{STATE_FINISH}' не может быть переходов")

        seen = set()
        for edge in self.edges:
            if (edge.source, edge.target) in seen:
                raise ConfigurationError(f"{owner}: переход {edge.source} -> {edge.target} задан дважды")
            seen.add((edge.source, edge.target))

        visiting: Set[str] = set()
        done: Set[str] = set()

        def visit(state: str, path: List[str]) -> None:
            if state in done:
                return
            if state in visiting:
                cycle = " -> ".join(path + [state])
                raise ConfigurationError(f"{owner}: граф истории содержит цикл: {cycle}")
            visiting.add(state)
            for edge in self.outgoing(state):
                visit(edge.target, path + [state])
            visiting.discard(state)
            done.add(state)

        for state in sorted(self.states):
            visit(state, [])


@dataclass
class PersonaScript:
    """Сценарий персонажа до подстановки конфигурации"""
    persona_id: str
    name: str
    commands: Dict[str, Any] = field(default_factory=dict)
    transitions: Dict[str, Any] = field(default_factory=dict)
    edges: List[StoryEdge] = field(default_factory=list)


class ScriptBuilder:
    """Построитель сценариев персонажа"""

    def __init__(self, persona_id: str, name: str = ""):
        self.script = PersonaScript(persona_id=persona_id, name=name or persona_id)

    def command(self, name: str, steps: Iterable[SendStep] = (), transition_to: Optional[str] = None,
                reset: bool = False, then: Optional[ScriptedHandler] = None) -> ScriptedHandler:
        """Добавить команду и вернуть её обработчик для композиции"""
        handler = ScriptedHandler(
            name=f"{self.script.persona_id}:/{name}",
            steps=tuple(steps),
            transition_to=transition_to,
            reset=reset,
            then=then,
        )
        self.script.commands[name] = handler
        return handler

    def custom_command(self, name: str, handler: Handler) -> 'ScriptBuilder':
        """Добавить команду с произвольным обработчиком"""
        self.script.commands[name] = handler
        return self

    def on_enter(self, state: str, steps: Iterable[SendStep] = (), delay: float = 0.0) -> ScriptedHandler:
        """Добавить обработчик входа в состояние"""
        handler = ScriptedHandler(
            name=f"{self.script.persona_id}:{state}",
            steps=tuple(steps),
            delay=delay,
        )
        self.script.transitions[state] = handler
        return handler

    def edge(self, source: str, target: str, condition: Optional[str] = None,
             reply: Optional[str] = None) -> 'ScriptBuilder':
        """Добавить переход в графе истории"""
        self.script.edges.append(StoryEdge(source, target, condition, reply))
        return self

    def build(self) -> PersonaScript:
        """Построить сценарий"""
        graph = StoryGraph(self.script.edges)
        graph.validate(self.script.persona_id)

        for state in self.script.transitions:
            if state not in graph.states:
                raise ConfigurationError(
                    f"{self.script.persona_id}: обработчик перехода для неизвестного состояния '{state}'"
                )

        return self.script
