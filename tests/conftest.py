from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import BotConfig, EngineSettings, GenerationConfig, QuestConfig  # noqa: E402
from interfaces import Resolver, TransportGateway  # noqa: E402
from quest_dsl import InboundEvent, TransportSendError  # noqa: E402
from scheduler import ContinuationScheduler  # noqa: E402


LIZA_NAME = "@liza_volkova_bot"
MAIN_NAME = "@new_year_star_bot"


class FakeGateway(TransportGateway):
    """Transport that records sends and serves events from in-memory queues."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, int, str, str]] = []
        self.fail_texts: Set[str] = set()
        self.fail_photos: Set[str] = set()
        self.delays: Dict[str, float] = {}
        self.start_error: Optional[Exception] = None
        self.started = False
        self.closed = False
        self._queues: Dict[str, asyncio.Queue] = {}

    def queue(self, persona: str) -> asyncio.Queue:
        if persona not in self._queues:
            self._queues[persona] = asyncio.Queue()
        return self._queues[persona]

    def push(self, persona: str, chat_id: int, text: str) -> InboundEvent:
        event = InboundEvent(persona=persona, chat_id=chat_id, text=text)
        self.queue(persona).put_nowait(event)
        return event

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def events(self, persona: str):
        queue = self.queue(persona)
        while True:
            yield await queue.get()

    async def _delay(self, content: str) -> None:
        for marker, seconds in self.delays.items():
            if marker in content:
                await asyncio.sleep(seconds)

    async def send_text(self, persona: str, chat_id: int, text: str, formatted: bool = True) -> None:
        await self._delay(text)
        if any(marker in text for marker in self.fail_texts):
            raise TransportSendError(f"text rejected: {text[:20]}")
        self.sent.append((persona, chat_id, "text" if formatted else "plain", text))

    async def send_photo(self, persona: str, chat_id: int, path: str) -> None:
        await self._delay(path)
        if path in self.fail_photos:
            raise TransportSendError(f"photo rejected: {path}")
        self.sent.append((persona, chat_id, "photo", path))

    async def close(self) -> None:
        self.closed = True

    def contents(self, persona: Optional[str] = None, chat_id: Optional[int] = None) -> List[str]:
        return [
            content
            for sent_persona, sent_chat, _, content in self.sent
            if (persona is None or sent_persona == persona) and (chat_id is None or sent_chat == chat_id)
        ]


class FakeResolver(Resolver):
    """Resolver with scripted replies and condition verdicts."""

    def __init__(self) -> None:
        self.reply = "Ответ модели"
        self.accepted: Dict[str, Set[str]] = {}
        self.error: Optional[Exception] = None
        self.condition_error: Optional[Exception] = None
        self.credential_error: Optional[Exception] = None
        self.resolve_calls: List[Tuple[str, str]] = []
        self.condition_calls: List[Tuple[str, str]] = []
        self.closed = False

    def accept(self, condition: str, text: str) -> None:
        self.accepted.setdefault(condition, set()).add(text)

    async def validate_credentials(self) -> None:
        if self.credential_error is not None:
            raise self.credential_error

    async def resolve(self, prompt, state, history, text) -> str:
        self.resolve_calls.append((state, text))
        if self.error is not None:
            raise self.error
        return self.reply

    async def check_condition(self, prompt, state, history, text, condition) -> bool:
        self.condition_calls.append((state, text))
        if self.condition_error is not None:
            raise self.condition_error
        return text in self.accepted.get(condition, set())

    async def close(self) -> None:
        self.closed = True


class InstantScheduler(ContinuationScheduler):
    """Scheduler that records requested delays and fires continuations after fire_after seconds."""

    def __init__(self, fire_after: float = 0.0) -> None:
        super().__init__()
        self.fire_after = fire_after
        self.delays: List[float] = []
        self.tasks: List[asyncio.Task] = []

    def schedule(self, delay, callback, name="", key=None):
        self.delays.append(delay)
        task = super().schedule(self.fire_after, callback, name, key=key)
        self.tasks.append(task)
        return task


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


def quest_config(**overrides) -> QuestConfig:
    bots = {
        "main": BotConfig(
            id="main",
            token="main-token",
            placeholders={"liza_bot_name": LIZA_NAME, "main_bot_name": MAIN_NAME},
            fallback_reply="Спроси Лизу",
        ),
        "liza": BotConfig(id="liza", token="liza-token", fallback_reply="Повтори?"),
        "katya": BotConfig(id="katya", token="katya-token", fallback_reply="Напиши позже"),
    }
    bots.update(overrides)
    return QuestConfig(
        llm_api_key="key",
        generation_config=GenerationConfig(),
        engine=EngineSettings(),
        bots={bot_id: bot for bot_id, bot in bots.items() if bot is not None},
    )
