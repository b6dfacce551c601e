from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from telegram import Chat, Message, Update, User
from telegram.constants import ParseMode

from quest_dsl import TransportSendError
from telegram_gateway import TelegramGateway, update_to_event


def make_update(text=None) -> Update:
    message = Message(
        message_id=1,
        date=datetime.now(timezone.utc),
        chat=Chat(id=42, type=Chat.PRIVATE),
        from_user=User(id=7, first_name="Аня", is_bot=False, username="anya"),
        text=text,
    )
    return Update(update_id=100, message=message)


def test_text_message_becomes_event() -> None:
    event = update_to_event("liza", make_update("/start@liza_volkova_bot"))

    assert event.persona == "liza"
    assert event.chat_id == 42
    assert event.text == "/start@liza_volkova_bot"
    assert event.sender.user_id == 7
    assert event.sender.username == "anya"


def test_non_text_update_is_skipped() -> None:
    assert update_to_event("liza", make_update(None)) is None
    assert update_to_event("liza", Update(update_id=101)) is None


class RecordingBot:
    def __init__(self) -> None:
        self.calls = []

    async def send_message(self, chat_id, text, parse_mode=None):
        self.calls.append((chat_id, text, parse_mode))


def test_plain_text_is_sent_without_parse_mode() -> None:
    gateway = TelegramGateway({"main": "123456:ABCDEF"})
    bot = RecordingBot()
    gateway.bots["main"] = bot

    async def scenario():
        await gateway.send_text("main", 1, "<b>звезда</b>")
        await gateway.send_text("main", 1, "2 < 3", formatted=False)

    asyncio.run(scenario())

    assert bot.calls == [(1, "<b>звезда</b>", ParseMode.HTML), (1, "2 < 3", None)]


def test_sending_for_unconfigured_persona_fails() -> None:
    gateway = TelegramGateway({"main": "123456:ABCDEF"})

    with pytest.raises(TransportSendError, match="katya"):
        asyncio.run(gateway.send_text("katya", 1, "привет"))
