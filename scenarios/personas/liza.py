#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Лиза Волкова: ищет пропавшую звезду вместе с игроком
"""

from quest_dsl import ScriptBuilder, STATE_FINISH, STATE_START, text
from ..auto_register import quest_scenario


LIZA_BOT = "liza"
STATE_SEARCHING = "searching"

SEARCH_REPLY = "Правда поможешь?! Спасибо! Звезда пропала из кабинета директора. Что будем делать?"

FINAL_DECISION_TEXT = """Короче, мы поговорили с директрисой и решили, что мы не должны забирать Звезду из больницы перед новым годом.

Тем более, что у них там <b>все начали выздоравливать</b> после того, как она у них появилась.

<b>Там она явно нужнее.</b>

А для Новой Голландии мы найдем другую звезду.

Спасибо тебе за помощь. И с Новым Годом!
"""

FINISH_DELAY = 10

SEARCH_CONDITION = "игрок соглашается помочь Лизе найти пропавшую звезду"
FINISH_CONDITION = (
    "игрок выяснил, что звезда находится в детской больнице у Кати, "
    "и предлагает оставить её там"
)


@quest_scenario(persona=LIZA_BOT)
def create_liza_scenario():
    """Сценарий Лизы"""
    builder = ScriptBuilder(LIZA_BOT, "Лиза")

    builder.edge(STATE_START, STATE_SEARCHING, condition=SEARCH_CONDITION, reply=SEARCH_REPLY)
    builder.edge(STATE_SEARCHING, STATE_FINISH, condition=FINISH_CONDITION)

    builder.on_enter(STATE_FINISH, steps=[text(FINAL_DECISION_TEXT)], delay=FINISH_DELAY)

    return builder.build()
