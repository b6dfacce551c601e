#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Катя: девочка из детской больницы, у которой оказалась звезда
"""

from quest_dsl import ScriptBuilder, STATE_FINISH, STATE_START, photo, text
from ..auto_register import quest_scenario


KATYA_BOT = "katya"
STATE_TALKING = "talking"

STAR_PHOTO = "photos/katya_zvezda_school.png"
CHRISTMAS_TREE_PHOTO = "photos/katya_elka_noch.png"

TALKING_REPLY = "Привет! Я Катя, я сейчас в больнице. А ты откуда про меня знаешь?"

FINAL_REPLICA = (
    "Привет, ты не поверишь! Сейчас пришел мой доктор и сказал, что меня смогут выписать перед Новым Годом! "
    "Это настоящее новогоднее чудо! Может быть это звезда помогла!"
)

FINISH_DELAY = 20

TALKING_CONDITION = "игрок здоровается с Катей или спрашивает её о звезде"
FINISH_CONDITION = "игрок говорит Кате, что звезда может остаться у неё в больнице"


@quest_scenario(persona=KATYA_BOT)
def create_katya_scenario():
    """Сценарий Кати"""
    builder = ScriptBuilder(KATYA_BOT, "Катя")

    builder.command("sendStarPhoto", steps=[photo(STAR_PHOTO)])
    builder.command("sendChristmasTreePhoto", steps=[photo(CHRISTMAS_TREE_PHOTO)])

    builder.edge(STATE_START, STATE_TALKING, condition=TALKING_CONDITION, reply=TALKING_REPLY)
    builder.edge(STATE_TALKING, STATE_FINISH, condition=FINISH_CONDITION)

    builder.on_enter(STATE_FINISH, steps=[text(FINAL_REPLICA)], delay=FINISH_DELAY)

    return builder.build()
