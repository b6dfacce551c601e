#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Рассказчик: вступление к квесту, перезапуск и финал
"""

from quest_dsl import ScriptBuilder, STATE_FINISH, STATE_START, photo, text
from ..auto_register import quest_scenario


MAIN_BOT = "main"
STATE_INVESTIGATION = "investigation"

INTRO_PHOTO = "photos/main_bot_photo1.png"

INTRO_TEXT = """
<b>7 января 1852 года</b> в Санкт-Петербурге в помещении Екатерининского вокзала была наряжена <b>первая в России</b> общественная ёлка.

После этого традиция наряжать ёлки для всех желающих распространилась по всей стране.

После реконструкции в 2011 году большую новогоднюю ёлку стали устанавливать в <a href="https://maps.app.goo.gl/Py7phmbcyQGXZiKbA">Новой Голландии</a>.

По легенде в <a href="https://maps.app.goo.gl/N7fa6cPezFXHHTFy8">Гимназии Петербургской культуры № 32</a> хранится <b>та самая звезда</b>, которая была зажжена на той первой ёлке, и которая дала начало новогодней традиции во всей стране.

Каждый год с момента реконструкции Новой Голландии Гимназия участвует в торжественном зажжении новогодней ёлки и передает свою драгоценную звезду для украшения, как символ волшебства и преемственности традиций.

Ученица 8-го класса Гимназии Лиза Волкова в этом году назначена ответственной за организацию торжественного в этом году. Она хотела, чтобы все прошло идеально.

<b>Но звезда внезапно пропала!</b>

Сможешь ли ты понять где она, кто её взял и как её вернуть?

Напиши Лизе! Ей очень нужна твоя помощь. До праздника остаются считанные дни!

{liza_bot_name}
"""

HELPER_TEXT = """
<i>Если что-то будет не понятно и не получаться, ты можешь задать свой вопрос здесь и я попробую тебе помочь.
Но будет намного интереснее додуматься до решения самостоятельно.</i>
"""

RESTART_TEXT = "Игра перезапущена"

FINAL_TEXT = """
Вот как иногда бывает, если очень сильно верить в чудо, оно может произойти.

Сегодня ты не просто помог найти пропавшую звезду, но и стал свидетелем начала новой доброй традиции.

<b>С наступающим Новым Годом!</b>
"""

SHARE_TEXT = """
Понравился квест?

Поделись с другом ссылкой на этого бота, чтобы он тоже смог поиграть: {main_bot_name}
"""

FINISH_DELAY = 10

FINISH_CONDITION = (
    "игрок рассказывает, что звезда нашлась в детской больнице у Кати "
    "и что её решили оставить там до Нового года"
)


@quest_scenario(persona=MAIN_BOT)
def create_main_scenario():
    """Сценарий рассказчика"""
    builder = ScriptBuilder(MAIN_BOT, "Рассказчик")

    start = builder.command(
        "start",
        steps=[
            photo(INTRO_PHOTO, critical=False),
            text(INTRO_TEXT),
            text(HELPER_TEXT, critical=False),
        ],
        transition_to=STATE_INVESTIGATION,
    )
    builder.command("restart", steps=[text(RESTART_TEXT, critical=False)], reset=True, then=start)

    builder.edge(STATE_START, STATE_INVESTIGATION)
    builder.edge(STATE_INVESTIGATION, STATE_FINISH, condition=FINISH_CONDITION)

    builder.on_enter(
        STATE_FINISH,
        steps=[text(FINAL_TEXT, critical=False), text(SHARE_TEXT, critical=False)],
        delay=FINISH_DELAY,
    )

    return builder.build()
