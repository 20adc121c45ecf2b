"""
Pre-written engagement copy used when the LLM is unavailable.

Pools are keyed by language code. Unknown languages fall back to Russian.
Items are picked by day of year so every recipient sees the same text on a
given day without any per-user state.
"""

from datetime import datetime

from fortune.engagement.timezones import day_of_year

FALLBACK_LANGUAGE = "ru"
SHORT_TEXT_LENGTH = 100

DEFAULT_NAME: dict[str, str] = {
    "ru": "друг",
    "en": "friend",
    "zh": "朋友",
}

MORNING_ADVICE_POOL: dict[str, list[str]] = {
    "ru": [
        "✨ Сегодня хороший день обратить внимание на детали. Иногда самое важное прячется именно в мелочах.",
        "🌟 День несёт в себе новые возможности. Будь открыт к неожиданным поворотам, они могут привести к чему-то прекрасному.",
        "💫 Сегодня стоит прислушаться к своей интуиции, она может подсказать верное направление.",
        "☀️ Хороший момент для начала чего-то нового. Даже маленький шаг это движение вперёд.",
        "✨ Обрати внимание на знаки вокруг себя: вселенная может посылать тебе подсказки.",
        "🌟 Сегодня энергия благоприятствует творчеству и самовыражению. Не бойся быть собой.",
        "💫 День подходит для важных разговоров. Слова найдут отклик в сердцах собеседников.",
    ],
    "en": [
        "✨ Today is a good day to pay attention to details. Sometimes the most important things hide in small things.",
        "🌟 The day brings new opportunities. Be open to unexpected turns, they may lead to something beautiful.",
        "💫 Today is worth listening to your intuition, it may suggest the right direction.",
        "☀️ A good moment to start something new. Even a small step is progress forward.",
        "✨ Pay attention to signs around you: the universe may be sending you hints.",
        "🌟 Today's energy favors creativity and self-expression. Don't be afraid to be yourself.",
        "💫 The day is suitable for important conversations. Words will resonate in the hearts of listeners.",
    ],
    "zh": [
        "✨ 今天是关注细节的好日子。有时最重要的事情就藏在小事里。",
        "🌟 这一天带来新的机会。对意外的转折保持开放，它们可能带来美好的事物。",
        "💫 今天值得倾听你的直觉，它可能会指引正确的方向。",
        "☀️ 开始新事物的好时机。即使是一小步，也是前进。",
        "✨ 注意周围的迹象：宇宙可能正在向你发送提示。",
        "🌟 今天的能量有利于创造力和自我表达。不要害怕做自己。",
        "💫 这一天适合重要的对话。言语会在听众心中产生共鸣。",
    ],
}

EVENING_INSIGHT_POOL: dict[str, list[str]] = {
    "ru": [
        "🌙 Как прошёл день? Надеюсь, ты нашёл время для себя. Отдохни и набирайся сил для завтра ✨",
        "🌙 Вечер это время для рефлексии. Что сегодня принесло тебе радость? Хорошего отдыха 💫",
        "🌙 День подходит к концу. Отпусти всё, что не получилось, и сохрани тёплые моменты. Спокойной ночи ✨",
    ],
    "en": [
        "🌙 How was your day? I hope you found time for yourself. Rest and gather strength for tomorrow ✨",
        "🌙 Evening is a time for reflection. What brought you joy today? Have a good rest 💫",
        "🌙 The day is coming to an end. Let go of what didn't work out and keep the warm moments. Good night ✨",
    ],
    "zh": [
        "🌙 今天过得怎么样？希望你找到了属于自己的时间。好好休息，为明天积蓄力量 ✨",
        "🌙 晚上是反思的时间。今天什么给你带来了快乐？好好休息 💫",
        "🌙 一天即将结束。放下没有成功的事情，保留温暖的时刻。晚安 ✨",
    ],
}

# {name} is substituted by the trigger
INACTIVE_REMINDER_POOL: dict[str, list[str]] = {
    "ru": [
        "☕️ Привет, {name}!\n\nМы скучаем по вам! Не хотите заглянуть в будущее?\n\n"
        "Отправьте фото кофейной гущи, и я раскрою её тайны ✨",
        "☕️ {name}, давно не виделись!\n\nКофейная гуща хранит новые истории.\n\n"
        "Пришлите фото, и узнаем, что она расскажет 🔮",
        "✨ {name}, звёзды напоминают о вас!\n\nСамое время для нового гадания.\n\n"
        "Заварите кофе и отправьте фото чашки ☕️",
    ],
    "en": [
        "☕️ Hi, {name}!\n\nWe miss you! Want to take a peek into the future?\n\n"
        "Send a photo of your coffee grounds and I'll reveal their secrets ✨",
        "☕️ {name}, it's been a while!\n\nThe coffee grounds are keeping new stories.\n\n"
        "Send a photo and let's see what they tell 🔮",
        "✨ {name}, the stars remember you!\n\nIt's a perfect time for a new reading.\n\n"
        "Brew a coffee and send a photo of your cup ☕️",
    ],
    "zh": [
        "☕️ 你好，{name}！\n\n我们想念你！想看看未来吗？\n\n发送咖啡渣的照片，我来揭示它的秘密 ✨",
        "☕️ {name}，好久不见！\n\n咖啡渣里藏着新的故事。\n\n发张照片，看看它会说些什么 🔮",
    ],
}

WEEKLY_CHECKIN_POOL: dict[str, list[str]] = {
    "ru": [
        "🌟 Доброе утро, {name}!\n\nНовая неделя, новые возможности!\n\n"
        "Хотите узнать, что принесёт эта неделя? ☕️",
        "🌟 {name}, с началом недели!\n\nПусть она будет полна приятных сюрпризов.\n\n"
        "Загляните в чашку и узнайте, чего ждать ☕️",
    ],
    "en": [
        "🌟 Good morning, {name}!\n\nA new week means new opportunities!\n\n"
        "Want to know what this week will bring? ☕️",
        "🌟 {name}, happy start of the week!\n\nMay it be full of pleasant surprises.\n\n"
        "Look into your cup and find out what's ahead ☕️",
    ],
    "zh": [
        "🌟 早上好，{name}！\n\n新的一周，新的机会！\n\n想知道这一周会带来什么吗？☕️",
    ],
}

DAILY_FORTUNE_POOL: dict[str, list[str]] = {
    "ru": [
        "Сегодня звёзды благоволят к решительным действиям.\nНе бойтесь делать первый шаг, удача на вашей стороне.",
        "День наполнен возможностями для новых начинаний.\nДоверьтесь своей интуиции.",
        "Сегодня особенно важно прислушаться к своему сердцу.\nОно подскажет верный путь.",
        "Энергия этого дня способствует творчеству и самовыражению.\nПокажите миру свой талант.",
        "Сегодня благоприятный день для общения и новых знакомств.\nБудьте открыты.",
        "День приносит гармонию и равновесие.\nНаслаждайтесь моментом.",
        "Сегодня ваша сила в терпении и настойчивости.\nПродолжайте двигаться к цели.",
    ],
    "en": [
        "Today the stars favor decisive action.\nDon't be afraid to take the first step, luck is on your side.",
        "The day is full of opportunities for new beginnings.\nTrust your intuition.",
        "Today it is especially important to listen to your heart.\nIt will show you the right path.",
        "The energy of this day supports creativity and self-expression.\nShow the world your talent.",
        "Today is a good day for conversations and new acquaintances.\nStay open.",
        "The day brings harmony and balance.\nEnjoy the moment.",
        "Today your strength is in patience and persistence.\nKeep moving toward your goal.",
    ],
}

DAILY_FORTUNE_FRAME: dict[str, tuple[str, str]] = {
    "ru": ("✨ Совет дня", "🌙 Хорошего дня!"),
    "en": ("✨ Advice of the day", "🌙 Have a nice day!"),
}


def pool_for(pools: dict[str, list[str]], language_code: str | None) -> list[str]:
    return pools.get((language_code or "").lower()) or pools[FALLBACK_LANGUAGE]


def pick_for_day(pool: list[str], today: datetime | None = None) -> str:
    return pool[day_of_year(today) % len(pool)]


def default_name(language_code: str | None) -> str:
    return DEFAULT_NAME.get((language_code or "").lower(), DEFAULT_NAME[FALLBACK_LANGUAGE])


def shorten(text: str, limit: int = SHORT_TEXT_LENGTH) -> str:
    """Preview text: cut to limit-3 chars plus an ellipsis when longer than limit."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
