from aiogram.types import ReplyKeyboardMarkup, KeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from anonchat.services.moderation import REPORT_REASONS

BTN_SEARCH = "🔍 Найти собеседника"
BTN_CANCEL = "⛔ Отменить поиск"
BTN_NEXT = "➡️ Следующий собеседник"
BTN_STOP = "⛔ Завершить чат"
BTN_REPORT = "⚠️ Пожаловаться"
BTN_PROFILE = "👤 Профиль"
BTN_PREMIUM = "👑 Премиум"
BTN_SETTINGS = "⚙️ Настройки"
BTN_HELP = "🆘 Помощь"


def get_main_kb() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text=BTN_SEARCH)],
            [KeyboardButton(text=BTN_PROFILE), KeyboardButton(text=BTN_PREMIUM)],
            [KeyboardButton(text=BTN_SETTINGS), KeyboardButton(text=BTN_HELP)]
        ],
        resize_keyboard=True
    )


def get_search_kb() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=BTN_CANCEL)]],
        resize_keyboard=True
    )


def get_in_chat_kb() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text=BTN_NEXT)],
            [KeyboardButton(text=BTN_STOP), KeyboardButton(text=BTN_REPORT)]
        ],
        resize_keyboard=True
    )


def get_gender_kb(prefix: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.button(text="👨 Парень", callback_data=f"{prefix}_M")
    builder.button(text="👩 Девушка", callback_data=f"{prefix}_F")
    if prefix == "setfilter":
        builder.button(text="🌍 Все", callback_data=f"{prefix}_any")
    builder.adjust(2)
    return builder.as_markup()


def get_report_reasons_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    titles = {
        "spam": "📢 Реклама/спам",
        "insult": "🤬 Оскорбления",
        "nsfw": "🔞 18+",
        "toxic": "☠️ Токсичность",
        "other": "❓ Другое"
    }

    for code in REPORT_REASONS:
        # Формат callback: rep_<причина>. На кого жалоба - берем из текущей пары
        builder.button(text=titles[code], callback_data=f"rep_{code}")

    builder.adjust(2)
    return builder.as_markup()
