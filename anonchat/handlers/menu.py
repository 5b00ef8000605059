from aiogram import Router, F
from aiogram.filters import CommandStart, Command, CommandObject
from aiogram.types import Message, CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.config import AGE_MIN, AGE_MAX, DAILY_NEXT_LIMIT
from anonchat.database import db
from anonchat.filters.awaiting_filter import AwaitingInput
from anonchat.keyboards.chat_kb import (
    BTN_HELP, BTN_PREMIUM, BTN_PROFILE, BTN_SETTINGS, get_gender_kb, get_main_kb,
)
from anonchat.services import session as chat_session
from anonchat.services.rate_limiter import remaining_quota
from anonchat.utils.errors import ValidationError

router = Router()

GENDER_TITLES = {"M": "Парни 👨", "F": "Девушки 👩", "any": "Все 🌍"}


@router.message(CommandStart())
async def cmd_start(message: Message, session: AsyncSession):
    user = await db.get_or_create_user(session, message.from_user.id)

    # ОНБОРДИНГ (Если нет пола или возраста)
    if not user.gender:
        await db.set_awaiting_input(session, user.telegram_id, "gender")
        await message.answer("👋 Добро пожаловать! Для начала укажите ваш пол:", reply_markup=get_gender_kb("setgen"))
        return
    if not user.age:
        await db.set_awaiting_input(session, user.telegram_id, "age")
        await message.answer(f"Напишите ваш возраст цифрами ({AGE_MIN}-{AGE_MAX}):")
        return

    await message.answer("👋 Добро пожаловать в Анонимный Чат!\nЖмите «🔍 Найти собеседника», чтобы начать!", reply_markup=get_main_kb())


@router.callback_query(F.data.startswith("setgen_"))
async def process_gender(callback: CallbackQuery, session: AsyncSession):
    gender = callback.data.split("_")[1]
    user = await db.get_or_create_user(session, callback.from_user.id)
    if user.awaiting_input != "gender":
        await callback.answer()
        return

    try:
        await db.set_gender(session, user.telegram_id, gender)
    except ValidationError:
        await callback.answer("Неизвестный пол.", show_alert=True)
        return

    await db.set_awaiting_input(session, user.telegram_id, "age")
    await callback.message.edit_text(f"Отлично! Теперь напишите ваш возраст (цифрой, от {AGE_MIN} до {AGE_MAX}):")
    await callback.answer()


@router.message(AwaitingInput("age"))
async def process_age(message: Message, session: AsyncSession):
    try:
        await db.set_age(session, message.from_user.id, message.text or "")
    except ValidationError:
        await message.answer(f"Пожалуйста, введите реальный возраст цифрами (от {AGE_MIN} до {AGE_MAX}).")
        return

    await message.answer("✅ Регистрация завершена! Приятного общения.", reply_markup=get_main_kb())


@router.message(F.text == BTN_PROFILE)
@router.message(Command("stats"))
async def show_profile(message: Message, session: AsyncSession):
    user = await db.get_or_create_user(session, message.from_user.id)

    gender_emoji = {"M": "👨", "F": "👩"}.get(user.gender, "❔")
    left = remaining_quota(user)
    quota_text = "без ограничений" if left is None else f"{user.next_used_today}/{DAILY_NEXT_LIMIT}"
    stats = await db.get_stats(session)

    text = (
        f"👤 <b>Ваш профиль:</b>\n\n"
        f"Указано: {gender_emoji} | {user.age or '?'} лет\n"
        f"⚡️ Статус: <b>{'👑 Премиум' if user.has_premium else 'Обычный'}</b>\n"
        f"🎯 Поиск: <b>{GENDER_TITLES.get(user.search_gender, 'Все')}, {user.age_min}-{user.age_max}</b>\n\n"
        f"💬 Всего чатов: <b>{user.total_chats}</b>\n"
        f"✉️ Сообщений: <b>{user.total_messages}</b>\n"
        f"➡️ «Следующий» сегодня: <b>{quota_text}</b>\n\n"
        f"🌍 <b>Общая статистика:</b>\n"
        f"👥 Всего пользователей: <b>{stats['users']}</b>\n"
        f"🟢 Сейчас онлайн: <b>{stats['searching'] + stats['chatting']}</b>"
    )
    await message.answer(text, parse_mode="HTML")


@router.message(F.text == BTN_PREMIUM)
async def show_premium_info(message: Message, session: AsyncSession):
    user = await db.get_or_create_user(session, message.from_user.id)

    if user.has_premium:
        until = user.premium_until.strftime('%d.%m.%Y %H:%M') + " (UTC)" if user.premium_until else "бессрочно"
        await message.answer(f"✅ <b>Премиум активен:</b> {until}", parse_mode="HTML")
        return

    await message.answer(
        "👑 <b>Премиум</b>\n\n"
        "• Фильтр по полу собеседника\n"
        "• Фильтр по возрасту\n"
        "• Безлимитный «Следующий»\n\n"
        "Для подключения напишите администратору.",
        parse_mode="HTML"
    )


# ==========================================
# ФИЛЬТР ПОИСКА (действует только с премиумом)
# ==========================================
@router.message(F.text == BTN_SETTINGS)
async def show_settings(message: Message, session: AsyncSession):
    user = await db.get_or_create_user(session, message.from_user.id)
    if not user.has_premium:
        await message.answer("🎯 Фильтры поиска доступны только с премиумом.")
        return

    await message.answer(
        "🎯 Кого вы хотите искать?\n"
        f"Возраст задается командой /agefilter МИН МАКС (сейчас {user.age_min}-{user.age_max}).",
        reply_markup=get_gender_kb("setfilter")
    )


@router.callback_query(F.data.startswith("setfilter_"))
async def process_set_filter(callback: CallbackQuery, session: AsyncSession):
    target = callback.data.split("_")[1]
    try:
        await chat_session.set_filter(session, callback.from_user.id, db.FilterUpdate(search_gender=target))
    except ValidationError:
        await callback.answer("Неизвестный фильтр.", show_alert=True)
        return

    await callback.message.edit_text("✅ Фильтр поиска успешно обновлен!")
    await callback.answer()


@router.message(Command("agefilter"))
async def cmd_age_filter(message: Message, command: CommandObject, session: AsyncSession):
    args = (command.args or "").split()
    if len(args) != 2:
        await message.answer(f"Использование: /agefilter МИН МАКС (от {AGE_MIN} до {AGE_MAX})")
        return

    try:
        age_min, age_max = (db.validate_age(a) for a in args)
        await chat_session.set_filter(
            session, message.from_user.id, db.FilterUpdate(age_min=age_min, age_max=age_max)
        )
    except ValidationError as e:
        await message.answer(f"❌ {e.message}")
        return

    await message.answer(f"✅ Ищем собеседников {age_min}-{age_max} лет.")


@router.message(F.text == BTN_HELP)
@router.message(Command("help"))
async def show_help(message: Message):
    await message.answer(
        "🆘 <b>Как пользоваться:</b>\n\n"
        "/search - найти собеседника\n"
        "/next - следующий собеседник\n"
        "/stop - завершить чат или поиск\n"
        "/report - пожаловаться на собеседника\n"
        "/stats - ваш профиль и статистика",
        parse_mode="HTML"
    )
