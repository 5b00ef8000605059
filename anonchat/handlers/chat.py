import logging
import re
from aiogram import Router, F
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.database.db import get_user
from anonchat.database.models import UserStatus
from anonchat.keyboards.chat_kb import (
    BTN_CANCEL, BTN_NEXT, BTN_REPORT, BTN_SEARCH, BTN_STOP,
    get_in_chat_kb, get_main_kb, get_report_reasons_kb, get_search_kb,
)
from anonchat.services import session as chat_session
from anonchat.services.events import Outcome
from anonchat.services.moderation import submit_report
from anonchat.services.relay import TelegramRelay
from anonchat.utils.errors import StoreError, ValidationError

router = Router()

OUTCOME_TEXTS = {
    Outcome.WAITING: "🔍 Ищем собеседника...",
    Outcome.ALREADY_CHATTING: "Вы уже в чате! Сначала завершите его.",
    Outcome.ALREADY_SEARCHING: "Поиск уже идет, подождите...",
    Outcome.NOT_IN_CHAT: "Вы сейчас не в чате.",
    Outcome.QUOTA_EXCEEDED: "⏳ Лимит «Следующий» на сегодня исчерпан. С премиумом - без ограничений!",
    Outcome.BANNED: "🚫 Ваш аккаунт заблокирован.",
}


# ==========================================
# 1. ПОИСК
# ==========================================
@router.message(F.text == BTN_SEARCH)
@router.message(Command("search"))
async def start_search(message: Message, session: AsyncSession, relay: TelegramRelay):
    user = await get_user(session, message.from_user.id)
    if not user or not user.gender or not user.age:
        await message.answer("Сначала заполните профиль: /start")
        return

    result = await chat_session.search(session, message.from_user.id)
    if result.outcome == Outcome.WAITING:
        await message.answer(OUTCOME_TEXTS[Outcome.WAITING], reply_markup=get_search_kb())
    elif result.outcome != Outcome.MATCHED:
        await message.answer(OUTCOME_TEXTS[result.outcome])

    # Обоим участникам пары сообщение о коннекте шлет relay
    await relay.dispatch(result.events)


# ==========================================
# 2. УПРАВЛЕНИЕ ЧАТОМ (ЗАВЕРШИТЬ / СЛЕДУЮЩИЙ)
# ==========================================
@router.message(F.text.in_({BTN_STOP, BTN_CANCEL}))
@router.message(Command("stop"))
async def stop_chat(message: Message, session: AsyncSession, relay: TelegramRelay):
    result = await chat_session.stop(session, message.from_user.id)

    if result.outcome == Outcome.STOPPED:
        text = "Чат завершен." if result.partner_id else "Поиск отменен."
        await message.answer(text, reply_markup=get_main_kb())
    else:
        await message.answer(OUTCOME_TEXTS[result.outcome], reply_markup=get_main_kb())

    await relay.dispatch(result.events)


@router.message(F.text == BTN_NEXT)
@router.message(Command("next"))
async def next_chat(message: Message, session: AsyncSession, relay: TelegramRelay):
    try:
        result = await chat_session.next_partner(session, message.from_user.id)
    except StoreError as e:
        logging.error(f"Next failed for {message.from_user.id}: {e}")
        # Старая пара могла успеть разорваться - сообщаем собеседнику
        await relay.dispatch(e.events)
        await message.answer("⚠️ Что-то пошло не так. Попробуйте еще раз.", reply_markup=get_main_kb())
        return

    if result.outcome == Outcome.WAITING:
        await message.answer("🔍 Ищем нового собеседника...", reply_markup=get_search_kb())
    elif result.outcome == Outcome.QUOTA_EXCEEDED:
        await message.answer(OUTCOME_TEXTS[Outcome.QUOTA_EXCEEDED], reply_markup=get_in_chat_kb())
    elif result.outcome != Outcome.MATCHED:
        await message.answer(OUTCOME_TEXTS[result.outcome], reply_markup=get_main_kb())

    await relay.dispatch(result.events)


# ==========================================
# 3. ЖАЛОБЫ
# ==========================================
@router.message(F.text == BTN_REPORT)
@router.message(Command("report"))
async def init_report(message: Message, session: AsyncSession):
    user = await get_user(session, message.from_user.id)
    if not user or user.status != UserStatus.CHATTING:
        await message.answer("Пожаловаться можно только на текущего собеседника.")
        return

    await message.answer("Укажите причину жалобы на собеседника:", reply_markup=get_report_reasons_kb())


@router.callback_query(F.data.startswith("rep_"))
async def process_report_reason(callback: CallbackQuery, session: AsyncSession, relay: TelegramRelay):
    reason = callback.data.split("_", 1)[1]
    user = await get_user(session, callback.from_user.id)
    partner_id = user.partner_id if user else None

    try:
        result = await submit_report(session, callback.from_user.id, partner_id, reason)
    except ValidationError:
        await callback.answer("Неизвестная причина жалобы.", show_alert=True)
        return

    if result.outcome == Outcome.INVALID_CONTEXT:
        await callback.answer("Собеседник уже покинул чат.", show_alert=True)
        return

    await callback.answer()
    # Убираем инлайн-кнопки (один раз!)
    await callback.message.edit_text("✅ Спасибо. Жалоба отправлена модераторам.")
    await relay.dispatch(result.events)


# ==========================================
# 4. МАРШРУТИЗАЦИЯ СООБЩЕНИЙ
# ==========================================
SPAM_PATTERN = re.compile(r"(https?://\S+|www\.\S+|t\.me/\S+|@\w+)", re.IGNORECASE)


@router.message()
async def route_message(message: Message, session: AsyncSession, relay: TelegramRelay):
    user_id = message.from_user.id
    user = await get_user(session, user_id)

    if not user or user.status != UserStatus.CHATTING:
        if user and user.status == UserStatus.SEARCHING:
            await message.answer("Поиск еще идет...")
        else:
            await message.answer("Вы не в чате. Нажмите «🔍 Найти собеседника».", reply_markup=get_main_kb())
        return

    text_to_check = message.text or message.caption
    if text_to_check and SPAM_PATTERN.search(text_to_check):
        await message.answer(
            "🚫 <b>Отправка ссылок запрещена!</b>\nВ целях безопасности мы блокируем любые ссылки и Telegram-юзернеймы.",
            parse_mode="HTML"
        )
        return # Сообщение не уйдет собеседнику

    try:
        await relay.relay_message(message, user.partner_id)
    except TelegramAPIError as e:
        logging.error(f"Routing error {user_id} -> {user.partner_id}: {e}")
        result = await chat_session.partner_unreachable(session, user_id)
        await relay.dispatch(result.events)
        return

    await chat_session.record_message(session, user_id)
