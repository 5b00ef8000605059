from aiogram import Router, F, Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.database import db
from anonchat.filters.admin_filter import IsAdmin
from anonchat.keyboards.admin_kb import get_admin_main_kb
from anonchat.services import session as chat_session
from anonchat.services.relay import TelegramRelay

# Ни один хендлер в этом роутере не сработает для обычного юзера
router = Router()
router.message.filter(IsAdmin())
router.callback_query.filter(IsAdmin())

ADMIN_HELP = (
    "🛠 <b>Панель администратора</b>\n\n"
    "/ban ID - забанить\n"
    "/unban ID - разбанить и обнулить жалобы\n"
    "/premium ID ДНИ - выдать премиум (0 - снять)"
)


def parse_args(command: CommandObject, count: int) -> list[int] | None:
    args = (command.args or "").split()
    if len(args) != count or not all(a.isdigit() for a in args):
        return None
    return [int(a) for a in args]


@router.message(Command("admin"))
async def cmd_admin(message: Message):
    await message.answer(ADMIN_HELP, reply_markup=get_admin_main_kb(), parse_mode="HTML")


@router.callback_query(F.data == "admin_cancel")
async def admin_cancel(callback: CallbackQuery):
    await callback.message.edit_text("Вы вышли из режима администрирования.")
    await callback.answer()


# ==========================================
# СТАТИСТИКА
# ==========================================
@router.callback_query(F.data == "admin_stats")
async def show_statistics(callback: CallbackQuery, session: AsyncSession):
    stats = await db.get_stats(session)

    text = (
        f"📊 <b>Статистика:</b>\n\n"
        f"👥 Всего пользователей: <b>{stats['users']}</b>\n"
        f"👑 Активных премиум: <b>{stats['premium']}</b>\n"
        f"🚫 В бане: <b>{stats['banned']}</b>\n"
        f"⚠️ Всего жалоб: <b>{stats['reports']}</b>\n\n"
        f"⚡️ <b>Прямо сейчас:</b>\n"
        f"В поиске: <b>{stats['searching']}</b>\n"
        f"Активных чатов: <b>{stats['chatting'] // 2}</b>"
    )

    await callback.message.edit_text(text, parse_mode="HTML", reply_markup=get_admin_main_kb())
    await callback.answer()


# ==========================================
# БАН / РАЗБАН / ПРЕМИУМ
# ==========================================
@router.message(Command("ban"))
async def cmd_ban(message: Message, command: CommandObject, session: AsyncSession, bot: Bot, relay: TelegramRelay):
    args = parse_args(command, 1)
    if not args:
        await message.answer("Использование: /ban ID")
        return

    target_id = args[0]
    if not await db.set_banned(session, target_id, True):
        await message.answer("Пользователь не найден в БД.")
        return

    # Забаненный сам "стоп" не нажмет - закрываем его чат или поиск
    result = await chat_session.stop(session, target_id)
    await relay.dispatch(result.events)

    try:
        await bot.send_message(target_id, "🚫 Администратор заблокировал ваш аккаунт.")
    except TelegramAPIError:
        pass # Юзер заблокировал бота

    await message.answer(f"✅ Пользователь <code>{target_id}</code> забанен.", parse_mode="HTML")


@router.message(Command("unban"))
async def cmd_unban(message: Message, command: CommandObject, session: AsyncSession, bot: Bot):
    args = parse_args(command, 1)
    if not args:
        await message.answer("Использование: /unban ID")
        return

    target_id = args[0]
    if not await db.unban_user(session, target_id):
        await message.answer("Пользователь не найден в БД.")
        return

    try:
        await bot.send_message(
            target_id,
            "✅ <b>Ваш аккаунт был разблокирован администратором!</b>\n"
            "Вы снова можете искать собеседников. Пожалуйста, соблюдайте правила.",
            parse_mode="HTML"
        )
    except TelegramAPIError:
        pass

    await message.answer(f"✅ Пользователь <code>{target_id}</code> разбанен, жалобы обнулены.", parse_mode="HTML")


@router.message(Command("premium"))
async def cmd_premium(message: Message, command: CommandObject, session: AsyncSession, bot: Bot):
    args = parse_args(command, 2)
    if not args:
        await message.answer("Использование: /premium ID ДНИ")
        return

    target_id, days = args
    if not await db.set_premium(session, target_id, days):
        await message.answer("Пользователь не найден в БД.")
        return

    if days:
        user_msg = f"👑 <b>Поздравляем!</b>\nАдминистратор выдал вам премиум на {days} дней!"
        admin_msg = f"✅ Пользователю <code>{target_id}</code> выдан премиум на <b>{days} дней</b>."
    else:
        user_msg = "❌ Ваш премиум был аннулирован администратором."
        admin_msg = f"❌ Премиум у <code>{target_id}</code> аннулирован."

    try:
        await bot.send_message(target_id, user_msg, parse_mode="HTML")
    except TelegramAPIError:
        pass

    await message.answer(admin_msg, parse_mode="HTML")
