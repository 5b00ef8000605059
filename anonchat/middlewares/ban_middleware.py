from typing import Callable, Dict, Any, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from anonchat.database.db import get_user

BANNED_TEXT = "🚫 <b>Доступ заблокирован.</b>\nПричина: многократные жалобы на нарушение правил."


class BanCheckMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:

        user = getattr(event, "from_user", None)
        session = data.get("session")
        if user and session:
            db_user = await get_user(session, user.id)

            if db_user and db_user.is_banned:
                if isinstance(event, Message):
                    await event.answer(BANNED_TEXT, parse_mode="HTML")
                elif isinstance(event, CallbackQuery):
                    await event.answer(BANNED_TEXT.replace("<b>", "").replace("</b>", ""), show_alert=True)

                return # Прерываем выполнение

        return await handler(event, data)
