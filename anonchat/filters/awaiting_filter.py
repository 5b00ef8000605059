from aiogram.filters import BaseFilter
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.database.db import get_user


class AwaitingInput(BaseFilter):
    """Срабатывает, если бот ждет от юзера ввод поля field (хранится в users.awaiting_input)."""

    def __init__(self, field: str):
        self.field = field

    async def __call__(self, message: Message, session: AsyncSession) -> bool:
        user = await get_user(session, message.from_user.id)
        return bool(user and user.awaiting_input == self.field)
