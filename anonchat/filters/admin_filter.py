from aiogram.filters import BaseFilter
from aiogram.types import Message, CallbackQuery

from anonchat.config import ADMIN_IDS


class IsAdmin(BaseFilter):
    async def __call__(self, event: Message | CallbackQuery) -> bool:
        # Список ID админов берется из .env (например: ADMIN_IDS=123456789,987654321)
        return event.from_user.id in ADMIN_IDS
