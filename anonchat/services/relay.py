# anonchat/services/relay.py
import logging
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BufferedInputFile, Message
from sqlalchemy.ext.asyncio import async_sessionmaker

from anonchat.keyboards.chat_kb import get_in_chat_kb, get_main_kb
from anonchat.services.events import Event, EventKind
from anonchat.services.session import partner_unreachable
from anonchat.utils.security import strip_exif_data


class TelegramRelay:
    """Доставка событий ядра и сообщений между собеседниками через Telegram."""

    def __init__(self, bot: Bot, session_pool: async_sessionmaker):
        self.bot = bot
        self.session_pool = session_pool

    async def dispatch(self, events: list[Event]):
        dropped = set()
        for event in events:
            pair = frozenset((event.user_id, event.partner_id))
            if event.kind == EventKind.MATCH_FOUND and pair in dropped:
                # Пара уже разорвана, о коннекте не сообщаем
                continue
            if not await self.deliver(event) and event.kind == EventKind.MATCH_FOUND:
                dropped.add(pair)

    async def deliver(self, event: Event) -> bool:
        try:
            if event.kind == EventKind.MATCH_FOUND:
                await self.bot.send_message(
                    event.user_id,
                    "✅ Собеседник найден! Поздоровайтесь.",
                    reply_markup=get_in_chat_kb()
                )
            elif event.kind == EventKind.PARTNER_DISCONNECTED:
                await self.bot.send_message(
                    event.user_id,
                    "Собеседник завершил чат. Возврат в главное меню.",
                    reply_markup=get_main_kb()
                )
            elif event.kind == EventKind.ACCOUNT_BANNED:
                await self.bot.send_message(
                    event.user_id,
                    "🚫 <b>Ваш аккаунт заблокирован!</b>\nВы получили слишком много жалоб.",
                    parse_mode="HTML"
                )
        except TelegramAPIError as e:
            # Повторно не отправляем
            logging.error(f"Delivery of {event.kind.value} to {event.user_id} failed: {e}")
            if event.kind == EventKind.MATCH_FOUND and event.partner_id:
                await self.drop_unreachable(event.partner_id)
            return False
        return True

    async def drop_unreachable(self, user_id: int):
        """Собеседник user_id недоступен: разрываем пару и предупреждаем user_id."""
        async with self.session_pool() as session:
            result = await partner_unreachable(session, user_id)
        await self.dispatch(result.events)

    async def relay_message(self, message: Message, partner_id: int):
        """Пересылает сообщение собеседнику. TelegramAPIError пробрасывается вызывающему."""
        if (
            message.content_type == 'document'
            and message.document.mime_type
            and message.document.mime_type.startswith('image/')
        ):
            # Удаление EXIF из картинок, отправленных файлом
            file_info = await self.bot.get_file(message.document.file_id)
            file_bytes_io = await self.bot.download_file(file_info.file_path)
            safe_bytes = strip_exif_data(file_bytes_io.read())
            input_file = BufferedInputFile(safe_bytes, filename=message.document.file_name or "safe_image.jpg")
            await self.bot.send_document(chat_id=partner_id, document=input_file, caption=message.caption)
        else:
            await message.send_copy(chat_id=partner_id)
