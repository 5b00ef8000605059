from typing import Any, Awaitable, Callable, Dict
import redis.asyncio as redis
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message

# Настройки лимитов: максимум 3 сообщения за 2 секунды
RATE_LIMIT = 3
TIME_WINDOW = 2


class ThrottlingMiddleware(BaseMiddleware):
    def __init__(self, redis_client: redis.Redis, rate_limit: int = RATE_LIMIT, time_window: int = TIME_WINDOW):
        super().__init__()
        self.redis = redis_client
        self.rate_limit = rate_limit
        self.time_window = time_window

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:

        # Нас интересуют только сообщения (текст, фото, стикеры и т.д.)
        if not isinstance(event, Message) or not event.from_user:
            return await handler(event, data)

        redis_key = f"throttle:{event.from_user.id}"
        count = await self.redis.incr(redis_key)

        if count == 1:
            # Первое сообщение в окне - задаем время жизни ключа
            await self.redis.expire(redis_key, self.time_window)

        if count > self.rate_limit:
            # Предупреждаем один раз, чтобы бот сам не стал спамером
            if count == self.rate_limit + 1:
                await event.answer("⚠️ <b>Помедленнее!</b> Вы отправляете сообщения слишком быстро.", parse_mode="HTML")
            return

        return await handler(event, data)
