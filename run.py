import asyncio
import logging
import redis.asyncio as redis
from aiohttp import web
from aiogram import Bot, Dispatcher
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from anonchat.config import BOT_TOKEN, DATABASE_URL, REDIS_URL, WEBHOOK_URL, WEBHOOK_PATH, WEBAPP_HOST, WEBAPP_PORT
from anonchat.database.models import Base
from anonchat.middlewares.db_middleware import DbSessionMiddleware
from anonchat.middlewares.ban_middleware import BanCheckMiddleware
from anonchat.middlewares.throttling import ThrottlingMiddleware

from anonchat.handlers import admin, menu, chat
from anonchat.services.relay import TelegramRelay
from anonchat.services.workers import match_sweeper, quota_reset_worker

# Глобальные переменные для БД и фоновых тасок
engine = None
background_tasks = []


async def on_startup(bot: Bot, dispatcher: Dispatcher):
    global engine
    logging.info("Starting up...")

    # Инициализация БД
    engine = create_async_engine(DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_pool = async_sessionmaker(engine, expire_on_commit=False)
    # Сессия нужна до проверки бана, поэтому этот middleware - самый внешний
    dispatcher.update.outer_middleware(DbSessionMiddleware(session_pool))

    relay = TelegramRelay(bot, session_pool)
    dispatcher["relay"] = relay

    # Устанавливаем вебхук в Telegram
    await bot.set_webhook(url=WEBHOOK_URL, drop_pending_updates=True)

    # Фоновые задачи: обход очереди поиска и сброс суточного лимита
    background_tasks.append(asyncio.create_task(match_sweeper(session_pool, relay)))
    background_tasks.append(asyncio.create_task(quota_reset_worker(session_pool)))
    logging.info(f"Webhook set to {WEBHOOK_URL}")


async def on_shutdown(bot: Bot, dispatcher: Dispatcher):
    logging.info("Shutting down...")

    for task in background_tasks:
        task.cancel()

    await bot.delete_webhook()

    if engine:
        await engine.dispose()
    await bot.session.close()


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    bot = Bot(token=BOT_TOKEN)
    dp = Dispatcher()

    # Регистрация Middlewares (БД регистрируется в on_startup)
    dp.message.outer_middleware(BanCheckMiddleware())
    dp.callback_query.outer_middleware(BanCheckMiddleware())
    dp.message.middleware(ThrottlingMiddleware(redis.Redis.from_url(REDIS_URL, decode_responses=True)))

    # Порядок важен: chat.router содержит общий обработчик сообщений
    dp.include_router(admin.router)
    dp.include_router(menu.router)
    dp.include_router(chat.router)

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)

    # Настройка aiohttp сервера
    app = web.Application()
    webhook_requests_handler = SimpleRequestHandler(dispatcher=dp, bot=bot)
    webhook_requests_handler.register(app, path=WEBHOOK_PATH)

    setup_application(app, dp, bot=bot)

    web.run_app(app, host=WEBAPP_HOST, port=WEBAPP_PORT)


if __name__ == "__main__":
    main()
