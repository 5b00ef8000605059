import asyncio
import logging
from sqlalchemy.ext.asyncio import async_sessionmaker

from anonchat.config import QUOTA_RESET_INTERVAL, SWEEP_INTERVAL
from anonchat.services.matchmaker import sweep
from anonchat.services.rate_limiter import reset_daily_quota


async def match_sweeper(session_pool: async_sessionmaker, relay, interval: float = SWEEP_INTERVAL):
    """Раз в interval секунд пытается спарить всех, кто висит в поиске."""
    while True:
        try:
            async with session_pool() as session:
                events = await sweep(session)
            if events:
                await relay.dispatch(events)
        except Exception as e:
            logging.error(f"Sweep worker error: {e}")

        await asyncio.sleep(interval)


async def quota_reset_worker(session_pool: async_sessionmaker, interval: float = QUOTA_RESET_INTERVAL):
    # Сброс по фиксированному интервалу от старта процесса, а не в полночь
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_pool() as session:
                await reset_daily_quota(session)
        except Exception as e:
            logging.error(f"Quota reset error: {e}")
