# anonchat/services/rate_limiter.py
import logging
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.config import DAILY_NEXT_LIMIT
from anonchat.database.db import execute_update, increment_counter
from anonchat.database.models import User


def check_quota(user: User, limit: int = DAILY_NEXT_LIMIT) -> bool:
    """True, если юзеру еще можно жать "следующий". Премиум не ограничен."""
    if user.has_premium:
        return True
    return user.next_used_today < limit


def remaining_quota(user: User, limit: int = DAILY_NEXT_LIMIT) -> int | None:
    if user.has_premium:
        return None
    return max(0, limit - user.next_used_today)


async def charge(session: AsyncSession, user_id: int):
    await increment_counter(session, user_id, "next_used_today")


async def reset_daily_quota(session: AsyncSession) -> int:
    # Гонка с параллельным charge() допустима: кто записал последним, тот и прав
    count = await execute_update(
        session,
        update(User).where(User.next_used_today != 0).values(next_used_today=0),
    )
    logging.info(f"Daily next quota reset for {count} users")
    return count
