# anonchat/services/session.py
import logging
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.database import db
from anonchat.database.models import User, UserStatus
from anonchat.services import rate_limiter
from anonchat.services.events import CommandResult, Event, EventKind, Outcome
from anonchat.services.matchmaker import find_partner
from anonchat.utils.errors import StoreError

# Сколько раз перечитываем состояние, если его поменяли между чтением и записью
MAX_ATTEMPTS = 3


async def disconnect(session: AsyncSession, user_id: int) -> int | None:
    """Разрывает пару целиком (обе строки в одной транзакции). Возвращает id бывшего собеседника."""
    user = await db.get_user(session, user_id)
    if not user or user.status != UserStatus.CHATTING or user.partner_id is None:
        return None
    partner_id = user.partner_id

    try:
        await session.execute(
            select(User.telegram_id)
            .where(User.telegram_id.in_((user_id, partner_id)))
            .order_by(User.telegram_id)
            .with_for_update()
        )
        result = await session.execute(
            update(User)
            .where(
                or_(
                    and_(User.telegram_id == user_id, User.partner_id == partner_id),
                    and_(User.telegram_id == partner_id, User.partner_id == user_id),
                ),
                User.status == UserStatus.CHATTING,
            )
            .values(status=UserStatus.IDLE, partner_id=None)
            .execution_options(synchronize_session=False)
        )
        changed = result.rowcount
        if changed == 0:
            # Пару уже разорвал кто-то другой
            await session.rollback()
            return None
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise StoreError(f"Disconnect of {user_id} failed: {e}") from e

    if changed != 2:
        logging.warning(f"Half-linked pair {user_id} -> {partner_id} reset")
        return None

    logging.info(f"Pair {user_id} <-> {partner_id} disconnected")
    return partner_id


# ==========================================
# КОМАНДЫ
# ==========================================
async def search(session: AsyncSession, user_id: int) -> CommandResult:
    for _ in range(MAX_ATTEMPTS):
        user = await db.get_or_create_user(session, user_id)
        if user.is_banned:
            return CommandResult(Outcome.BANNED)
        if user.status == UserStatus.CHATTING:
            return CommandResult(Outcome.ALREADY_CHATTING, partner_id=user.partner_id)
        if user.status == UserStatus.SEARCHING:
            return CommandResult(Outcome.ALREADY_SEARCHING)

        if await db.set_status(session, user_id, UserStatus.SEARCHING, expected=UserStatus.IDLE):
            # Если пара не нашлась, юзер так и остается в поиске и ждет обхода очереди
            return await find_partner(session, user_id)

    return CommandResult(Outcome.ALREADY_SEARCHING)


async def stop(session: AsyncSession, user_id: int) -> CommandResult:
    for _ in range(MAX_ATTEMPTS):
        user = await db.get_user(session, user_id)
        if not user or user.status == UserStatus.IDLE:
            return CommandResult(Outcome.NOT_IN_CHAT)

        if user.status == UserStatus.SEARCHING:
            if await db.set_status(session, user_id, UserStatus.IDLE, expected=UserStatus.SEARCHING):
                return CommandResult(Outcome.STOPPED)
            continue

        partner_id = await disconnect(session, user_id)
        if partner_id is not None:
            return CommandResult(
                Outcome.STOPPED,
                partner_id=partner_id,
                events=[Event(EventKind.PARTNER_DISCONNECTED, partner_id, user_id)],
            )

    return CommandResult(Outcome.NOT_IN_CHAT)


async def next_partner(session: AsyncSession, user_id: int) -> CommandResult:
    user = await db.get_user(session, user_id)
    if not user or user.status != UserStatus.CHATTING:
        return CommandResult(Outcome.NOT_IN_CHAT)
    if user.is_banned:
        return CommandResult(Outcome.BANNED)
    if not rate_limiter.check_quota(user):
        return CommandResult(Outcome.QUOTA_EXCEEDED, partner_id=user.partner_id)

    partner_id = await disconnect(session, user_id)
    if partner_id is None:
        return CommandResult(Outcome.NOT_IN_CHAT)
    events = [Event(EventKind.PARTNER_DISCONNECTED, partner_id, user_id)]

    try:
        # Лимит списывается даже если новый собеседник не найдется
        await rate_limiter.charge(session, user_id)

        if not await db.set_status(session, user_id, UserStatus.SEARCHING, expected=UserStatus.IDLE):
            return CommandResult(Outcome.WAITING, events=events)

        result = await find_partner(session, user_id)
    except StoreError as e:
        # Пара уже разорвана, бывший собеседник должен об этом узнать
        e.events = events + e.events
        raise
    result.events = events + result.events
    return result


async def partner_unreachable(session: AsyncSession, user_id: int) -> CommandResult:
    """Транспорт не смог доставить сообщение от user_id его собеседнику."""
    partner_id = await disconnect(session, user_id)
    if partner_id is None:
        return CommandResult(Outcome.NOT_IN_CHAT)

    logging.warning(f"Partner {partner_id} of {user_id} unreachable, chat closed")
    return CommandResult(
        Outcome.STOPPED,
        partner_id=partner_id,
        events=[Event(EventKind.PARTNER_DISCONNECTED, user_id, partner_id)],
    )


async def record_message(session: AsyncSession, user_id: int):
    await db.increment_counter(session, user_id, "total_messages")


async def set_filter(session: AsyncSession, user_id: int, filter_update: db.FilterUpdate) -> CommandResult:
    await db.set_filter(session, user_id, filter_update)
    return CommandResult(Outcome.FILTER_UPDATED)
