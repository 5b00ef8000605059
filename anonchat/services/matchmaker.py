# anonchat/services/matchmaker.py
import logging
from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.config import SWEEP_BATCH_SIZE
from anonchat.database.db import get_user
from anonchat.database.models import User, UserStatus
from anonchat.services.events import CommandResult, Event, Outcome, match_events
from anonchat.utils.errors import StoreError


def accepts(owner: User, candidate: User) -> bool:
    """Подходит ли candidate под фильтр owner. Без премиума фильтр не действует."""
    if not owner.has_premium:
        return True
    if owner.search_gender != "any" and owner.search_gender != candidate.gender:
        return False
    if candidate.age is not None and not (owner.age_min <= candidate.age <= owner.age_max):
        return False
    return True


def is_compatible(user1: User, user2: User) -> bool:
    return accepts(user1, user2) and accepts(user2, user1)


# ==========================================
# АТОМАРНОЕ СОЕДИНЕНИЕ ПАРЫ
# ==========================================
async def commit_pair(session: AsyncSession, user1: int, user2: int) -> bool:
    """Переводит обоих в чат, только если оба сейчас в поиске и ни с кем не связаны.

    Обе строки меняются одним UPDATE в одной транзакции: либо обе, либо ни одной.
    Общий примитив для поиска по запросу и для фонового обхода очереди.
    """
    if user1 == user2:
        return False

    try:
        # Блокируем строки всегда в порядке возрастания id (на SQLite это no-op)
        await session.execute(
            select(User.telegram_id)
            .where(User.telegram_id.in_((user1, user2)))
            .order_by(User.telegram_id)
            .with_for_update()
        )
        result = await session.execute(
            update(User)
            .where(
                User.telegram_id.in_((user1, user2)),
                User.status == UserStatus.SEARCHING,
                User.partner_id.is_(None),
                User.is_banned.is_(False),
            )
            .values(
                status=UserStatus.CHATTING,
                partner_id=case((User.telegram_id == user1, user2), else_=user1),
                total_chats=User.total_chats + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 2:
            # Кого-то из пары уже забрали или он вышел из поиска
            await session.rollback()
            return False
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise StoreError(f"Pair commit failed for {user1} and {user2}: {e}") from e

    logging.info(f"Paired {user1} <-> {user2}")
    return True


def searching_users_query():
    return (
        select(User)
        .where(User.status == UserStatus.SEARCHING, User.is_banned.is_(False))
        .order_by(User.created_at, User.telegram_id)
        .execution_options(populate_existing=True)
    )


# ==========================================
# ПОИСК ПО ЗАПРОСУ (Search / Next)
# ==========================================
async def find_partner(session: AsyncSession, user_id: int) -> CommandResult:
    user = await get_user(session, user_id)
    if not user or user.status != UserStatus.SEARCHING:
        if user and user.status == UserStatus.CHATTING:
            # Нас уже спарил фоновый обход, уведомления отправил он
            return CommandResult(Outcome.MATCHED, partner_id=user.partner_id)
        return CommandResult(Outcome.WAITING)

    stmt = searching_users_query().where(User.telegram_id != user_id, User.partner_id.is_(None))
    if user.has_premium:
        if user.search_gender != "any":
            stmt = stmt.where(User.gender == user.search_gender)
        stmt = stmt.where(or_(User.age.is_(None), User.age.between(user.age_min, user.age_max)))

    result = await session.execute(stmt)
    # id собираем до коммитов: rollback инвалидирует загруженные объекты
    candidate_ids = [c.telegram_id for c in result.scalars() if accepts(c, user)]

    for candidate_id in candidate_ids:
        if await commit_pair(session, user_id, candidate_id):
            return CommandResult(
                Outcome.MATCHED,
                partner_id=candidate_id,
                events=match_events(user_id, candidate_id),
            )

        me = await get_user(session, user_id)
        if me.status == UserStatus.CHATTING:
            return CommandResult(Outcome.MATCHED, partner_id=me.partner_id)
        if me.status != UserStatus.SEARCHING:
            # Пользователь сам остановил поиск, пока мы перебирали кандидатов
            break

    return CommandResult(Outcome.WAITING)


# ==========================================
# ФОНОВЫЙ ОБХОД ОЧЕРЕДИ
# ==========================================
async def sweep(session: AsyncSession, batch_size: int = SWEEP_BATCH_SIZE) -> list[Event]:
    result = await session.execute(searching_users_query().limit(batch_size))
    batch = [u.telegram_id for u in result.scalars()]

    events = []
    for first_id, second_id in zip(batch[0::2], batch[1::2]):
        # Пару мог забрать поиск по запросу, пока мы шли по пачке
        first = await get_user(session, first_id)
        second = await get_user(session, second_id)
        if not first or not second:
            continue
        if first.status != UserStatus.SEARCHING or second.status != UserStatus.SEARCHING:
            continue
        if not is_compatible(first, second):
            continue

        try:
            paired = await commit_pair(session, first_id, second_id)
        except StoreError as e:
            # Уже спаренные в этом обходе должны получить уведомления
            logging.error(f"Sweep pair {first_id} <-> {second_id} failed: {e}")
            continue
        if paired:
            events.extend(match_events(first_id, second_id))

    return events
