import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from anonchat.config import AGE_MIN, AGE_MAX
from anonchat.database.models import Report, User, UserStatus
from anonchat.utils.errors import StoreError, ValidationError

GENDERS = ("M", "F")
SEARCH_GENDERS = ("M", "F", "any")
AWAITING_FIELDS = ("gender", "age")
COUNTER_FIELDS = ("total_chats", "total_messages", "next_used_today", "reports_received")


@dataclass
class FilterUpdate:
    """Новые значения фильтра поиска. None - оставить как есть."""
    search_gender: str | None = None
    age_min: int | None = None
    age_max: int | None = None


async def execute_update(session: AsyncSession, stmt) -> int:
    """Выполняет UPDATE в отдельной транзакции и возвращает число затронутых строк."""
    try:
        result = await session.execute(stmt.execution_options(synchronize_session=False))
        count = result.rowcount
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise StoreError(f"Update failed: {e}") from e
    return count


async def get_user(session: AsyncSession, telegram_id: int) -> User | None:
    # populate_existing: всегда перечитываем строку, чтобы видеть правки админки
    result = await session.execute(
        select(User).where(User.telegram_id == telegram_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_user(session: AsyncSession, telegram_id: int) -> User:
    user = await get_user(session, telegram_id)
    if user:
        return user

    session.add(User(telegram_id=telegram_id))
    try:
        await session.commit()
    except IntegrityError:
        # Параллельный запрос успел создать юзера раньше нас
        await session.rollback()
    except SQLAlchemyError as e:
        await session.rollback()
        raise StoreError(f"Could not create user {telegram_id}: {e}") from e
    else:
        logging.info(f"New user {telegram_id}")

    return await get_user(session, telegram_id)


async def set_status(
    session: AsyncSession,
    telegram_id: int,
    status: UserStatus,
    partner_id: int | None = None,
    expected: UserStatus | None = None,
) -> bool:
    stmt = update(User).where(User.telegram_id == telegram_id)
    if expected is not None:
        stmt = stmt.where(User.status == expected)
    stmt = stmt.values(status=status, partner_id=partner_id)
    return await execute_update(session, stmt) == 1


async def increment_counter(session: AsyncSession, telegram_id: int, field: str, delta: int = 1):
    if field not in COUNTER_FIELDS:
        raise ValueError(f"Unknown counter: {field}")
    column = getattr(User, field)
    await execute_update(
        session,
        update(User).where(User.telegram_id == telegram_id).values({column: column + delta}),
    )


async def set_banned(session: AsyncSession, telegram_id: int, banned: bool) -> bool:
    stmt = update(User).where(User.telegram_id == telegram_id).values(is_banned=banned)
    return await execute_update(session, stmt) == 1


async def set_premium(session: AsyncSession, telegram_id: int, days: int | None) -> bool:
    """Выдает премиум на days дней (None - бессрочно) или снимает его при days == 0."""
    if days == 0:
        values = {"is_premium": False, "premium_until": None}
    else:
        until = datetime.datetime.utcnow() + datetime.timedelta(days=days) if days else None
        values = {"is_premium": True, "premium_until": until}
    stmt = update(User).where(User.telegram_id == telegram_id).values(**values)
    return await execute_update(session, stmt) == 1


async def set_awaiting_input(session: AsyncSession, telegram_id: int, field: str | None):
    if field is not None and field not in AWAITING_FIELDS:
        raise ValueError(f"Unknown input field: {field}")
    await execute_update(
        session,
        update(User).where(User.telegram_id == telegram_id).values(awaiting_input=field),
    )


# ==========================================
# ТИПИЗИРОВАННЫЕ ОПЕРАЦИИ С ПРОФИЛЕМ
# ==========================================
def validate_age(age) -> int:
    if isinstance(age, str):
        age = age.strip()
        if not age.isdigit():
            raise ValidationError("Age must be a number", {"age": age})
        age = int(age)
    if isinstance(age, bool) or not isinstance(age, int) or not (AGE_MIN <= age <= AGE_MAX):
        raise ValidationError(f"Age must be between {AGE_MIN} and {AGE_MAX}", {"age": age})
    return age


async def set_gender(session: AsyncSession, telegram_id: int, gender: str):
    if gender not in GENDERS:
        raise ValidationError("Unknown gender", {"gender": gender})
    await execute_update(
        session,
        update(User).where(User.telegram_id == telegram_id).values(gender=gender),
    )


async def set_age(session: AsyncSession, telegram_id: int, age) -> int:
    age = validate_age(age)
    await execute_update(
        session,
        update(User).where(User.telegram_id == telegram_id).values(age=age, awaiting_input=None),
    )
    return age


async def apply_filter(session: AsyncSession, telegram_id: int, values: dict) -> bool:
    stmt = update(User).where(User.telegram_id == telegram_id).values(**values)
    return await execute_update(session, stmt) == 1


async def set_filter(session: AsyncSession, telegram_id: int, filter_update: FilterUpdate) -> User:
    user = await get_user(session, telegram_id)
    if not user:
        raise ValidationError("Unknown user", {"telegram_id": telegram_id})

    values = {}
    if filter_update.search_gender is not None:
        if filter_update.search_gender not in SEARCH_GENDERS:
            raise ValidationError("Unknown gender filter", {"search_gender": filter_update.search_gender})
        values["search_gender"] = filter_update.search_gender

    # Диапазон проверяем целиком, с учетом уже сохраненной границы
    age_min = validate_age(filter_update.age_min) if filter_update.age_min is not None else user.age_min
    age_max = validate_age(filter_update.age_max) if filter_update.age_max is not None else user.age_max
    if age_min > age_max:
        raise ValidationError("Age range is empty", {"age_min": age_min, "age_max": age_max})
    if filter_update.age_min is not None:
        values["age_min"] = age_min
    if filter_update.age_max is not None:
        values["age_max"] = age_max

    if values:
        await apply_filter(session, telegram_id, values)
    return await get_user(session, telegram_id)


# ==========================================
# АДМИНКА
# ==========================================
async def unban_user(session: AsyncSession, telegram_id: int) -> bool:
    # Снимаем бан и обнуляем счетчик жалоб, иначе следующая жалоба снова забанит
    stmt = update(User).where(User.telegram_id == telegram_id).values(is_banned=False, reports_received=0)
    return await execute_update(session, stmt) == 1


async def get_stats(session: AsyncSession) -> dict:
    now = datetime.datetime.utcnow()
    count = func.count(User.telegram_id)
    return {
        "users": await session.scalar(select(count)),
        "premium": await session.scalar(
            select(count).where(
                User.is_premium.is_(True),
                or_(User.premium_until.is_(None), User.premium_until > now),
            )
        ),
        "banned": await session.scalar(select(count).where(User.is_banned.is_(True))),
        "searching": await session.scalar(select(count).where(User.status == UserStatus.SEARCHING)),
        "chatting": await session.scalar(select(count).where(User.status == UserStatus.CHATTING)),
        "reports": await session.scalar(select(func.count(Report.id))),
    }
