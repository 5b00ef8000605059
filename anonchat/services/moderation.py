# anonchat/services/moderation.py
import logging
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from anonchat.config import BAN_THRESHOLD
from anonchat.database.models import Report, User, UserStatus
from anonchat.services.events import CommandResult, Event, EventKind, Outcome
from anonchat.utils.errors import StoreError, ValidationError

REPORT_REASONS = ("spam", "insult", "nsfw", "toxic", "other")


def in_chat_with(reporter_id: int, reported_id: int):
    # Жаловаться можно только на текущего собеседника
    reporter = aliased(User)
    return (
        select(reporter.telegram_id)
        .where(
            reporter.telegram_id == reporter_id,
            reporter.status == UserStatus.CHATTING,
            reporter.partner_id == reported_id,
        )
        .exists()
    )


async def submit_report(
    session: AsyncSession,
    reporter_id: int,
    reported_id: int,
    reason: str,
    threshold: int = BAN_THRESHOLD,
) -> CommandResult:
    if reason not in REPORT_REASONS:
        raise ValidationError("Unknown report reason", {"reason": reason})
    if reported_id is None:
        return CommandResult(Outcome.INVALID_CONTEXT)

    try:
        # Проверка пары и счетчик - один UPDATE, "стоп" не может вклиниться между ними
        result = await session.execute(
            update(User)
            .where(User.telegram_id == reported_id, in_chat_with(reporter_id, reported_id))
            .values(reports_received=User.reports_received + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            return CommandResult(Outcome.INVALID_CONTEXT)

        # Жалоба в той же транзакции. Повторные жалобы тоже считаются
        session.add(Report(reporter_id=reporter_id, reported_id=reported_id, reason=reason))
        # Бан ставится условно, поэтому уведомление уходит ровно один раз
        result = await session.execute(
            update(User)
            .where(
                User.telegram_id == reported_id,
                User.reports_received >= threshold,
                User.is_banned.is_(False),
            )
            .values(is_banned=True)
            .execution_options(synchronize_session=False)
        )
        was_banned = result.rowcount == 1
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise StoreError(f"Report from {reporter_id} on {reported_id} failed: {e}") from e

    logging.info(f"Report {reporter_id} -> {reported_id} ({reason})")
    events = []
    if was_banned:
        logging.warning(f"User {reported_id} banned after {threshold}+ reports")
        events.append(Event(EventKind.ACCOUNT_BANNED, reported_id))

    return CommandResult(Outcome.REPORT_ACCEPTED, partner_id=reported_id, events=events)
