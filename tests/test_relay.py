from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.exceptions import TelegramForbiddenError

from anonchat.database.models import UserStatus
from anonchat.services.events import Event, EventKind, match_events
from anonchat.services.relay import TelegramRelay
from conftest import load_users


def forbidden() -> TelegramForbiddenError:
    return TelegramForbiddenError(method=MagicMock(), message="Forbidden: bot was blocked by the user")


@pytest.mark.asyncio
async def test_dispatch_sends_one_message_per_event(session_pool):
    bot = MagicMock()
    bot.send_message = AsyncMock()
    relay = TelegramRelay(bot, session_pool)

    await relay.dispatch(match_events(1, 2) + [Event(EventKind.ACCOUNT_BANNED, 3)])

    assert [c.args[0] for c in bot.send_message.await_args_list] == [1, 2, 3]


@pytest.mark.asyncio
async def test_undelivered_match_closes_pair(session, session_pool, make_pair):
    await make_pair(1, 2)
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=[forbidden(), None])
    relay = TelegramRelay(bot, session_pool)

    await relay.dispatch(match_events(1, 2))

    users = await load_users(session)
    assert users[1].status == users[2].status == UserStatus.IDLE
    # Второй стороне ушло только уведомление о разрыве, без устаревшего "найден"
    calls = bot.send_message.await_args_list
    assert [c.args[0] for c in calls] == [1, 2]
    assert "завершил" in calls[1].args[1]


@pytest.mark.asyncio
async def test_other_pairs_still_notified_after_drop(session, session_pool, make_pair):
    await make_pair(1, 2)
    await make_pair(3, 4)
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=[forbidden(), None, None, None])
    relay = TelegramRelay(bot, session_pool)

    await relay.dispatch(match_events(1, 2) + match_events(3, 4))

    assert [c.args[0] for c in bot.send_message.await_args_list] == [1, 2, 3, 4]
    users = await load_users(session)
    assert users[3].status == users[4].status == UserStatus.CHATTING


@pytest.mark.asyncio
async def test_failed_ban_notice_is_not_retried(session_pool):
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=forbidden())
    relay = TelegramRelay(bot, session_pool)

    await relay.dispatch([Event(EventKind.ACCOUNT_BANNED, 3)])

    assert bot.send_message.await_count == 1


@pytest.mark.asyncio
async def test_relay_message_copies_to_partner(session_pool):
    relay = TelegramRelay(MagicMock(), session_pool)
    message = MagicMock(content_type="text")
    message.send_copy = AsyncMock()

    await relay.relay_message(message, 2)

    message.send_copy.assert_awaited_once_with(chat_id=2)
