from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.exceptions import TelegramForbiddenError
from aiogram.filters import CommandObject

from anonchat.database import db
from anonchat.database.models import UserStatus
from anonchat.handlers.admin import cmd_ban
from anonchat.handlers.chat import next_chat, route_message
from anonchat.handlers.menu import show_profile
from anonchat.services import rate_limiter
from anonchat.services.events import Event, EventKind
from anonchat.utils.errors import StoreError
from conftest import load_users


def fake_message(user_id: int, text: str | None = None) -> MagicMock:
    message = MagicMock(text=text, caption=None)
    message.from_user.id = user_id
    message.answer = AsyncMock()
    return message


def fake_relay() -> MagicMock:
    relay = MagicMock()
    relay.relay_message = AsyncMock()
    relay.dispatch = AsyncMock()
    return relay


# ==========================================
# МАРШРУТИЗАЦИЯ
# ==========================================
@pytest.mark.asyncio
async def test_route_message_copies_and_counts(session, make_pair):
    await make_pair(1, 2)
    relay = fake_relay()
    message = fake_message(1, "привет")

    await route_message(message, session, relay)

    relay.relay_message.assert_awaited_once_with(message, 2)
    assert (await db.get_user(session, 1)).total_messages == 1


@pytest.mark.asyncio
async def test_route_message_closes_chat_when_partner_unreachable(session, make_pair):
    await make_pair(1, 2)
    relay = fake_relay()
    relay.relay_message.side_effect = TelegramForbiddenError(
        method=MagicMock(), message="Forbidden: bot was blocked by the user"
    )

    await route_message(fake_message(1, "привет"), session, relay)

    users = await load_users(session)
    assert users[1].status == users[2].status == UserStatus.IDLE
    assert users[1].total_messages == 0
    relay.dispatch.assert_awaited_once_with([Event(EventKind.PARTNER_DISCONNECTED, 1, 2)])


@pytest.mark.asyncio
async def test_route_message_blocks_links(session, make_pair):
    await make_pair(1, 2)
    relay = fake_relay()

    await route_message(fake_message(1, "заходи на t.me/somechannel"), session, relay)

    relay.relay_message.assert_not_awaited()


# ==========================================
# СЛЕДУЮЩИЙ
# ==========================================
@pytest.mark.asyncio
async def test_next_chat_notifies_partner_on_store_failure(session, make_pair, monkeypatch):
    await make_pair(1, 2)

    async def broken_charge(session, user_id):
        raise StoreError("db hiccup")

    monkeypatch.setattr(rate_limiter, "charge", broken_charge)
    relay = fake_relay()
    message = fake_message(1)

    await next_chat(message, session, relay)

    relay.dispatch.assert_awaited_once_with([Event(EventKind.PARTNER_DISCONNECTED, 2, 1)])
    message.answer.assert_awaited_once()


# ==========================================
# ПРОФИЛЬ
# ==========================================
@pytest.mark.asyncio
async def test_profile_shows_global_stats(session, make_user, make_pair):
    await make_user(1, gender="M", age=25)
    await make_user(2, status=UserStatus.SEARCHING)
    await make_pair(3, 4)
    message = fake_message(1)

    await show_profile(message, session)

    text = message.answer.await_args.args[0]
    assert "Всего пользователей: <b>4</b>" in text
    assert "онлайн: <b>3</b>" in text


# ==========================================
# АДМИНКА
# ==========================================
@pytest.mark.asyncio
async def test_admin_ban_ends_active_chat(session, make_pair):
    await make_pair(1, 2)
    bot = MagicMock()
    bot.send_message = AsyncMock()
    relay = fake_relay()

    await cmd_ban(fake_message(99), CommandObject(command="ban", args="2"), session, bot, relay)

    users = await load_users(session)
    assert users[2].is_banned is True
    assert users[1].status == users[2].status == UserStatus.IDLE
    assert users[1].partner_id is None
    relay.dispatch.assert_awaited_once_with([Event(EventKind.PARTNER_DISCONNECTED, 1, 2)])


@pytest.mark.asyncio
async def test_admin_ban_cancels_search(session, make_user):
    await make_user(2, status=UserStatus.SEARCHING)
    bot = MagicMock()
    bot.send_message = AsyncMock()
    relay = fake_relay()

    await cmd_ban(fake_message(99), CommandObject(command="ban", args="2"), session, bot, relay)

    assert (await db.get_user(session, 2)).status == UserStatus.IDLE
    relay.dispatch.assert_awaited_once_with([])
