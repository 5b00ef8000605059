import pytest

from anonchat.database import db
from anonchat.database.models import UserStatus
from anonchat.services import rate_limiter
from anonchat.services import session as chat_session
from anonchat.services.events import Event, EventKind, Outcome
from anonchat.utils.errors import StoreError
from conftest import assert_pairing_consistent, load_users


# ==========================================
# SEARCH
# ==========================================
@pytest.mark.asyncio
async def test_search_without_partner_waits(session):
    result = await chat_session.search(session, 1)

    assert result.outcome == Outcome.WAITING
    assert result.events == []
    user = await db.get_user(session, 1)
    assert user.status == UserStatus.SEARCHING

    again = await chat_session.search(session, 1)
    assert again.outcome == Outcome.ALREADY_SEARCHING


@pytest.mark.asyncio
async def test_search_matches_waiting_user(session):
    await chat_session.search(session, 1)
    result = await chat_session.search(session, 2)

    assert result.outcome == Outcome.MATCHED
    assert result.partner_id == 1
    assert len(result.events) == 2
    users = await load_users(session)
    assert users[1].total_chats == users[2].total_chats == 1
    await assert_pairing_consistent(session)


@pytest.mark.asyncio
async def test_search_state_conflicts(session, make_user, make_pair):
    await make_pair(1, 2)
    await make_user(3, is_banned=True)

    result = await chat_session.search(session, 1)
    assert result.outcome == Outcome.ALREADY_CHATTING
    assert result.partner_id == 2

    result = await chat_session.search(session, 3)
    assert result.outcome == Outcome.BANNED
    assert (await db.get_user(session, 3)).status == UserStatus.IDLE


# ==========================================
# STOP
# ==========================================
@pytest.mark.asyncio
async def test_stop_idle(session):
    assert (await chat_session.stop(session, 1)).outcome == Outcome.NOT_IN_CHAT
    await db.get_or_create_user(session, 1)
    assert (await chat_session.stop(session, 1)).outcome == Outcome.NOT_IN_CHAT


@pytest.mark.asyncio
async def test_stop_searching(session, make_user):
    await make_user(1, status=UserStatus.SEARCHING)

    result = await chat_session.stop(session, 1)

    assert result.outcome == Outcome.STOPPED
    assert result.partner_id is None
    assert result.events == []
    assert (await db.get_user(session, 1)).status == UserStatus.IDLE


@pytest.mark.asyncio
async def test_stop_chatting_disconnects_both(session, make_pair):
    await make_pair(1, 2)

    result = await chat_session.stop(session, 1)

    assert result.outcome == Outcome.STOPPED
    assert result.partner_id == 2
    assert result.events == [Event(EventKind.PARTNER_DISCONNECTED, 2, 1)]
    users = await load_users(session)
    assert users[1].status == users[2].status == UserStatus.IDLE
    await assert_pairing_consistent(session)

    # Второй "стоп" от собеседника уже ничего не разрывает
    assert (await chat_session.stop(session, 2)).outcome == Outcome.NOT_IN_CHAT


# ==========================================
# NEXT
# ==========================================
@pytest.mark.asyncio
async def test_next_requires_chat(session, make_user):
    await make_user(1, status=UserStatus.SEARCHING)

    result = await chat_session.next_partner(session, 1)

    assert result.outcome == Outcome.NOT_IN_CHAT
    user = await db.get_user(session, 1)
    assert user.status == UserStatus.SEARCHING
    assert user.next_used_today == 0


@pytest.mark.asyncio
async def test_next_charges_quota_and_notifies_partner(session, make_pair):
    await make_pair(1, 2)

    result = await chat_session.next_partner(session, 1)

    assert result.outcome == Outcome.WAITING
    assert Event(EventKind.PARTNER_DISCONNECTED, 2, 1) in result.events
    users = await load_users(session)
    assert users[1].next_used_today == 1
    assert users[1].status == UserStatus.SEARCHING
    assert users[2].status == UserStatus.IDLE
    assert users[2].partner_id is None


@pytest.mark.asyncio
async def test_next_finds_new_partner(session, make_user, make_pair):
    await make_pair(1, 2)
    await make_user(3, status=UserStatus.SEARCHING)

    result = await chat_session.next_partner(session, 1)

    assert result.outcome == Outcome.MATCHED
    assert result.partner_id == 3
    assert [e.kind for e in result.events] == [
        EventKind.PARTNER_DISCONNECTED,
        EventKind.MATCH_FOUND,
        EventKind.MATCH_FOUND,
    ]
    users = await load_users(session)
    assert users[1].next_used_today == 1
    assert users[1].total_chats == 1
    await assert_pairing_consistent(session)


@pytest.mark.asyncio
async def test_sixth_next_is_refused(session, make_user, make_pair):
    await make_pair(1, 2)

    for i in range(5):
        await make_user(100 + i, status=UserStatus.SEARCHING)
        result = await chat_session.next_partner(session, 1)
        assert result.outcome == Outcome.MATCHED
        assert result.partner_id == 100 + i

    result = await chat_session.next_partner(session, 1)

    assert result.outcome == Outcome.QUOTA_EXCEEDED
    assert result.events == []
    user = await db.get_user(session, 1)
    assert user.status == UserStatus.CHATTING
    assert user.partner_id == 104
    assert user.next_used_today == 5
    await assert_pairing_consistent(session)


@pytest.mark.asyncio
async def test_next_store_failure_keeps_disconnect_event(session, make_pair, monkeypatch):
    await make_pair(1, 2)

    async def broken_charge(session, user_id):
        raise StoreError("db hiccup")

    monkeypatch.setattr(rate_limiter, "charge", broken_charge)

    with pytest.raises(StoreError) as exc_info:
        await chat_session.next_partner(session, 1)

    # Разрыв уже закоммичен, бывший собеседник должен получить уведомление
    assert exc_info.value.events == [Event(EventKind.PARTNER_DISCONNECTED, 2, 1)]
    users = await load_users(session)
    assert users[1].status == users[2].status == UserStatus.IDLE


@pytest.mark.asyncio
async def test_premium_ignores_quota(session, make_pair):
    await make_pair(1, 2, is_premium=True, next_used_today=42)

    result = await chat_session.next_partner(session, 1)

    assert result.outcome == Outcome.WAITING
    assert (await db.get_user(session, 1)).next_used_today == 43


# ==========================================
# ОШИБКИ ДОСТАВКИ И СЧЕТЧИКИ
# ==========================================
@pytest.mark.asyncio
async def test_partner_unreachable_closes_chat(session, make_pair):
    await make_pair(1, 2)

    result = await chat_session.partner_unreachable(session, 1)

    assert result.outcome == Outcome.STOPPED
    assert result.events == [Event(EventKind.PARTNER_DISCONNECTED, 1, 2)]
    users = await load_users(session)
    assert users[1].status == users[2].status == UserStatus.IDLE

    again = await chat_session.partner_unreachable(session, 1)
    assert again.outcome == Outcome.NOT_IN_CHAT


@pytest.mark.asyncio
async def test_record_message(session, make_pair):
    await make_pair(1, 2)
    await chat_session.record_message(session, 1)
    await chat_session.record_message(session, 1)
    assert (await db.get_user(session, 1)).total_messages == 2


@pytest.mark.asyncio
async def test_set_filter_outcome(session, make_user):
    await make_user(1, is_premium=True)
    result = await chat_session.set_filter(session, 1, db.FilterUpdate(search_gender="F", age_min=21))

    assert result.outcome == Outcome.FILTER_UPDATED
    user = await db.get_user(session, 1)
    assert (user.search_gender, user.age_min) == ("F", 21)
