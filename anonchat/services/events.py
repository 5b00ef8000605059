# anonchat/services/events.py
import enum
from dataclasses import dataclass, field


class Outcome(str, enum.Enum):
    MATCHED = "matched"
    WAITING = "waiting"
    STOPPED = "stopped"
    ALREADY_CHATTING = "already_chatting"
    ALREADY_SEARCHING = "already_searching"
    NOT_IN_CHAT = "not_in_chat"
    QUOTA_EXCEEDED = "quota_exceeded"
    BANNED = "banned"
    REPORT_ACCEPTED = "report_accepted"
    INVALID_CONTEXT = "invalid_context"
    FILTER_UPDATED = "filter_updated"


class EventKind(str, enum.Enum):
    MATCH_FOUND = "match_found"
    PARTNER_DISCONNECTED = "partner_disconnected"
    ACCOUNT_BANNED = "account_banned"


@dataclass(frozen=True)
class Event:
    """Уведомление для транспорта: кому (user_id) и о ком (partner_id)."""
    kind: EventKind
    user_id: int
    partner_id: int | None = None


@dataclass
class CommandResult:
    outcome: Outcome
    partner_id: int | None = None
    events: list[Event] = field(default_factory=list)


def match_events(user1: int, user2: int) -> list[Event]:
    return [
        Event(EventKind.MATCH_FOUND, user1, user2),
        Event(EventKind.MATCH_FOUND, user2, user1),
    ]
