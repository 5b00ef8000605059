# anonchat/database/models.py
import enum
from datetime import datetime
from sqlalchemy import BigInteger, String, Integer, Boolean, DateTime, Enum, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from anonchat.config import AGE_MIN, AGE_MAX


class Base(DeclarativeBase):
    pass


class UserStatus(str, enum.Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    CHATTING = "chatting"


class User(Base):
    __tablename__ = 'users'

    telegram_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    # Состояние матчмейкинга. partner_id - слабая ссылка, без ForeignKey
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, native_enum=False, length=16), default=UserStatus.IDLE, index=True
    )
    partner_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Профиль
    gender: Mapped[str | None] = mapped_column(String(1), nullable=True)  # 'M' или 'F'
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    awaiting_input: Mapped[str | None] = mapped_column(String(16), nullable=True)  # 'gender', 'age'

    # Премиум
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False)
    premium_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Фильтр поиска (работает только с премиумом)
    search_gender: Mapped[str] = mapped_column(String(3), default="any")  # 'M', 'F' или 'any'
    age_min: Mapped[int] = mapped_column(Integer, default=AGE_MIN)
    age_max: Mapped[int] = mapped_column(Integer, default=AGE_MAX)

    # Счетчики
    total_chats: Mapped[int] = mapped_column(Integer, default=0)
    total_messages: Mapped[int] = mapped_column(Integer, default=0)
    next_used_today: Mapped[int] = mapped_column(Integer, default=0)
    reports_received: Mapped[int] = mapped_column(Integer, default=0)

    # Бан ставится только вперед, снимает его лишь админ
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    @property
    def has_premium(self) -> bool:
        if not self.is_premium:
            return False
        return self.premium_until is None or self.premium_until > datetime.utcnow()


class Report(Base):
    __tablename__ = 'reports'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    reporter_id: Mapped[int] = mapped_column(BigInteger)
    reported_id: Mapped[int] = mapped_column(BigInteger, index=True)
    reason: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
