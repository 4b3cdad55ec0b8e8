import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import CheckConstraint, UniqueConstraint

from ahub.models.base import BaseModel, BigIntPK


class EventStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Event(BaseModel):
    __tablename__ = "events"
    __table_args__ = (CheckConstraint("start_at < end_at", name="ck_events_window"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False)
    allow_multiple_checkins: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    max_checkins_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    checkin_interval_seconds: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    qr_rotation_seconds: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, native_enum=False, length=16),
        default=EventStatus.DRAFT,
        nullable=False,
    )


class EventCheckin(BaseModel):
    """
    이벤트 체크인 기록 - 불변

    (event_id, member_id, checkin_number) 유니크 제약으로 같은 회원의 동시
    체크인 중 하나만 커밋됩니다. 나머지는 충돌 후 최신 상태로 재평가됩니다.
    """

    __tablename__ = "event_checkins"
    __table_args__ = (
        UniqueConstraint(
            "event_id", "member_id", "checkin_number", name="uq_event_checkin_number"
        ),
        Index("idx_event_checkins_event_member", "event_id", "member_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("events.id"), nullable=False
    )
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id"), nullable=False
    )
    checkin_number: Mapped[int] = mapped_column(Integer, nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False)
    ledger_entry_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("points_ledger.id"), nullable=True
    )
    qr_nonce: Mapped[str] = mapped_column(String(64), nullable=False)
