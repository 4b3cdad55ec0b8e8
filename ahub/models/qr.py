import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from ahub.models.base import BaseModel, BigIntPK


class QrPurpose(str, enum.Enum):
    CHECKIN = "CHECKIN"
    KYOSK_PAYMENT = "KYOSK_PAYMENT"
    MEMBER_CARD = "MEMBER_CARD"


class QrLiveNonce(BaseModel):
    """
    QR 대상(subject)별 현재 유효한 nonce

    대상당 한 행만 존재하며 새 QR 발급 시 같은 행을 갱신합니다.
    이전 nonce는 갱신 즉시 무효가 됩니다 (화면 캡처 재사용 방지).
    """

    __tablename__ = "qr_live_nonces"
    __table_args__ = (
        UniqueConstraint("purpose", "subject_id", name="uq_qr_live_nonce_subject"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    purpose: Mapped[QrPurpose] = mapped_column(
        Enum(QrPurpose, native_enum=False, length=32), nullable=False
    )
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    nonce: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    issued_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
