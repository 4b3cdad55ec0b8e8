"""
포인트 원장 데이터 모델

회원 포인트의 모든 변동은 이 원장 테이블에 한 행씩 추가됩니다.
잔액은 별도 컬럼에 저장하지 않고 원장 합계로 계산하며, 잘못된 거래는
수정/삭제 대신 상쇄 거래(REFUND, ADMIN_ADJUSTMENT)로 바로잡습니다.
"""

import enum
from typing import Optional

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from ahub.models.base import BaseModel, BigIntPK


class PointsTransactionType(str, enum.Enum):
    EVENT_CHECKIN = "EVENT_CHECKIN"
    STORE_PURCHASE = "STORE_PURCHASE"
    KYOSK_PURCHASE = "KYOSK_PURCHASE"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    REFUND = "REFUND"


class PointsLedger(BaseModel):
    """
    포인트 원장 테이블

    1. 불변성(Immutable): 한번 생성된 레코드는 수정되지 않음
    2. 완전성(Complete): 모든 포인트 변동사항이 기록됨
    3. 직렬화(Serialized): (member_id, sequence) 유니크 제약으로 같은 회원에 대한
       동시 추가 중 하나만 성공 (낙관적 compare-and-swap)
    """

    __tablename__ = "points_ledger"
    __table_args__ = (
        UniqueConstraint("member_id", "sequence", name="uq_points_ledger_member_seq"),
        Index("idx_points_ledger_member", "member_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id"), nullable=False
    )
    # 회원별 거래 순번 (1부터 시작)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    # 포인트 변동량 - 양수면 적립, 음수면 차감
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[PointsTransactionType] = mapped_column(
        Enum(PointsTransactionType, native_enum=False, length=32), nullable=False
    )
    # 주문/체크인/조정 등 원 거래 식별자 (예: "order:12", "checkin:7")
    reference_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # 관리자 조정/이체의 상대방
    related_member_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    # 거래 후 잔액 - 정합성 검증용 (SUM(amount)와 일치해야 함)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
