"""
포인트 원장 리포지토리

원장은 추가 전용(append-only)이며 이 리포지토리에는 수정/삭제 메서드가 없습니다.

동시성 처리:
- 추가 전에 회원 행을 잠가(FOR UPDATE) 같은 회원의 잔액 변경을 직렬화
- (member_id, sequence) 유니크 제약을 compare-and-swap으로 사용하여
  잠금을 지원하지 않는 저장소에서도 동시 추가 중 하나만 성공
- 제약 위반(IntegrityError)은 ConflictError로 변환되어 서비스 계층에서 재시도
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ahub.core.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    ValidationError,
)
from ahub.models.points import PointsLedger as PointsLedgerModel
from ahub.models.points import PointsTransactionType
from ahub.models.user import Member as MemberModel
from ahub.repositories.base import BaseRepository
from ahub.schemas.points import (
    PointsIntegrityCheckResponse,
    PointsLedgerEntry,
    PointsLedgerResponse,
)


class PointsRepository(BaseRepository[PointsLedgerModel, PointsLedgerEntry]):
    """포인트 원장 리포지토리 - Pydantic 응답 보장"""

    def __init__(self, db: Session):
        super().__init__(PointsLedgerModel, PointsLedgerEntry, db)

    def balance_of(self, member_id: int) -> int:
        """회원 잔액 = 원장 금액 합계 (항목이 없으면 0)"""
        total = (
            self.db.query(func.coalesce(func.sum(PointsLedgerModel.amount), 0))
            .filter(PointsLedgerModel.member_id == member_id)
            .scalar()
        )
        return int(total or 0)

    def _last_sequence(self, member_id: int) -> int:
        last = (
            self.db.query(func.max(PointsLedgerModel.sequence))
            .filter(PointsLedgerModel.member_id == member_id)
            .scalar()
        )
        return int(last or 0)

    def _lock_member(self, member_id: int) -> None:
        (
            self.db.query(MemberModel.id)
            .filter(MemberModel.id == member_id)
            .with_for_update()
            .first()
        )

    def append(
        self,
        member_id: int,
        amount: int,
        type: PointsTransactionType,
        description: str,
        created_at: datetime,
        reference_id: Optional[str] = None,
        related_member_id: Optional[int] = None,
    ) -> PointsLedgerEntry:
        """
        원장에 항목 하나를 추가합니다 (flush까지, 커밋은 호출자 담당).

        Args:
            member_id: 대상 회원 ID
            amount: 포인트 변동량 (양수=적립, 음수=차감, 0 불가)
            type: 거래 타입
            description: 거래 사유
            created_at: 거래 시각 (UTC)
            reference_id: 주문/체크인 등 원 거래 식별자
            related_member_id: 이체/조정의 상대방

        Returns:
            PointsLedgerEntry: 추가된 원장 항목

        Raises:
            InsufficientBalanceError: 차감 후 잔액이 음수가 되는 경우
            ConflictError: 동시에 다른 항목이 먼저 추가된 경우
        """
        if amount == 0:
            raise ValidationError(
                "Ledger entries must have a non-zero amount", {"member_id": member_id}
            )

        self._lock_member(member_id)
        balance = self.balance_of(member_id)
        if amount < 0 and balance + amount < 0:
            raise InsufficientBalanceError(required=-amount, available=balance)

        entry = PointsLedgerModel(
            member_id=member_id,
            sequence=self._last_sequence(member_id) + 1,
            amount=amount,
            type=type,
            reference_id=reference_id,
            description=description,
            related_member_id=related_member_id,
            balance_after=balance + amount,
            created_at=created_at,
        )
        try:
            self.db.add(entry)
            self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                message="Concurrent ledger update detected",
                details={"member_id": member_id},
            ) from e

        return self.schema_class.model_validate(entry)

    def get_member_ledger(
        self, member_id: int, limit: int = 50, offset: int = 0
    ) -> PointsLedgerResponse:
        """회원 원장 조회 (최신순)"""
        query = self.db.query(PointsLedgerModel).filter(
            PointsLedgerModel.member_id == member_id
        )
        total_count = query.count()
        rows = (
            query.order_by(PointsLedgerModel.sequence.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return PointsLedgerResponse(
            balance=self.balance_of(member_id),
            entries=self._to_schemas(rows),
            total_count=total_count,
            has_next=offset + len(rows) < total_count,
        )

    def list_transactions(
        self,
        member_id: Optional[int] = None,
        type: Optional[PointsTransactionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[PointsLedgerEntry], int]:
        """관리자용 원장 조회 (회원/타입/기간 필터)"""
        query = self.db.query(PointsLedgerModel)
        if member_id is not None:
            query = query.filter(PointsLedgerModel.member_id == member_id)
        if type is not None:
            query = query.filter(PointsLedgerModel.type == type)
        if start is not None:
            query = query.filter(PointsLedgerModel.created_at >= start)
        if end is not None:
            query = query.filter(PointsLedgerModel.created_at < end)

        total_count = query.count()
        rows = (
            query.order_by(PointsLedgerModel.id.desc()).offset(offset).limit(limit).all()
        )
        return self._to_schemas(rows), total_count

    def verify_integrity_for_member(self, member_id: int) -> PointsIntegrityCheckResponse:
        """
        회원 원장 정합성 검증

        원장 합계와 최신 항목의 balance_after가 일치하는지, 순번이 1부터
        빠짐없이 이어지는지 확인합니다.
        """
        rows = (
            self.db.query(PointsLedgerModel)
            .filter(PointsLedgerModel.member_id == member_id)
            .order_by(PointsLedgerModel.sequence)
            .all()
        )
        calculated = sum(row.amount for row in rows)
        recorded = rows[-1].balance_after if rows else 0
        sequences_ok = [row.sequence for row in rows] == list(range(1, len(rows) + 1))

        running = 0
        running_ok = True
        for row in rows:
            running += row.amount
            if running != row.balance_after:
                running_ok = False
                break

        ok = calculated == recorded and sequences_ok and running_ok
        return PointsIntegrityCheckResponse(
            status="OK" if ok else "MISMATCH",
            member_id=member_id,
            calculated_balance=calculated,
            recorded_balance=recorded,
            entry_count=len(rows),
        )

    def verify_global_integrity(self) -> PointsIntegrityCheckResponse:
        """전체 회원 원장 정합성 검증"""
        member_ids = [
            row[0]
            for row in self.db.query(PointsLedgerModel.member_id).distinct().all()
        ]
        mismatched = []
        total_entries = 0
        for member_id in member_ids:
            result = self.verify_integrity_for_member(member_id)
            total_entries += result.entry_count or 0
            if result.status != "OK":
                mismatched.append(member_id)

        return PointsIntegrityCheckResponse(
            status="OK" if not mismatched else "MISMATCH",
            entry_count=total_entries,
            member_count=len(member_ids),
            mismatched_member_ids=mismatched,
        )
