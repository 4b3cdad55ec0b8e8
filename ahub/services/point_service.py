from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import BusinessLogicError, NotFoundError, ValidationError
from ahub.database.transaction import run_in_transaction
from ahub.models.points import PointsTransactionType
from ahub.repositories.points_repository import PointsRepository
from ahub.repositories.user_repository import MemberRepository
from ahub.schemas.points import (
    AdminTransactionsResponse,
    PointsBalanceResponse,
    PointsIntegrityCheckResponse,
    PointsLedgerResponse,
    PointsTransactionResponse,
)
from ahub.schemas.user import Member
from ahub.utils.date_utils import Clock, utc_now

logger = logging.getLogger(__name__)


class PointService:
    """포인트 원장 관련 비즈니스 로직을 담당하는 서비스"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.points_repo = PointsRepository(db)
        self.member_repo = MemberRepository(db)

    def _require_member(self, member_id: int) -> Member:
        member = self.member_repo.get_by_id(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found", {"member_id": member_id})
        return member

    def balance_of(self, member_id: int) -> int:
        """원장 합계로 계산한 현재 잔액"""
        return self.points_repo.balance_of(member_id)

    def get_balance(self, member_id: int) -> PointsBalanceResponse:
        """회원 포인트 잔액 조회

        Args:
            member_id: 회원 ID

        Returns:
            PointsBalanceResponse: 포인트 잔액 정보
        """
        balance = self.points_repo.balance_of(member_id)
        logger.debug(f"Retrieved balance for member {member_id}: {balance}")
        return PointsBalanceResponse(member_id=member_id, balance=balance)

    def get_ledger(
        self, member_id: int, limit: int = 50, offset: int = 0
    ) -> PointsLedgerResponse:
        """회원 포인트 거래 내역 조회 (최신순, 페이지 크기는 LEDGER_PAGE_MAX 이하)"""
        limit = min(limit, self.settings.LEDGER_PAGE_MAX)
        return self.points_repo.get_member_ledger(member_id, limit=limit, offset=offset)

    def admin_adjust(
        self, actor: Member, member_id: int, amount: int, description: str
    ) -> PointsTransactionResponse:
        """관리자 포인트 조정

        Args:
            actor: 요청한 관리자
            member_id: 대상 회원 ID
            amount: 조정 포인트 (양수: 추가, 음수: 차감, 0 불가)
            description: 조정 사유

        Returns:
            PointsTransactionResponse: 조정 결과

        Raises:
            InsufficientBalanceError: 차감 후 잔액이 음수가 되는 경우
        """
        ensure_capability(actor, Capability.ADJUST_POINTS)
        if amount == 0:
            raise ValidationError("Adjustment amount must be non-zero", {"amount": amount})
        self._require_member(member_id)

        def operation():
            return self.points_repo.append(
                member_id=member_id,
                amount=amount,
                type=PointsTransactionType.ADMIN_ADJUSTMENT,
                description=description,
                created_at=self.clock(),
                reference_id=f"adjustment:{actor.id}",
                related_member_id=actor.id,
            )

        entry = run_in_transaction(
            self.db,
            operation,
            max_attempts=self.settings.REDEMPTION_MAX_ATTEMPTS,
            label="admin_adjust",
        )
        logger.info(
            f"Admin {actor.id} adjusted member {member_id} by {amount}: {description}"
        )
        return PointsTransactionResponse(
            transaction_id=entry.id,
            amount=entry.amount,
            balance_after=entry.balance_after,
            message="Adjustment recorded",
        )

    def transfer(
        self, actor: Member, to_member_id: int, amount: int, description: str = ""
    ) -> PointsTransactionResponse:
        """회원 간 포인트 이체 (TRANSFER_OUT / TRANSFER_IN을 한 트랜잭션으로)"""
        ensure_capability(actor, Capability.SPEND_OWN_POINTS)
        if amount <= 0:
            raise ValidationError("Transfer amount must be positive", {"amount": amount})
        if to_member_id == actor.id:
            raise BusinessLogicError(
                error_code="TRANSFER_SELF",
                message="Cannot transfer points to yourself",
            )
        recipient = self._require_member(to_member_id)
        if not recipient.is_active or recipient.is_display:
            raise BusinessLogicError(
                error_code="TRANSFER_RECIPIENT",
                message="Recipient cannot receive points",
                details={"member_id": to_member_id},
            )

        def operation():
            now = self.clock()
            # 교착 방지를 위해 항상 작은 ID부터 잠금
            first, second = sorted([actor.id, to_member_id])
            self.member_repo.lock(first)
            self.member_repo.lock(second)
            outgoing = self.points_repo.append(
                member_id=actor.id,
                amount=-amount,
                type=PointsTransactionType.TRANSFER_OUT,
                description=description or f"Transfer to member {to_member_id}",
                created_at=now,
                reference_id=f"transfer:{actor.id}:{to_member_id}",
                related_member_id=to_member_id,
            )
            self.points_repo.append(
                member_id=to_member_id,
                amount=amount,
                type=PointsTransactionType.TRANSFER_IN,
                description=description or f"Transfer from member {actor.id}",
                created_at=now,
                reference_id=f"transfer:{actor.id}:{to_member_id}",
                related_member_id=actor.id,
            )
            return outgoing

        outgoing = run_in_transaction(
            self.db,
            operation,
            max_attempts=self.settings.REDEMPTION_MAX_ATTEMPTS,
            label="transfer",
        )
        logger.info(f"Member {actor.id} transferred {amount} points to {to_member_id}")
        return PointsTransactionResponse(
            transaction_id=outgoing.id,
            amount=outgoing.amount,
            balance_after=outgoing.balance_after,
            message="Transfer completed",
        )

    def list_transactions(
        self,
        member_id: Optional[int] = None,
        type: Optional[PointsTransactionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> AdminTransactionsResponse:
        limit = min(limit, self.settings.LEDGER_PAGE_MAX)
        entries, total = self.points_repo.list_transactions(
            member_id=member_id, type=type, start=start, end=end, limit=limit, offset=offset
        )
        return AdminTransactionsResponse(
            entries=entries,
            total_count=total,
            has_next=offset + len(entries) < total,
        )

    def verify_integrity_for_member(self, member_id: int) -> PointsIntegrityCheckResponse:
        result = self.points_repo.verify_integrity_for_member(member_id)
        if result.status != "OK":
            logger.error(f"Ledger integrity mismatch for member {member_id}: {result}")
        return result

    def verify_global_integrity(self) -> PointsIntegrityCheckResponse:
        result = self.points_repo.verify_global_integrity()
        if result.status != "OK":
            logger.error(
                f"Ledger integrity mismatch for members {result.mismatched_member_ids}"
            )
        return result
