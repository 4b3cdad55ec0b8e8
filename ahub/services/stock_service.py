import logging
from typing import List

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import ValidationError
from ahub.database.transaction import run_in_transaction
from ahub.repositories.stock_repository import StockKind, StockRepository
from ahub.schemas.store import (
    StockAdjustResponse,
    StockMovement,
    StockReconcileResponse,
)
from ahub.schemas.user import Member
from ahub.utils.date_utils import Clock, utc_now

logger = logging.getLogger(__name__)


class StockService:
    """관리자 재고 조정과 재고 정합성 검증"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.stock_repo = StockRepository(db)

    def adjust(
        self,
        actor: Member,
        kind: StockKind,
        item_id: int,
        delta: int,
        reason: str,
    ) -> StockAdjustResponse:
        """재고 조정

        Args:
            actor: 요청한 관리자
            kind: store | kyosk
            item_id: 상품 ID
            delta: 변동량 (0 불가)
            reason: 조정 사유

        Returns:
            StockAdjustResponse: 변경 후 재고

        Raises:
            NegativeStockError: 재고가 음수가 되는 경우
        """
        ensure_capability(actor, Capability.ADJUST_STOCK)
        if delta == 0:
            raise ValidationError("Stock delta must be non-zero", {"delta": delta})

        new_stock = run_in_transaction(
            self.db,
            lambda: self.stock_repo.adjust(
                kind, item_id, delta, reason, created_at=self.clock()
            ),
            label="stock_adjust",
        )
        logger.info(
            f"Admin {actor.id} adjusted {StockKind(kind).value} item {item_id} "
            f"by {delta} ({reason}) -> {new_stock}"
        )
        return StockAdjustResponse(item_id=item_id, delta=delta, new_stock=new_stock)

    def reconcile(self, kind: StockKind, item_id: int) -> StockReconcileResponse:
        result = self.stock_repo.reconcile(kind, item_id)
        if result.status != "OK":
            logger.error(f"Stock mismatch for {StockKind(kind).value} item {item_id}: {result}")
        return result

    def list_movements(
        self, actor: Member, kind: StockKind, item_id: int, limit: int = 50
    ) -> List[StockMovement]:
        """재고 이동 이력 (최신순)"""
        ensure_capability(actor, Capability.ADJUST_STOCK)
        # 없는 상품이면 NotFoundError
        self.stock_repo.get_stock(kind, item_id)
        return self.stock_repo.list_movements(
            kind, item_id, limit=limit, newest_first=True
        )
