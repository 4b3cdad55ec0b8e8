"""
재고 리포지토리 - 스토어 상품과 키오스크 상품 공용

재고 카운터는 조건부 UPDATE 한 번으로만 변경합니다:

    UPDATE ... SET stock = stock + :delta WHERE id = :id AND stock + :delta >= 0

갱신된 행이 없으면 재고가 부족한 것이므로 카운터는 음수가 될 수 없습니다.
이동 로그는 같은 트랜잭션에서 함께 기록됩니다.
"""

import enum
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ahub.core.exceptions import (
    InsufficientStockError,
    NegativeStockError,
    NotFoundError,
    ValidationError,
)
from ahub.models.kyosk import KyoskProduct, KyoskStockMovement
from ahub.models.store import StockMovement, StoreItem
from ahub.schemas.store import StockMovement as StockMovementSchema
from ahub.schemas.store import StockReconcileResponse

INITIAL_STOCK_REASON = "initial stock"


class StockKind(str, enum.Enum):
    STORE = "store"
    KYOSK = "kyosk"


_TABLES = {
    StockKind.STORE: (StoreItem, StockMovement, "store_item_id"),
    StockKind.KYOSK: (KyoskProduct, KyoskStockMovement, "kyosk_product_id"),
}


class StockRepository:
    def __init__(self, db: Session):
        self.db = db

    def _tables(self, kind: StockKind) -> Tuple[type, type, str]:
        return _TABLES[StockKind(kind)]

    def _current(self, kind: StockKind, item_id: int):
        item_model, _, _ = self._tables(kind)
        return (
            self.db.query(item_model.id, item_model.name, item_model.stock)
            .filter(item_model.id == item_id)
            .first()
        )

    def get_stock(self, kind: StockKind, item_id: int) -> int:
        row = self._current(kind, item_id)
        if row is None:
            raise NotFoundError(f"Item {item_id} not found", {"item_id": item_id})
        return int(row.stock)

    def record_movement(
        self,
        kind: StockKind,
        item_id: int,
        quantity: int,
        reason: str,
        created_at: datetime,
    ) -> None:
        _, movement_model, fk = self._tables(kind)
        self.db.add(
            movement_model(
                **{fk: item_id},
                quantity=quantity,
                reason=reason,
                created_at=created_at,
            )
        )
        self.db.flush()

    def adjust(
        self,
        kind: StockKind,
        item_id: int,
        delta: int,
        reason: str,
        created_at: datetime,
        purchase: bool = False,
    ) -> int:
        """
        재고를 delta만큼 변경하고 이동 로그를 기록합니다 (커밋은 호출자 담당).

        Args:
            kind: store | kyosk
            item_id: 상품 ID
            delta: 변동량 (0 불가)
            reason: 변경 사유
            created_at: 기록 시각
            purchase: 구매에 의한 차감이면 부족 시 InsufficientStockError

        Returns:
            int: 변경 후 재고

        Raises:
            NotFoundError: 상품이 없는 경우
            NegativeStockError / InsufficientStockError: 재고가 음수가 되는 경우
        """
        if delta == 0:
            raise ValidationError("Stock delta must be non-zero", {"item_id": item_id})

        item_model, _, _ = self._tables(kind)
        row = self._current(kind, item_id)
        if row is None:
            raise NotFoundError(f"Item {item_id} not found", {"item_id": item_id})

        updated = (
            self.db.query(item_model)
            .filter(item_model.id == item_id, item_model.stock + delta >= 0)
            .update(
                {item_model.stock: item_model.stock + delta},
                synchronize_session="fetch",
            )
        )
        if updated == 0:
            available = self.get_stock(kind, item_id)
            if purchase:
                raise InsufficientStockError(
                    item_id=item_id,
                    item_name=row.name,
                    requested=-delta,
                    available=available,
                )
            raise NegativeStockError(item_id=item_id, current=available, delta=delta)

        self.record_movement(kind, item_id, delta, reason, created_at)
        return self.get_stock(kind, item_id)

    def list_movements(
        self,
        kind: StockKind,
        item_id: int,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[StockMovementSchema]:
        _, movement_model, fk = self._tables(kind)
        order = movement_model.id.desc() if newest_first else movement_model.id
        query = (
            self.db.query(movement_model)
            .filter(getattr(movement_model, fk) == item_id)
            .order_by(order)
        )
        if limit is not None:
            query = query.limit(limit)
        rows = query.all()
        return [StockMovementSchema.model_validate(row) for row in rows]

    def reconcile(self, kind: StockKind, item_id: int) -> StockReconcileResponse:
        """재고 카운터 == 이동 로그 합계 (초기 재고 포함) 검증"""
        _, movement_model, fk = self._tables(kind)
        stock = self.get_stock(kind, item_id)
        total, count = (
            self.db.query(
                func.coalesce(func.sum(movement_model.quantity), 0),
                func.count(movement_model.id),
            )
            .filter(getattr(movement_model, fk) == item_id)
            .one()
        )
        return StockReconcileResponse(
            item_id=item_id,
            stock=stock,
            movements_total=int(total),
            movement_count=int(count),
            status="OK" if stock == int(total) else "MISMATCH",
        )
