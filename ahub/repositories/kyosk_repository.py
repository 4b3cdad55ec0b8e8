from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ahub.models.kyosk import Kyosk as KyoskModel
from ahub.models.kyosk import KyoskOrder as KyoskOrderModel
from ahub.models.kyosk import KyoskOrderItem as KyoskOrderItemModel
from ahub.models.kyosk import KyoskOrderStatus, KyoskStatus
from ahub.models.kyosk import KyoskProduct as KyoskProductModel
from ahub.repositories.base import BaseRepository
from ahub.schemas.kyosk import Kyosk as KyoskSchema
from ahub.schemas.kyosk import KyoskOrder as KyoskOrderSchema
from ahub.schemas.kyosk import KyoskLowStockAlert
from ahub.schemas.kyosk import KyoskOrderItem as KyoskOrderItemSchema
from ahub.schemas.kyosk import KyoskProduct as KyoskProductSchema
from ahub.schemas.kyosk import KyoskSalesSummary


class KyoskRepository(BaseRepository[KyoskModel, KyoskSchema]):
    def __init__(self, db: Session):
        super().__init__(KyoskModel, KyoskSchema, db)

    def list_kyosks(self) -> List[KyoskSchema]:
        return self._to_schemas(self.db.query(KyoskModel).order_by(KyoskModel.id).all())


class KyoskProductRepository(BaseRepository[KyoskProductModel, KyoskProductSchema]):
    def __init__(self, db: Session):
        super().__init__(KyoskProductModel, KyoskProductSchema, db)

    def list_for_kyosk(
        self, kyosk_id: int, available_only: bool = False
    ) -> List[KyoskProductSchema]:
        query = self.db.query(KyoskProductModel).filter(
            KyoskProductModel.kyosk_id == kyosk_id
        )
        if available_only:
            query = query.filter(
                KyoskProductModel.is_active.is_(True), KyoskProductModel.stock > 0
            )
        return self._to_schemas(query.order_by(KyoskProductModel.id).all())

    def get_many(self, product_ids: Iterable[int]) -> dict:
        ids = list(product_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(KyoskProductModel).filter(KyoskProductModel.id.in_(ids)).all()
        )
        return {row.id: self.schema_class.model_validate(row) for row in rows}

    def list_low_stock(
        self, kyosk_id: Optional[int] = None, threshold: Optional[int] = None
    ) -> List[KyoskLowStockAlert]:
        """활성 키오스크의 활성 상품 중 재고가 기준 이하인 상품

        threshold가 없으면 키오스크별 low_stock_threshold를 사용합니다.
        """
        limit = KyoskModel.low_stock_threshold if threshold is None else threshold
        query = (
            self.db.query(KyoskModel, KyoskProductModel)
            .join(KyoskProductModel, KyoskProductModel.kyosk_id == KyoskModel.id)
            .filter(
                KyoskModel.status == KyoskStatus.ACTIVE,
                KyoskProductModel.is_active.is_(True),
                KyoskProductModel.stock <= limit,
            )
        )
        if kyosk_id is not None:
            query = query.filter(KyoskModel.id == kyosk_id)
        rows = query.order_by(KyoskProductModel.stock, KyoskProductModel.id).all()
        return [
            KyoskLowStockAlert(
                kyosk_id=kyosk.id,
                kyosk_name=kyosk.name,
                product_id=product.id,
                product_name=product.name,
                current_stock=product.stock,
                threshold=kyosk.low_stock_threshold if threshold is None else threshold,
            )
            for kyosk, product in rows
        ]


class KyoskOrderRepository(BaseRepository[KyoskOrderModel, KyoskOrderSchema]):
    """키오스크 주문 리포지토리 - 상태 변경은 모두 조건부 UPDATE"""

    def __init__(self, db: Session):
        super().__init__(KyoskOrderModel, KyoskOrderSchema, db)

    def _to_schema(self, model_instance) -> Optional[KyoskOrderSchema]:
        if model_instance is None:
            return None
        order = KyoskOrderSchema.model_validate(model_instance)
        order.items = [
            KyoskOrderItemSchema(
                id=item.id,
                kyosk_product_id=item.kyosk_product_id,
                quantity=item.quantity,
                points_price=item.points_price,
                product_name=item.product.name if item.product else None,
            )
            for item in model_instance.items
        ]
        return order

    def get_order(self, order_id: int) -> Optional[KyoskOrderSchema]:
        return self._to_schema(self._get_model(order_id))

    def create_order(
        self,
        kyosk_id: int,
        lines: List[Tuple[int, int, int]],
        expires_at: datetime,
        created_at: datetime,
    ) -> KyoskOrderSchema:
        """
        대기(PENDING) 주문 생성

        Args:
            lines: (kyosk_product_id, quantity, 주문 시점 가격) 목록
        """
        order = KyoskOrderModel(
            kyosk_id=kyosk_id,
            total_points=sum(quantity * price for _, quantity, price in lines),
            status=KyoskOrderStatus.PENDING,
            expires_at=expires_at,
            created_at=created_at,
        )
        order.items = [
            KyoskOrderItemModel(
                kyosk_product_id=product_id,
                quantity=quantity,
                points_price=price,
                created_at=created_at,
            )
            for product_id, quantity, price in lines
        ]
        self.db.add(order)
        self.db.flush()
        self.db.refresh(order)
        return self._to_schema(order)

    def cancel_pending(self, kyosk_id: int, exclude_order_id: Optional[int] = None) -> int:
        query = self.db.query(KyoskOrderModel).filter(
            KyoskOrderModel.kyosk_id == kyosk_id,
            KyoskOrderModel.status == KyoskOrderStatus.PENDING,
        )
        if exclude_order_id is not None:
            query = query.filter(KyoskOrderModel.id != exclude_order_id)
        updated = query.update(
            {KyoskOrderModel.status: KyoskOrderStatus.CANCELLED},
            synchronize_session="fetch",
        )
        self.db.flush()
        return updated

    def transition(
        self,
        order_id: int,
        expected: KyoskOrderStatus,
        new_status: KyoskOrderStatus,
        **values,
    ) -> bool:
        """상태가 expected인 경우에만 new_status로 변경"""
        changes = {KyoskOrderModel.status: new_status}
        for key, value in values.items():
            changes[getattr(KyoskOrderModel, key)] = value
        updated = (
            self.db.query(KyoskOrderModel)
            .filter(KyoskOrderModel.id == order_id, KyoskOrderModel.status == expected)
            .update(changes, synchronize_session="fetch")
        )
        self.db.flush()
        return updated > 0

    def list_orders(
        self,
        kyosk_id: int,
        status: Optional[KyoskOrderStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[KyoskOrderSchema]:
        query = self.db.query(KyoskOrderModel).filter(KyoskOrderModel.kyosk_id == kyosk_id)
        if status is not None:
            query = query.filter(KyoskOrderModel.status == status)
        rows = query.order_by(KyoskOrderModel.id.desc()).offset(offset).limit(limit).all()
        return [self._to_schema(row) for row in rows]

    def sales_summary(self, kyosk_id: int) -> KyoskSalesSummary:
        orders, points = (
            self.db.query(
                func.count(KyoskOrderModel.id),
                func.coalesce(func.sum(KyoskOrderModel.total_points), 0),
            )
            .filter(
                KyoskOrderModel.kyosk_id == kyosk_id,
                KyoskOrderModel.status == KyoskOrderStatus.COMPLETED,
            )
            .one()
        )
        items_sold = (
            self.db.query(func.coalesce(func.sum(KyoskOrderItemModel.quantity), 0))
            .join(KyoskOrderModel, KyoskOrderItemModel.kyosk_order_id == KyoskOrderModel.id)
            .filter(
                KyoskOrderModel.kyosk_id == kyosk_id,
                KyoskOrderModel.status == KyoskOrderStatus.COMPLETED,
            )
            .scalar()
        )
        return KyoskSalesSummary(
            kyosk_id=kyosk_id,
            completed_orders=int(orders),
            total_points=int(points),
            items_sold=int(items_sold or 0),
        )
