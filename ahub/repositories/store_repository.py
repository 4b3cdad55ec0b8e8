from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ahub.core.exceptions import ConflictError
from ahub.models.store import CartItem as CartItemModel
from ahub.models.store import Order as OrderModel
from ahub.models.store import OrderItem as OrderItemModel
from ahub.models.store import OrderStatus
from ahub.models.store import StoreItem as StoreItemModel
from ahub.repositories.base import BaseRepository
from ahub.schemas.store import CartLine
from ahub.schemas.store import Order as OrderSchema
from ahub.schemas.store import StoreItem as StoreItemSchema


class StoreItemRepository(BaseRepository[StoreItemModel, StoreItemSchema]):
    def __init__(self, db: Session):
        super().__init__(StoreItemModel, StoreItemSchema, db)

    def list_items(self, active_only: bool = True) -> List[StoreItemSchema]:
        query = self.db.query(StoreItemModel)
        if active_only:
            query = query.filter(StoreItemModel.is_active.is_(True))
        return self._to_schemas(query.order_by(StoreItemModel.id).all())

    def get_many(self, item_ids: Iterable[int]) -> dict:
        ids = list(item_ids)
        if not ids:
            return {}
        rows = self.db.query(StoreItemModel).filter(StoreItemModel.id.in_(ids)).all()
        return {row.id: self.schema_class.model_validate(row) for row in rows}


class CartRepository:
    """회원별 장바구니 (회원+상품당 한 행)"""

    def __init__(self, db: Session):
        self.db = db

    def _row(self, member_id: int, store_item_id: int) -> Optional[CartItemModel]:
        return (
            self.db.query(CartItemModel)
            .filter(
                CartItemModel.member_id == member_id,
                CartItemModel.store_item_id == store_item_id,
            )
            .first()
        )

    def get_lines(self, member_id: int) -> List[CartLine]:
        rows = (
            self.db.query(CartItemModel)
            .filter(CartItemModel.member_id == member_id)
            .order_by(CartItemModel.id)
            .all()
        )
        return [
            CartLine(
                id=row.id,
                store_item_id=row.store_item_id,
                name=row.store_item.name,
                points_price=row.store_item.points_price,
                quantity=row.quantity,
                subtotal=row.store_item.points_price * row.quantity,
                available_stock=row.store_item.stock,
                is_available=bool(row.store_item.is_active),
            )
            for row in rows
        ]

    def get_quantity(self, member_id: int, store_item_id: int) -> int:
        row = self._row(member_id, store_item_id)
        return row.quantity if row else 0

    def set_quantity(
        self, member_id: int, store_item_id: int, quantity: int, now: datetime
    ) -> None:
        row = self._row(member_id, store_item_id)
        if row is None:
            row = CartItemModel(
                member_id=member_id,
                store_item_id=store_item_id,
                quantity=quantity,
                created_at=now,
                updated_at=now,
            )
            self.db.add(row)
        else:
            row.quantity = quantity
            row.updated_at = now
        try:
            self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                message="Cart was modified concurrently",
                details={"member_id": member_id, "store_item_id": store_item_id},
            ) from e

    def remove(self, member_id: int, store_item_id: int) -> bool:
        deleted = (
            self.db.query(CartItemModel)
            .filter(
                CartItemModel.member_id == member_id,
                CartItemModel.store_item_id == store_item_id,
            )
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return deleted > 0

    def clear(self, member_id: int) -> int:
        deleted = (
            self.db.query(CartItemModel)
            .filter(CartItemModel.member_id == member_id)
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return deleted


class OrderRepository(BaseRepository[OrderModel, OrderSchema]):
    def __init__(self, db: Session):
        super().__init__(OrderModel, OrderSchema, db)

    def create_order(
        self,
        member_id: int,
        lines: List[Tuple[int, int, int]],
        created_at: datetime,
        status: OrderStatus = OrderStatus.COMPLETED,
    ) -> OrderSchema:
        """
        주문과 주문 항목 생성

        Args:
            lines: (store_item_id, quantity, 주문 시점 가격) 목록
        """
        order = OrderModel(
            member_id=member_id,
            total_points=sum(quantity * price for _, quantity, price in lines),
            status=status,
            created_at=created_at,
        )
        order.items = [
            OrderItemModel(
                store_item_id=item_id,
                quantity=quantity,
                points_price=price,
                created_at=created_at,
            )
            for item_id, quantity, price in lines
        ]
        self.db.add(order)
        self.db.flush()
        return self.schema_class.model_validate(order)

    def mark_status(
        self, order_id: int, expected: OrderStatus, new_status: OrderStatus
    ) -> bool:
        """상태가 expected인 경우에만 변경 (동시 취소 방지)"""
        updated = (
            self.db.query(OrderModel)
            .filter(OrderModel.id == order_id, OrderModel.status == expected)
            .update({OrderModel.status: new_status}, synchronize_session="fetch")
        )
        self.db.flush()
        return updated > 0

    def list_orders(
        self,
        member_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[OrderSchema], int]:
        query = self.db.query(OrderModel)
        if member_id is not None:
            query = query.filter(OrderModel.member_id == member_id)
        if status is not None:
            query = query.filter(OrderModel.status == status)
        total_count = query.count()
        rows = query.order_by(OrderModel.id.desc()).offset(offset).limit(limit).all()
        return self._to_schemas(rows), total_count
