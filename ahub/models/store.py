import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.schema import CheckConstraint, UniqueConstraint

from ahub.models.base import BaseModel, BigIntPK


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StoreItem(BaseModel):
    __tablename__ = "store_items"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_store_items_stock"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    points_price: Mapped[int] = mapped_column(Integer, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    offer_ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class StockMovement(BaseModel):
    """재고 이동 로그 - 불변"""

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    store_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("store_items.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)


class CartItem(BaseModel):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("member_id", "store_item_id", name="uq_cart_member_item"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id"), nullable=False, index=True
    )
    store_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("store_items.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    store_item: Mapped[StoreItem] = relationship(StoreItem, lazy="joined")


class Order(BaseModel):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id"), nullable=False, index=True
    )
    total_points: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, native_enum=False, length=16),
        default=OrderStatus.PENDING,
        nullable=False,
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", lazy="selectin", order_by="OrderItem.id"
    )


class OrderItem(BaseModel):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id"), nullable=False, index=True
    )
    store_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("store_items.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # 주문 시점 가격 - 이후 카탈로그 가격 변경의 영향을 받지 않음
    points_price: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped[Order] = relationship(Order, back_populates="items")
    store_item: Mapped[StoreItem] = relationship(StoreItem, lazy="joined")
