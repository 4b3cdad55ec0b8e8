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
from sqlalchemy.schema import CheckConstraint

from ahub.models.base import BaseModel, BigIntPK


class KyoskStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class KyoskOrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Kyosk(BaseModel):
    __tablename__ = "kyosks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[KyoskStatus] = mapped_column(
        Enum(KyoskStatus, native_enum=False, length=16),
        default=KyoskStatus.ACTIVE,
        nullable=False,
    )
    qr_rotation_seconds: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=5, nullable=False)


class KyoskProduct(BaseModel):
    __tablename__ = "kyosk_products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_kyosk_products_stock"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    kyosk_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("kyosks.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    points_price: Mapped[int] = mapped_column(Integer, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class KyoskStockMovement(BaseModel):
    __tablename__ = "kyosk_stock_movements"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    kyosk_product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("kyosk_products.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)


class KyoskOrder(BaseModel):
    """키오스크 화면에서 생성되어 회원의 QR 결제를 기다리는 주문"""

    __tablename__ = "kyosk_orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    kyosk_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("kyosks.id"), nullable=False, index=True
    )
    total_points: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[KyoskOrderStatus] = mapped_column(
        Enum(KyoskOrderStatus, native_enum=False, length=16),
        default=KyoskOrderStatus.PENDING,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_by_member_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("members.id"), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    kyosk: Mapped[Kyosk] = relationship(Kyosk, lazy="joined")
    items: Mapped[List["KyoskOrderItem"]] = relationship(
        "KyoskOrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="KyoskOrderItem.id",
    )


class KyoskOrderItem(BaseModel):
    __tablename__ = "kyosk_order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    kyosk_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("kyosk_orders.id"), nullable=False, index=True
    )
    kyosk_product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("kyosk_products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    points_price: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped[KyoskOrder] = relationship(KyoskOrder, back_populates="items")
    product: Mapped[KyoskProduct] = relationship(KyoskProduct, lazy="joined")
