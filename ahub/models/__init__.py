# 메타데이터 등록을 위해 모든 모델을 임포트

from .base import Base
from .user import Member, MemberRole
from .points import PointsLedger, PointsTransactionType
from .store import StoreItem, StockMovement, CartItem, Order, OrderItem, OrderStatus
from .kyosk import (
    Kyosk,
    KyoskProduct,
    KyoskStockMovement,
    KyoskOrder,
    KyoskOrderItem,
    KyoskStatus,
    KyoskOrderStatus,
)
from .events import Event, EventCheckin, EventStatus
from .qr import QrLiveNonce, QrPurpose

__all__ = [
    "Base",
    "Member",
    "MemberRole",
    "PointsLedger",
    "PointsTransactionType",
    "StoreItem",
    "StockMovement",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Kyosk",
    "KyoskProduct",
    "KyoskStockMovement",
    "KyoskOrder",
    "KyoskOrderItem",
    "KyoskStatus",
    "KyoskOrderStatus",
    "Event",
    "EventCheckin",
    "EventStatus",
    "QrLiveNonce",
    "QrPurpose",
]
