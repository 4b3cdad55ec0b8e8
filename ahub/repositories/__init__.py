# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .user_repository import MemberRepository
from .points_repository import PointsRepository
from .stock_repository import StockKind, StockRepository
from .qr_nonce_repository import QrNonceRepository
from .event_repository import CheckinRepository, EventRepository
from .store_repository import CartRepository, OrderRepository, StoreItemRepository
from .kyosk_repository import (
    KyoskOrderRepository,
    KyoskProductRepository,
    KyoskRepository,
)

__all__ = [
    "BaseRepository",
    "MemberRepository",
    "PointsRepository",
    "StockKind",
    "StockRepository",
    "QrNonceRepository",
    "CheckinRepository",
    "EventRepository",
    "CartRepository",
    "OrderRepository",
    "StoreItemRepository",
    "KyoskOrderRepository",
    "KyoskProductRepository",
    "KyoskRepository",
]
