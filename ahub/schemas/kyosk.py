from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ahub.models.kyosk import KyoskOrderStatus, KyoskStatus


class Kyosk(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    status: KyoskStatus
    qr_rotation_seconds: int
    low_stock_threshold: int = 5

    class Config:
        from_attributes = True


class KyoskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    qr_rotation_seconds: int = Field(60, description="결제 QR 교체 주기 (초)")
    low_stock_threshold: int = Field(5, ge=1, description="재고 부족 알림 기준 (이하)")


class KyoskProduct(BaseModel):
    id: int
    kyosk_id: int
    name: str
    description: Optional[str] = None
    points_price: int
    stock: int
    is_active: bool = True

    class Config:
        from_attributes = True


class KyoskProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    points_price: int = Field(..., gt=0)
    initial_stock: int = Field(0, ge=0)
    is_active: bool = True


class KyoskProductUpdate(BaseModel):
    is_active: Optional[bool] = None
    points_price: Optional[int] = Field(None, gt=0)


class KyoskOrderLine(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)


class KyoskOrderCreate(BaseModel):
    """키오스크 화면에서 선택한 상품 목록"""

    items: List[KyoskOrderLine] = Field(..., min_length=1)


class KyoskOrderItem(BaseModel):
    id: int
    kyosk_product_id: int
    quantity: int
    points_price: int
    product_name: Optional[str] = None

    class Config:
        from_attributes = True


class KyoskOrder(BaseModel):
    id: int
    kyosk_id: int
    total_points: int
    status: KyoskOrderStatus
    expires_at: datetime
    paid_by_member_id: Optional[int] = None
    paid_at: Optional[datetime] = None
    items: List[KyoskOrderItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class KyoskOrderDisplay(BaseModel):
    """디스플레이 폴링용 주문 상태 (대기 중이면 결제 QR 포함)"""

    order: KyoskOrder
    qr_payload: Optional[str] = None
    next_rotation_in: Optional[int] = None
    expires_in: int = 0


class KyoskDisplayResponse(BaseModel):
    kyosk: Kyosk
    products: List[KyoskProduct]


class PaymentPreviewResponse(BaseModel):
    order_id: int
    kyosk_id: int
    kyosk_name: str
    items: List[KyoskOrderItem]
    total_points: int
    expires_at: datetime


class PaymentConfirmResponse(BaseModel):
    order_id: int
    kyosk_name: str
    total_points: int
    balance_after: int


class KyoskSalesSummary(BaseModel):
    kyosk_id: int
    completed_orders: int
    total_points: int
    items_sold: int


class KyoskLowStockAlert(BaseModel):
    kyosk_id: int
    kyosk_name: str
    product_id: int
    product_name: str
    current_stock: int
    threshold: int
