from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ahub.models.store import OrderStatus


class StoreItem(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    points_price: int
    stock: int
    is_active: bool = True
    offer_ends_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StoreItemCreate(BaseModel):
    """스토어 상품 등록 요청 (관리자)"""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    points_price: int = Field(..., gt=0, description="포인트 가격")
    initial_stock: int = Field(0, ge=0, description="초기 재고")
    is_active: bool = True
    offer_ends_at: Optional[datetime] = None


class StoreItemUpdate(BaseModel):
    """스토어 상품 수정 요청 (관리자) - offer_ends_at은 null로 보내면 해제"""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    points_price: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None
    offer_ends_at: Optional[datetime] = None

    @field_validator("name", "points_price", "is_active")
    @classmethod
    def must_not_be_null(cls, v):
        if v is None:
            raise ValueError("must not be null")
        return v


class StockAdjustRequest(BaseModel):
    delta: int = Field(..., description="재고 변동량 (양수: 입고, 음수: 출고)")
    reason: str = Field(..., min_length=1, max_length=200)

    @field_validator("delta")
    @classmethod
    def delta_must_not_be_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("delta must not be zero")
        return v


class StockAdjustResponse(BaseModel):
    item_id: int
    delta: int
    new_stock: int


class StockMovement(BaseModel):
    id: int
    quantity: int
    reason: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StockReconcileResponse(BaseModel):
    """재고 카운터와 이동 로그 합계 비교 결과"""

    item_id: int
    stock: int
    movements_total: int
    movement_count: int
    status: str = Field(..., description="OK | MISMATCH")


class CartItemRequest(BaseModel):
    store_item_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class CartLine(BaseModel):
    id: int
    store_item_id: int
    name: str
    points_price: int
    quantity: int
    subtotal: int
    available_stock: int
    is_available: bool


class CartResponse(BaseModel):
    items: List[CartLine] = Field(default_factory=list)
    total_points: int = 0
    item_count: int = 0


class CheckoutItem(BaseModel):
    """결제할 상품과 수량 - 가격은 항상 카탈로그에서 다시 조회"""

    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    id: int
    store_item_id: int
    quantity: int
    points_price: int

    class Config:
        from_attributes = True


class Order(BaseModel):
    id: int
    member_id: int
    total_points: int
    status: OrderStatus
    items: List[OrderItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CheckoutResponse(BaseModel):
    order: Order
    balance_after: int


class OrderListResponse(BaseModel):
    orders: List[Order]
    total_count: int
    has_next: bool
