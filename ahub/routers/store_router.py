"""
스토어 API 라우터

- 상품 목록, 장바구니, 결제, 주문 조회 (회원)
- 상품 등록/수정, 재고 조정/이력/대사, 주문 조회/취소 (관리자)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from ahub.core.auth_middleware import get_current_active_user, require_admin
from ahub.deps import (
    get_cart_service,
    get_redemption_service,
    get_stock_service,
    get_store_service,
)
from ahub.models.store import OrderStatus
from ahub.repositories.stock_repository import StockKind
from ahub.schemas.store import (
    CartItemRequest,
    CartItemUpdate,
    CartResponse,
    CheckoutResponse,
    Order,
    OrderListResponse,
    StockAdjustRequest,
    StockAdjustResponse,
    StockMovement,
    StockReconcileResponse,
    StoreItem,
    StoreItemCreate,
    StoreItemUpdate,
)
from ahub.schemas.user import Member
from ahub.services.cart_service import CartService
from ahub.services.redemption_service import RedemptionService
from ahub.services.stock_service import StockService
from ahub.services.store_service import StoreService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/store", tags=["store"])


@router.get("/items", response_model=List[StoreItem])
def list_items(
    current_user: Member = Depends(get_current_active_user),
    store_service: StoreService = Depends(get_store_service),
) -> List[StoreItem]:
    """판매 중인 상품 목록"""
    return store_service.list_items()


# ---------------------------------------------------------------------------
# 장바구니
# ---------------------------------------------------------------------------


@router.get("/cart", response_model=CartResponse)
def get_cart(
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    return cart_service.get_cart(current_user.id)


@router.post("/cart", response_model=CartResponse)
def add_to_cart(
    request: CartItemRequest,
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    """장바구니에 상품 추가 (이미 담긴 상품이면 수량 합산)"""
    return cart_service.add_item(current_user, request.store_item_id, request.quantity)


@router.delete("/cart", response_model=CartResponse)
def clear_cart(
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    return cart_service.clear(current_user)


@router.patch("/cart/items/{store_item_id}", response_model=CartResponse)
def update_cart_item(
    request: CartItemUpdate,
    store_item_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    return cart_service.update_item(current_user, store_item_id, request.quantity)


@router.delete("/cart/items/{store_item_id}", response_model=CartResponse)
def remove_cart_item(
    store_item_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> CartResponse:
    return cart_service.remove_item(current_user, store_item_id)


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> CheckoutResponse:
    """
    장바구니 결제

    주문 생성, 포인트 차감, 재고 차감, 장바구니 비우기가 한 트랜잭션으로
    처리됩니다. 하나라도 실패하면 아무것도 반영되지 않습니다.

    HTTP Status:
        200: 결제 완료
        400: 잔액 부족 (BALANCE_001), 재고 부족 (STOCK_001), 판매 중지 상품
        409: 동시 결제 충돌 (재시도 후에도 실패)
    """
    return cart_service.checkout(current_user)


# ---------------------------------------------------------------------------
# 주문
# ---------------------------------------------------------------------------


@router.get("/orders", response_model=OrderListResponse)
def list_my_orders(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> OrderListResponse:
    return cart_service.list_orders(member_id=current_user.id, limit=limit, offset=offset)


@router.get("/orders/{order_id}", response_model=Order)
def get_order(
    order_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    cart_service: CartService = Depends(get_cart_service),
) -> Order:
    return cart_service.get_order(current_user, order_id)


# ---------------------------------------------------------------------------
# 관리자
# ---------------------------------------------------------------------------


@router.post("/admin/items", response_model=StoreItem, status_code=201)
def create_item(
    request: StoreItemCreate,
    current_user: Member = Depends(require_admin),
    store_service: StoreService = Depends(get_store_service),
) -> StoreItem:
    return store_service.create_item(current_user, request)


@router.patch("/admin/items/{item_id}", response_model=StoreItem)
def update_item(
    request: StoreItemUpdate,
    item_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    store_service: StoreService = Depends(get_store_service),
) -> StoreItem:
    """가격/판매 여부/판매 종료 시각 변경 - 기존 주문 가격은 그대로"""
    return store_service.update_item(current_user, item_id, request)


@router.post("/admin/items/{item_id}/stock", response_model=StockAdjustResponse)
def adjust_item_stock(
    request: StockAdjustRequest,
    item_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    stock_service: StockService = Depends(get_stock_service),
) -> StockAdjustResponse:
    """재고 입고/출고 - 재고가 음수가 되는 조정은 STOCK_002로 거절"""
    return stock_service.adjust(
        current_user, StockKind.STORE, item_id, request.delta, request.reason
    )


@router.get("/admin/items/{item_id}/movements", response_model=List[StockMovement])
def list_item_movements(
    item_id: int = Path(..., gt=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: Member = Depends(require_admin),
    stock_service: StockService = Depends(get_stock_service),
) -> List[StockMovement]:
    return stock_service.list_movements(
        current_user, StockKind.STORE, item_id, limit=limit
    )


@router.get("/admin/items/{item_id}/reconcile", response_model=StockReconcileResponse)
def reconcile_item_stock(
    item_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    stock_service: StockService = Depends(get_stock_service),
) -> StockReconcileResponse:
    return stock_service.reconcile(StockKind.STORE, item_id)


@router.get("/admin/orders", response_model=OrderListResponse)
def admin_list_orders(
    member_id: Optional[int] = Query(None, gt=0),
    status: Optional[OrderStatus] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Member = Depends(require_admin),
    cart_service: CartService = Depends(get_cart_service),
) -> OrderListResponse:
    return cart_service.list_orders(
        member_id=member_id, status=status, limit=limit, offset=offset
    )


@router.post("/admin/orders/{order_id}/cancel", response_model=Order)
def admin_cancel_order(
    order_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    redemption_service: RedemptionService = Depends(get_redemption_service),
) -> Order:
    """완료된 주문 취소 - 포인트 환불과 재고 복원"""
    return redemption_service.cancel_store_order(current_user, order_id)
