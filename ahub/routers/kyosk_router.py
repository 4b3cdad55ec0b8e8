"""
키오스크 API 라우터

관리자: 키오스크/상품 등록, 재고 조정/이력, 재고 부족 알림, 판매 요약
디스플레이 단말: 상품 화면, 결제 대기 주문 생성/폴링/취소
회원: 결제 QR 미리보기와 결제 확정 (/kyosk-payments)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from ahub.core.auth_middleware import get_current_active_user, require_admin
from ahub.deps import get_kyosk_service, get_redemption_service, get_stock_service
from ahub.models.kyosk import KyoskOrderStatus
from ahub.repositories.stock_repository import StockKind
from ahub.schemas.kyosk import (
    Kyosk,
    KyoskCreate,
    KyoskDisplayResponse,
    KyoskLowStockAlert,
    KyoskOrder,
    KyoskOrderCreate,
    KyoskOrderDisplay,
    KyoskProduct,
    KyoskProductCreate,
    KyoskProductUpdate,
    KyoskSalesSummary,
    PaymentConfirmResponse,
    PaymentPreviewResponse,
)
from ahub.schemas.qr import QrPayloadRequest
from ahub.schemas.store import (
    StockAdjustRequest,
    StockAdjustResponse,
    StockMovement,
    StockReconcileResponse,
)
from ahub.schemas.user import Member
from ahub.services.kyosk_service import KyoskService
from ahub.services.redemption_service import RedemptionService
from ahub.services.stock_service import StockService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kyosks", tags=["kyosks"])
payment_router = APIRouter(prefix="/kyosk-payments", tags=["kyosk-payments"])


# ---------------------------------------------------------------------------
# 관리자
# ---------------------------------------------------------------------------


@router.post("", response_model=Kyosk, status_code=201)
def create_kyosk(
    request: KyoskCreate,
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> Kyosk:
    return kyosk_service.create_kyosk(current_user, request)


@router.get("", response_model=List[Kyosk])
def list_kyosks(
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> List[Kyosk]:
    return kyosk_service.list_kyosks()


@router.post("/{kyosk_id}/products", response_model=KyoskProduct, status_code=201)
def create_product(
    request: KyoskProductCreate,
    kyosk_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> KyoskProduct:
    return kyosk_service.create_product(current_user, kyosk_id, request)


@router.get("/{kyosk_id}/products", response_model=List[KyoskProduct])
def list_products(
    kyosk_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> List[KyoskProduct]:
    return kyosk_service.list_products(kyosk_id)


@router.patch("/products/{product_id}", response_model=KyoskProduct)
def update_product(
    request: KyoskProductUpdate,
    product_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> KyoskProduct:
    """상품 활성화 토글 / 가격 변경"""
    return kyosk_service.update_product(current_user, product_id, request)


@router.post("/products/{product_id}/stock", response_model=StockAdjustResponse)
def adjust_product_stock(
    request: StockAdjustRequest,
    product_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    stock_service: StockService = Depends(get_stock_service),
) -> StockAdjustResponse:
    return stock_service.adjust(
        current_user, StockKind.KYOSK, product_id, request.delta, request.reason
    )


@router.get("/products/{product_id}/movements", response_model=List[StockMovement])
def list_product_movements(
    product_id: int = Path(..., gt=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: Member = Depends(require_admin),
    stock_service: StockService = Depends(get_stock_service),
) -> List[StockMovement]:
    return stock_service.list_movements(
        current_user, StockKind.KYOSK, product_id, limit=limit
    )


@router.get("/products/{product_id}/reconcile", response_model=StockReconcileResponse)
def reconcile_product_stock(
    product_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    stock_service: StockService = Depends(get_stock_service),
) -> StockReconcileResponse:
    return stock_service.reconcile(StockKind.KYOSK, product_id)


@router.get("/low-stock", response_model=List[KyoskLowStockAlert])
def list_low_stock(
    kyosk_id: Optional[int] = Query(None, gt=0),
    threshold: Optional[int] = Query(None, ge=0),
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> List[KyoskLowStockAlert]:
    """재고 부족 알림 - threshold를 생략하면 키오스크별 기준 사용"""
    return kyosk_service.list_low_stock(
        current_user, kyosk_id=kyosk_id, threshold=threshold
    )


@router.get("/{kyosk_id}/sales", response_model=KyoskSalesSummary)
def get_sales_summary(
    kyosk_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> KyoskSalesSummary:
    return kyosk_service.sales_summary(current_user, kyosk_id)


@router.get("/{kyosk_id}/orders", response_model=List[KyoskOrder])
def list_orders(
    kyosk_id: int = Path(..., gt=0),
    status: Optional[KyoskOrderStatus] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Member = Depends(require_admin),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> List[KyoskOrder]:
    return kyosk_service.list_orders(
        current_user, kyosk_id, status=status, limit=limit, offset=offset
    )


# ---------------------------------------------------------------------------
# 디스플레이 단말 (display 역할 또는 관리자)
# ---------------------------------------------------------------------------


@router.get("/{kyosk_id}/display", response_model=KyoskDisplayResponse)
def get_display(
    kyosk_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> KyoskDisplayResponse:
    """화면에 표시할 판매 가능 상품 (활성 + 재고 있음)"""
    return kyosk_service.get_display(current_user, kyosk_id)


@router.post("/{kyosk_id}/orders", response_model=KyoskOrderDisplay, status_code=201)
def create_order(
    request: KyoskOrderCreate,
    kyosk_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> KyoskOrderDisplay:
    """
    결제 대기 주문 생성

    이전 대기 주문은 취소되고, 새 주문에 묶인 결제 QR이 반환됩니다.
    """
    return kyosk_service.create_order(current_user, kyosk_id, request)


@router.get("/{kyosk_id}/orders/{order_id}", response_model=KyoskOrderDisplay)
def get_order_display(
    kyosk_id: int = Path(..., gt=0),
    order_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> KyoskOrderDisplay:
    """주문 상태 폴링 - 대기 중이면 현재 결제 QR과 다음 교체까지 남은 시간"""
    return kyosk_service.get_order_display(current_user, kyosk_id, order_id)


@router.post("/{kyosk_id}/orders/{order_id}/cancel", response_model=KyoskOrder)
def cancel_order(
    kyosk_id: int = Path(..., gt=0),
    order_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    kyosk_service: KyoskService = Depends(get_kyosk_service),
) -> KyoskOrder:
    return kyosk_service.cancel_order(current_user, kyosk_id, order_id)


# ---------------------------------------------------------------------------
# 회원 결제
# ---------------------------------------------------------------------------


@payment_router.post("/preview", response_model=PaymentPreviewResponse)
def preview_payment(
    request: QrPayloadRequest,
    current_user: Member = Depends(get_current_active_user),
    redemption_service: RedemptionService = Depends(get_redemption_service),
) -> PaymentPreviewResponse:
    """결제 QR 스캔 후 주문 내용 미리보기 (상태 변경 없음)"""
    return redemption_service.preview_payment(request.qr_payload)


@payment_router.post("/confirm", response_model=PaymentConfirmResponse)
def confirm_payment(
    request: QrPayloadRequest,
    current_user: Member = Depends(get_current_active_user),
    redemption_service: RedemptionService = Depends(get_redemption_service),
) -> PaymentConfirmResponse:
    """
    결제 확정

    HTTP Status:
        200: 결제 완료
        400: 잔액/재고 부족, 만료된 주문, QR 교체됨 (TOKEN_NO_LONGER_VALID)
        409: 동시 결제 충돌
    """
    return redemption_service.confirm_payment(current_user, request.qr_payload)
