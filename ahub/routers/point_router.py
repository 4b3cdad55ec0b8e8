"""
포인트 API 라우터

회원용 엔드포인트:
- GET /points/balance: 내 포인트 잔액
- GET /points/ledger: 내 포인트 거래 내역 (최신순)
- POST /points/transfer: 다른 회원에게 포인트 이체
- GET /points/integrity/my: 내 원장 정합성 검증

관리자용 엔드포인트:
- POST /points/admin/adjust/{member_id}: 포인트 조정 (추가/차감)
- GET /points/admin/transactions: 전체 거래 조회 (회원/타입/기간 필터)
- GET /points/admin/balance/{member_id}: 회원 잔액 조회
- GET /points/admin/integrity: 전체 원장 정합성 검증

모든 엔드포인트는 Bearer 토큰 인증이 필요합니다.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from ahub.core.auth_middleware import get_current_active_user, require_admin
from ahub.deps import get_point_service
from ahub.models.points import PointsTransactionType
from ahub.schemas.points import (
    AdminPointsAdjustmentRequest,
    AdminTransactionsResponse,
    PointsBalanceResponse,
    PointsIntegrityCheckResponse,
    PointsLedgerResponse,
    PointsTransactionResponse,
    PointsTransferRequest,
)
from ahub.schemas.user import Member
from ahub.services.point_service import PointService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/balance", response_model=PointsBalanceResponse)
def get_my_balance(
    current_user: Member = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> PointsBalanceResponse:
    """내 포인트 잔액 조회 (원장 합계)"""
    return point_service.get_balance(current_user.id)


@router.get("/ledger", response_model=PointsLedgerResponse)
def get_my_ledger(
    limit: int = Query(50, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    current_user: Member = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> PointsLedgerResponse:
    """
    내 포인트 거래 내역 조회

    Query Parameters:
        limit: 한 페이지에 조회할 항목 수 (1-100, 기본: 50)
        offset: 건너뛸 항목 수 (기본: 0)

    사용 예시:
        GET /points/ledger?limit=20&offset=0
    """
    return point_service.get_ledger(current_user.id, limit=limit, offset=offset)


@router.post("/transfer", response_model=PointsTransactionResponse)
def transfer_points(
    request: PointsTransferRequest,
    current_user: Member = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> PointsTransactionResponse:
    """
    다른 회원에게 포인트 이체

    HTTP Status:
        200: 이체 완료
        400: 잔액 부족, 자기 자신에게 이체 등
        404: 받는 회원 없음
    """
    return point_service.transfer(
        current_user, request.to_member_id, request.amount, request.description
    )


@router.get("/integrity/my", response_model=PointsIntegrityCheckResponse)
def verify_my_integrity(
    current_user: Member = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> PointsIntegrityCheckResponse:
    """내 원장 합계와 마지막 balance_after 비교"""
    return point_service.verify_integrity_for_member(current_user.id)


# ---------------------------------------------------------------------------
# 관리자
# ---------------------------------------------------------------------------


@router.post("/admin/adjust/{member_id}", response_model=PointsTransactionResponse)
def admin_adjust_points(
    request: AdminPointsAdjustmentRequest,
    member_id: int = Path(..., gt=0, description="대상 회원 ID"),
    current_user: Member = Depends(require_admin),
    point_service: PointService = Depends(get_point_service),
) -> PointsTransactionResponse:
    """
    관리자 포인트 조정

    양수는 추가, 음수는 차감이며 잔액이 음수가 되는 차감은 거절됩니다.
    """
    return point_service.admin_adjust(
        current_user, member_id, request.amount, request.description
    )


@router.get("/admin/transactions", response_model=AdminTransactionsResponse)
def admin_list_transactions(
    member_id: Optional[int] = Query(None, gt=0),
    type: Optional[PointsTransactionType] = Query(None, description="트랜잭션 타입"),
    start: Optional[datetime] = Query(None, description="시작 시각 (포함)"),
    end: Optional[datetime] = Query(None, description="종료 시각 (미포함)"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Member = Depends(require_admin),
    point_service: PointService = Depends(get_point_service),
) -> AdminTransactionsResponse:
    return point_service.list_transactions(
        member_id=member_id, type=type, start=start, end=end, limit=limit, offset=offset
    )


@router.get("/admin/balance/{member_id}", response_model=PointsBalanceResponse)
def admin_get_balance(
    member_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    point_service: PointService = Depends(get_point_service),
) -> PointsBalanceResponse:
    return point_service.get_balance(member_id)


@router.get("/admin/integrity", response_model=PointsIntegrityCheckResponse)
def admin_verify_integrity(
    current_user: Member = Depends(require_admin),
    point_service: PointService = Depends(get_point_service),
) -> PointsIntegrityCheckResponse:
    """전체 회원 원장 정합성 검증"""
    return point_service.verify_global_integrity()
