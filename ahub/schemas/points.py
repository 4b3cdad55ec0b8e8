from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from ahub.models.points import PointsTransactionType


class PointsBalanceResponse(BaseModel):
    """포인트 잔액 응답"""

    member_id: int = Field(..., description="회원 ID")
    balance: int = Field(..., description="현재 포인트 잔액")

    class Config:
        from_attributes = True


class PointsLedgerEntry(BaseModel):
    """포인트 원장 항목"""

    id: int = Field(..., description="원장 항목 ID")
    member_id: int = Field(..., description="회원 ID")
    sequence: int = Field(..., description="회원별 거래 순번")
    amount: int = Field(..., description="포인트 변화량 (양수=적립, 음수=차감)")
    type: PointsTransactionType = Field(..., description="트랜잭션 타입")
    reference_id: Optional[str] = Field(None, description="참조 ID")
    description: str = Field("", description="트랜잭션 사유")
    related_member_id: Optional[int] = Field(None, description="상대 회원 ID")
    balance_after: int = Field(..., description="트랜잭션 후 잔액")
    created_at: Optional[datetime] = Field(None, description="생성 시간")

    class Config:
        from_attributes = True


class PointsLedgerResponse(BaseModel):
    """포인트 원장 조회 응답"""

    balance: int = Field(..., description="현재 잔액")
    entries: List[PointsLedgerEntry] = Field(..., description="원장 항목 목록")
    total_count: int = Field(..., description="전체 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class PointsTransferRequest(BaseModel):
    """회원 간 포인트 이체 요청"""

    to_member_id: int = Field(..., gt=0, description="받는 회원 ID")
    amount: int = Field(..., gt=0, description="이체 포인트")
    description: str = Field("", max_length=255, description="메모")


class AdminPointsAdjustmentRequest(BaseModel):
    """관리자 포인트 조정 요청"""

    amount: int = Field(..., description="조정할 포인트 (양수: 추가, 음수: 차감)")
    description: str = Field(..., min_length=1, max_length=255, description="조정 사유")


class PointsTransactionResponse(BaseModel):
    """포인트 트랜잭션 응답"""

    success: bool = Field(True, description="성공 여부")
    transaction_id: int = Field(..., description="원장 항목 ID")
    amount: int = Field(..., description="포인트 변화량")
    balance_after: int = Field(..., description="트랜잭션 후 잔액")
    message: str = Field("", description="응답 메시지")


class AdminTransactionsResponse(BaseModel):
    entries: List[PointsLedgerEntry]
    total_count: int
    has_next: bool


class PointsIntegrityCheckResponse(BaseModel):
    """포인트 정합성 검증 응답"""

    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    member_id: Optional[int] = Field(None, description="회원 ID (단일 회원 검증 시)")
    calculated_balance: Optional[int] = Field(None, description="원장 합계로 계산된 잔액")
    recorded_balance: Optional[int] = Field(None, description="최신 balance_after")
    entry_count: Optional[int] = Field(None, description="항목 수")
    member_count: Optional[int] = Field(None, description="검증한 회원 수")
    mismatched_member_ids: List[int] = Field(default_factory=list)
