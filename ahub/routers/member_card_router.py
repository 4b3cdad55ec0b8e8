from fastapi import APIRouter, Depends

from ahub.core.auth_middleware import get_current_active_user
from ahub.deps import get_member_card_service
from ahub.schemas.member_card import MemberCardQrResponse, MemberCardVerifyResponse
from ahub.schemas.qr import QrPayloadRequest
from ahub.schemas.user import Member
from ahub.services.member_card_service import MemberCardService

router = APIRouter(prefix="/member-card", tags=["member-card"])


@router.get("/qr", response_model=MemberCardQrResponse)
def get_member_card_qr(
    current_user: Member = Depends(get_current_active_user),
    member_card_service: MemberCardService = Depends(get_member_card_service),
) -> MemberCardQrResponse:
    """내 회원증 QR (60초마다 교체)"""
    return member_card_service.issue_card_qr(current_user)


@router.post("/verify", response_model=MemberCardVerifyResponse)
def verify_member_card(
    request: QrPayloadRequest,
    current_user: Member = Depends(get_current_active_user),
    member_card_service: MemberCardService = Depends(get_member_card_service),
) -> MemberCardVerifyResponse:
    """회원증 QR 확인 (디스플레이/관리자)"""
    return member_card_service.verify_card(current_user, request.qr_payload)
