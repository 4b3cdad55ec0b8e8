"""
이벤트 / 체크인 API 라우터

- POST /events, GET /events, PATCH /events/{id}/status: 이벤트 관리 (관리자)
- GET /events/{id}/display: 이벤트 화면 QR과 통계 (디스플레이)
- POST /events/checkin: QR 스캔 체크인 (회원)
- GET /events/{id}/checkin-status, /my-checkins: 내 체크인 현황
- GET /events/{id}/report: 회원별 체크인 리포트 (관리자)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from ahub.core.auth_middleware import get_current_active_user, require_admin
from ahub.deps import get_checkin_service, get_event_service
from ahub.models.events import EventStatus
from ahub.schemas.events import (
    Checkin,
    CheckinResponse,
    CheckinStatusResponse,
    Event,
    EventCreate,
    EventDisplayResponse,
    EventReportResponse,
    EventStatusUpdate,
)
from ahub.schemas.qr import QrPayloadRequest
from ahub.schemas.user import Member
from ahub.services.checkin_service import CheckinService
from ahub.services.event_service import EventService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=Event, status_code=201)
def create_event(
    request: EventCreate,
    current_user: Member = Depends(require_admin),
    event_service: EventService = Depends(get_event_service),
) -> Event:
    """이벤트 생성 (DRAFT 상태로 생성됨)"""
    return event_service.create_event(current_user, request)


@router.get("", response_model=List[Event])
def list_events(
    status: Optional[EventStatus] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Member = Depends(get_current_active_user),
    event_service: EventService = Depends(get_event_service),
) -> List[Event]:
    return event_service.list_events(status=status, limit=limit, offset=offset)


@router.patch("/{event_id}/status", response_model=Event)
def update_event_status(
    request: EventStatusUpdate,
    event_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    event_service: EventService = Depends(get_event_service),
) -> Event:
    return event_service.update_status(current_user, event_id, request.status)


@router.get("/{event_id}/display", response_model=EventDisplayResponse)
def get_event_display(
    event_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    event_service: EventService = Depends(get_event_service),
) -> EventDisplayResponse:
    """
    이벤트 화면 폴링

    현재 체크인 QR(만료 시 교체), 다음 교체까지 남은 초, 체크인 통계를 반환합니다.
    """
    return event_service.get_display(current_user, event_id)


@router.post("/checkin", response_model=CheckinResponse)
def checkin(
    request: QrPayloadRequest,
    current_user: Member = Depends(get_current_active_user),
    checkin_service: CheckinService = Depends(get_checkin_service),
) -> CheckinResponse:
    """
    이벤트 QR 스캔 체크인

    HTTP Status:
        200: 체크인 완료 및 포인트 적립
        400: 만료/교체된 QR, 이벤트 미진행, 체크인 한도 초과, 재체크인 대기 중
        404: 이벤트 없음
    """
    return checkin_service.checkin(current_user, request.qr_payload)


@router.get("/{event_id}/checkin-status", response_model=CheckinStatusResponse)
def get_checkin_status(
    event_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    checkin_service: CheckinService = Depends(get_checkin_service),
) -> CheckinStatusResponse:
    return checkin_service.get_status(event_id, current_user.id)


@router.get("/{event_id}/my-checkins", response_model=List[Checkin])
def list_my_checkins(
    event_id: int = Path(..., gt=0),
    current_user: Member = Depends(get_current_active_user),
    checkin_service: CheckinService = Depends(get_checkin_service),
) -> List[Checkin]:
    return checkin_service.list_member_checkins(event_id, current_user.id)


@router.get("/{event_id}/report", response_model=EventReportResponse)
def get_event_report(
    event_id: int = Path(..., gt=0),
    current_user: Member = Depends(require_admin),
    event_service: EventService = Depends(get_event_service),
) -> EventReportResponse:
    return event_service.get_report(current_user, event_id)
