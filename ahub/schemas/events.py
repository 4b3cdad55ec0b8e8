from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ahub.models.events import EventStatus
from ahub.utils.date_utils import ensure_utc


class EventCreate(BaseModel):
    """이벤트 생성 요청 (관리자)"""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    start_at: datetime
    end_at: datetime
    total_points: int = Field(..., ge=0)
    allow_multiple_checkins: bool = False
    max_checkins_per_user: Optional[int] = Field(None, ge=1)
    checkin_interval_seconds: Optional[int] = Field(None, ge=0)
    qr_rotation_seconds: int = Field(30, description="체크인 QR 교체 주기 (초)")

    @model_validator(mode="after")
    def validate_window(self) -> "EventCreate":
        if ensure_utc(self.start_at) >= ensure_utc(self.end_at):
            raise ValueError("start_at must be before end_at")
        if self.allow_multiple_checkins and not self.max_checkins_per_user:
            raise ValueError(
                "max_checkins_per_user is required when multiple check-ins are allowed"
            )
        return self


class Event(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    start_at: datetime
    end_at: datetime
    total_points: int
    allow_multiple_checkins: bool
    max_checkins_per_user: Optional[int] = None
    checkin_interval_seconds: Optional[int] = None
    qr_rotation_seconds: int
    status: EventStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def checkin_cap(self) -> int:
        if not self.allow_multiple_checkins:
            return 1
        return self.max_checkins_per_user or 1

    @property
    def points_per_checkin(self) -> int:
        return self.total_points // self.checkin_cap


class EventStatusUpdate(BaseModel):
    status: EventStatus


class EventDisplayResponse(BaseModel):
    """이벤트 화면 폴링 응답"""

    event_id: int
    name: str
    status: EventStatus
    qr_payload: str
    next_rotation_in: int
    total_checkins: int
    unique_members: int


class Checkin(BaseModel):
    id: int
    event_id: int
    member_id: int
    checkin_number: int
    points_awarded: int
    ledger_entry_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CheckinResponse(BaseModel):
    checkin: Checkin
    event_name: str
    balance_after: int
    checkins_remaining: int


class CheckinStatusResponse(BaseModel):
    """체크인 시도 전 상태 조회 (스캔 소모 없음)"""

    event_id: int
    can_checkin: bool
    checkins_remaining: int
    wait_time_seconds: int = 0
    total_points_earned: int = 0
    checkin_count: int = 0
    last_checkin_at: Optional[datetime] = None
    reason: Optional[str] = None


class EventReportRow(BaseModel):
    member_id: int
    member_name: Optional[str] = None
    checkin_count: int
    points_earned: int


class EventReportResponse(BaseModel):
    event_id: int
    total_checkins: int
    unique_members: int
    total_points_awarded: int
    members: List[EventReportRow]
