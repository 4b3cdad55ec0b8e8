import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import (
    BusinessLogicError,
    EventNotActiveError,
    EventNotFoundError,
)
from ahub.database.transaction import run_in_transaction
from ahub.models.events import EventStatus
from ahub.models.qr import QrPurpose
from ahub.repositories.event_repository import CheckinRepository, EventRepository
from ahub.repositories.user_repository import MemberRepository
from ahub.schemas.events import (
    Event,
    EventCreate,
    EventDisplayResponse,
    EventReportResponse,
    EventReportRow,
)
from ahub.schemas.user import Member
from ahub.services.qr_token_service import QrTokenService
from ahub.utils.date_utils import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

# 허용되는 상태 전이
_TRANSITIONS = {
    EventStatus.DRAFT: {EventStatus.ACTIVE, EventStatus.CANCELLED},
    EventStatus.ACTIVE: {EventStatus.COMPLETED, EventStatus.CANCELLED},
    EventStatus.COMPLETED: set(),
    EventStatus.CANCELLED: set(),
}


class EventService:
    """이벤트 관리(관리자)와 이벤트 화면 폴링"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.event_repo = EventRepository(db)
        self.checkin_repo = CheckinRepository(db)
        self.member_repo = MemberRepository(db)
        self.qr_service = QrTokenService(db, settings=settings, clock=clock)

    def _get_event(self, event_id: int) -> Event:
        event = self.event_repo.get_by_id(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def create_event(self, actor: Member, request: EventCreate) -> Event:
        """이벤트 생성 (DRAFT 상태)"""
        ensure_capability(actor, Capability.MANAGE_EVENTS)
        self.qr_service.validate_rotation_seconds(request.qr_rotation_seconds)

        max_checkins = request.max_checkins_per_user if request.allow_multiple_checkins else 1
        now = self.clock()
        event = run_in_transaction(
            self.db,
            lambda: self.event_repo.create(
                name=request.name,
                description=request.description,
                start_at=ensure_utc(request.start_at),
                end_at=ensure_utc(request.end_at),
                total_points=request.total_points,
                allow_multiple_checkins=request.allow_multiple_checkins,
                max_checkins_per_user=max_checkins,
                checkin_interval_seconds=request.checkin_interval_seconds,
                qr_rotation_seconds=request.qr_rotation_seconds,
                status=EventStatus.DRAFT,
                created_at=now,
                updated_at=now,
            ),
            label="create_event",
        )
        logger.info(f"Admin {actor.id} created event {event.id} ({event.name})")
        return event

    def list_events(
        self, status: Optional[EventStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Event]:
        return self.event_repo.list_events(status=status, limit=limit, offset=offset)

    def get_event(self, event_id: int) -> Event:
        return self._get_event(event_id)

    def update_status(self, actor: Member, event_id: int, status: EventStatus) -> Event:
        ensure_capability(actor, Capability.MANAGE_EVENTS)
        event = self._get_event(event_id)
        if status not in _TRANSITIONS[event.status]:
            raise BusinessLogicError(
                error_code="INVALID_STATUS_TRANSITION",
                message=f"Cannot change event from {event.status.value} to {status.value}",
                details={"event_id": event_id, "from": event.status.value, "to": status.value},
            )
        updated = run_in_transaction(
            self.db,
            lambda: self.event_repo.set_status(event_id, status),
            label="event_status",
        )
        logger.info(f"Admin {actor.id} set event {event_id} to {status.value}")
        return updated

    def get_display(self, actor: Member, event_id: int) -> EventDisplayResponse:
        """
        이벤트 화면 폴링

        진행 중인 이벤트의 현재 체크인 QR(만료 시 교체)과 통계를 반환합니다.
        종료 시각이 지난 ACTIVE 이벤트는 COMPLETED로 전환됩니다.
        """
        ensure_capability(actor, Capability.OPERATE_DISPLAY)
        event = self._get_event(event_id)
        now = self.clock()

        if event.status == EventStatus.ACTIVE and now > ensure_utc(event.end_at):
            run_in_transaction(
                self.db,
                lambda: self.event_repo.set_status(event_id, EventStatus.COMPLETED),
                label="complete_event",
            )
            logger.info(f"Event {event_id} auto-completed after end time")
            raise EventNotActiveError(event_id, "ended")
        if event.status == EventStatus.COMPLETED:
            raise EventNotActiveError(event_id, "ended")
        if event.status != EventStatus.ACTIVE:
            raise EventNotActiveError(event_id, "inactive")
        if now < ensure_utc(event.start_at):
            raise EventNotActiveError(event_id, "not_started")

        issued = run_in_transaction(
            self.db,
            lambda: self.qr_service.current_or_rotate(
                QrPurpose.CHECKIN, event.id, event.qr_rotation_seconds
            ),
            max_attempts=self.settings.CHECKIN_MAX_ATTEMPTS,
            label="event_qr",
        )
        total, unique = self.checkin_repo.stats(event_id)
        return EventDisplayResponse(
            event_id=event.id,
            name=event.name,
            status=event.status,
            qr_payload=issued.payload,
            next_rotation_in=self.qr_service.seconds_until_rotation(issued),
            total_checkins=total,
            unique_members=unique,
        )

    def get_report(self, actor: Member, event_id: int) -> EventReportResponse:
        """회원별 체크인 횟수와 적립 포인트"""
        ensure_capability(actor, Capability.MANAGE_EVENTS)
        self._get_event(event_id)
        rows = self.checkin_repo.report_rows(event_id)
        names = self.member_repo.get_names(member_id for member_id, _, _ in rows)
        members = [
            EventReportRow(
                member_id=member_id,
                member_name=names.get(member_id),
                checkin_count=count,
                points_earned=points,
            )
            for member_id, count, points in rows
        ]
        return EventReportResponse(
            event_id=event_id,
            total_checkins=sum(m.checkin_count for m in members),
            unique_members=len(members),
            total_points_awarded=sum(m.points_earned for m in members),
            members=members,
        )
