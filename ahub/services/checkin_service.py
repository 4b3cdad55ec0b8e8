"""
이벤트 체크인 엔진

이벤트 화면의 QR을 스캔한 회원에게 포인트를 적립합니다.

회원당 체크인 상한(cap)과 체크인 간격을 확인한 뒤 체크인 기록과
EVENT_CHECKIN 원장 항목을 한 트랜잭션으로 생성합니다. 같은 회원의
동시 체크인은 (event_id, member_id, checkin_number) 유니크 제약으로
하나만 커밋되며, 나머지는 최신 상태로 다시 평가됩니다.

체크인당 포인트 = floor(total_points / cap). 나머지는 지급하지 않습니다.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import (
    CheckinLimitReachedError,
    EventNotActiveError,
    EventNotFoundError,
    InvalidTokenError,
    TooSoonError,
)
from ahub.database.transaction import run_in_transaction
from ahub.models.events import EventStatus
from ahub.models.points import PointsTransactionType
from ahub.models.qr import QrPurpose
from ahub.repositories.event_repository import CheckinRepository, EventRepository
from ahub.repositories.points_repository import PointsRepository
from ahub.repositories.user_repository import MemberRepository
from ahub.schemas.events import (
    Checkin,
    CheckinResponse,
    CheckinStatusResponse,
    Event,
)
from ahub.schemas.user import Member
from ahub.services.qr_token_service import QrTokenService
from ahub.utils.date_utils import Clock, ensure_utc, seconds_until, utc_now

logger = logging.getLogger(__name__)


def inactive_reason(event: Event, now: datetime) -> Optional[str]:
    """체크인 불가 사유 (not_started | ended), 가능하면 None"""
    if now < ensure_utc(event.start_at):
        return "not_started"
    if now > ensure_utc(event.end_at) or event.status != EventStatus.ACTIVE:
        return "ended"
    return None


class CheckinService:
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
        self.points_repo = PointsRepository(db)
        self.member_repo = MemberRepository(db)
        self.qr_service = QrTokenService(db, settings=settings, clock=clock)

    def _get_event(self, event_id: int) -> Event:
        event = self.event_repo.get_by_id(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def _wait_seconds(self, event: Event, last: Optional[Checkin], now: datetime) -> int:
        if last is None or not event.checkin_interval_seconds:
            return 0
        next_allowed = ensure_utc(last.created_at) + timedelta(
            seconds=event.checkin_interval_seconds
        )
        return seconds_until(next_allowed, now)

    def checkin(self, actor: Member, qr_payload: str) -> CheckinResponse:
        """
        이벤트 체크인

        Args:
            actor: 스캔한 회원
            qr_payload: 이벤트 화면의 CHECKIN QR

        Returns:
            CheckinResponse: 체크인 기록, 적립 후 잔액, 남은 체크인 수

        Raises:
            InvalidTokenError / ExpiredTokenError / StaleTokenError: QR 검증 실패
            EventNotFoundError: 없는 이벤트
            EventNotActiveError: 시작 전(not_started) 또는 종료(ended)
            CheckinLimitReachedError: 상한 도달
            TooSoonError: 간격 미충족 (wait_seconds 포함)
        """
        ensure_capability(actor, Capability.EARN_POINTS)

        def operation() -> CheckinResponse:
            claims = self.qr_service.verify(qr_payload, QrPurpose.CHECKIN)
            if not claims.subject_id.isdigit():
                raise InvalidTokenError(details={"reason": "malformed subject"})
            event = self._get_event(int(claims.subject_id))

            now = self.clock()
            reason = inactive_reason(event, now)
            if reason is not None:
                raise EventNotActiveError(event.id, reason)

            # 같은 회원의 체크인 직렬화
            self.member_repo.lock(actor.id)
            cap = event.checkin_cap
            count = self.checkin_repo.count_for(event.id, actor.id)
            if count >= cap:
                raise CheckinLimitReachedError(event.id, cap)

            last = self.checkin_repo.last_for(event.id, actor.id)
            wait = self._wait_seconds(event, last, now)
            if wait > 0:
                raise TooSoonError(event.id, wait)

            if self.checkin_repo.nonce_used(event.id, actor.id, claims.nonce):
                raise InvalidTokenError(
                    message="QR code already used, wait for the next one",
                    details={"event_id": event.id},
                )

            points = event.points_per_checkin
            checkin = self.checkin_repo.create_checkin(
                event_id=event.id,
                member_id=actor.id,
                checkin_number=count + 1,
                points_awarded=points,
                qr_nonce=claims.nonce,
                created_at=now,
            )
            if points > 0:
                entry = self.points_repo.append(
                    member_id=actor.id,
                    amount=points,
                    type=PointsTransactionType.EVENT_CHECKIN,
                    description=f"Check-in #{count + 1} at {event.name}",
                    created_at=now,
                    reference_id=f"checkin:{checkin.id}",
                )
                checkin = self.checkin_repo.link_ledger_entry(checkin.id, entry.id)
                balance_after = entry.balance_after
            else:
                balance_after = self.points_repo.balance_of(actor.id)

            return CheckinResponse(
                checkin=checkin,
                event_name=event.name,
                balance_after=balance_after,
                checkins_remaining=cap - (count + 1),
            )

        result = run_in_transaction(
            self.db,
            operation,
            max_attempts=self.settings.CHECKIN_MAX_ATTEMPTS,
            label="checkin",
        )
        logger.info(
            f"Member {actor.id} checked in to event {result.checkin.event_id} "
            f"(#{result.checkin.checkin_number}, +{result.checkin.points_awarded})"
        )
        return result

    def get_status(self, event_id: int, member_id: int) -> CheckinStatusResponse:
        """체크인 가능 여부 조회 - 스캔을 소모하지 않는 순수 조회"""
        event = self._get_event(event_id)
        now = self.clock()
        cap = event.checkin_cap
        count = self.checkin_repo.count_for(event_id, member_id)
        last = self.checkin_repo.last_for(event_id, member_id)
        remaining = max(cap - count, 0)
        wait = self._wait_seconds(event, last, now) if remaining > 0 else 0

        reason = inactive_reason(event, now)
        if reason is None and remaining == 0:
            reason = "limit_reached"
        elif reason is None and wait > 0:
            reason = "too_soon"

        return CheckinStatusResponse(
            event_id=event_id,
            can_checkin=reason is None,
            checkins_remaining=remaining,
            wait_time_seconds=wait,
            total_points_earned=self.checkin_repo.points_earned(event_id, member_id),
            checkin_count=count,
            last_checkin_at=last.created_at if last else None,
            reason=reason,
        )

    def list_member_checkins(self, event_id: int, member_id: int) -> List[Checkin]:
        self._get_event(event_id)
        return self.checkin_repo.list_for(event_id, member_id)
