from datetime import timedelta

import pytest

from ahub.core.exceptions import (
    AuthorizationError,
    CheckinLimitReachedError,
    EventNotActiveError,
    EventNotFoundError,
    InvalidTokenError,
    StaleTokenError,
    TooSoonError,
)
from ahub.models.events import EventStatus
from ahub.models.points import PointsTransactionType
from ahub.models.qr import QrPurpose
from ahub.schemas.events import EventCreate
from ahub.services.checkin_service import CheckinService
from ahub.services.event_service import EventService
from ahub.services.qr_token_service import QrTokenService


@pytest.fixture
def event_service(db_session, test_settings, clock):
    return EventService(db_session, settings=test_settings, clock=clock)


@pytest.fixture
def checkin_service(db_session, test_settings, clock):
    return CheckinService(db_session, settings=test_settings, clock=clock)


@pytest.fixture
def create_active_event(event_service, admin, clock):
    def _create(**overrides):
        fields = dict(
            name="Open House",
            start_at=clock.now - timedelta(minutes=1),
            end_at=clock.now + timedelta(hours=2),
            total_points=100,
            qr_rotation_seconds=30,
        )
        fields.update(overrides)
        event = event_service.create_event(admin, EventCreate(**fields))
        return event_service.update_status(admin, event.id, EventStatus.ACTIVE)

    return _create


@pytest.fixture
def scan(event_service, display):
    """디스플레이 화면의 현재 QR"""

    def _scan(event_id: int) -> str:
        return event_service.get_display(display, event_id).qr_payload

    return _scan


class TestCheckin:
    def test_floor_points_over_three_checkins_then_limit(
        self, checkin_service, point_service, create_active_event, scan, clock, member
    ):
        # Given: 100점 / 최대 3회, 간격 60초
        event = create_active_event(
            allow_multiple_checkins=True, max_checkins_per_user=3, checkin_interval_seconds=60
        )

        # When
        results = []
        for _ in range(3):
            results.append(checkin_service.checkin(member, scan(event.id)))
            clock.advance(60)

        # Then: 33 * 3 = 99, 나머지 1점은 지급하지 않음
        assert [r.checkin.points_awarded for r in results] == [33, 33, 33]
        assert [r.checkins_remaining for r in results] == [2, 1, 0]
        assert point_service.balance_of(member.id) == 99
        with pytest.raises(CheckinLimitReachedError):
            checkin_service.checkin(member, scan(event.id))
        assert point_service.balance_of(member.id) == 99

    def test_checkin_links_ledger_entry(self, checkin_service, point_service, create_active_event, scan, member):
        event = create_active_event(total_points=50)

        result = checkin_service.checkin(member, scan(event.id))

        entry = point_service.get_ledger(member.id).entries[0]
        assert entry.type == PointsTransactionType.EVENT_CHECKIN
        assert result.checkin.ledger_entry_id == entry.id
        assert result.balance_after == 50

    def test_too_soon_reports_wait_time(self, checkin_service, create_active_event, scan, clock, member):
        event = create_active_event(
            allow_multiple_checkins=True, max_checkins_per_user=3, checkin_interval_seconds=60
        )
        checkin_service.checkin(member, scan(event.id))
        clock.advance(20)

        with pytest.raises(TooSoonError) as exc_info:
            checkin_service.checkin(member, scan(event.id))

        assert exc_info.value.wait_seconds == 40

    def test_single_checkin_event_caps_at_one(self, checkin_service, create_active_event, scan, clock, member):
        event = create_active_event(total_points=50)
        checkin_service.checkin(member, scan(event.id))
        clock.advance(30)

        with pytest.raises(CheckinLimitReachedError):
            checkin_service.checkin(member, scan(event.id))

    def test_same_qr_cannot_be_used_twice_by_one_member(
        self, checkin_service, create_active_event, scan, member, other_member
    ):
        # Given: 간격 제한 없는 다회 체크인 이벤트
        event = create_active_event(allow_multiple_checkins=True, max_checkins_per_user=5)
        payload = scan(event.id)

        # When
        checkin_service.checkin(member, payload)

        # Then: 같은 QR을 다른 회원은 사용할 수 있지만 같은 회원은 다음 QR을 기다려야 함
        checkin_service.checkin(other_member, payload)
        with pytest.raises(InvalidTokenError):
            checkin_service.checkin(member, payload)

    def test_rotated_qr_is_stale(self, checkin_service, create_active_event, scan, clock, member):
        event = create_active_event()
        old_payload = scan(event.id)
        clock.advance(25)
        QrTokenService(
            checkin_service.db, settings=checkin_service.settings, clock=clock
        ).issue(QrPurpose.CHECKIN, event.id, 30)

        with pytest.raises(StaleTokenError):
            checkin_service.checkin(member, old_payload)

    def test_not_started(self, checkin_service, create_active_event, db_session, test_settings, clock, member):
        event = create_active_event(
            start_at=clock.now + timedelta(hours=1), end_at=clock.now + timedelta(hours=2)
        )
        payload = QrTokenService(db_session, settings=test_settings, clock=clock).issue(
            QrPurpose.CHECKIN, event.id, 30
        ).payload
        db_session.commit()

        with pytest.raises(EventNotActiveError) as exc_info:
            checkin_service.checkin(member, payload)

        assert exc_info.value.reason == "not_started"

    def test_ended(self, checkin_service, event_service, create_active_event, scan, admin, member):
        event = create_active_event()
        payload = scan(event.id)
        event_service.update_status(admin, event.id, EventStatus.COMPLETED)

        with pytest.raises(EventNotActiveError) as exc_info:
            checkin_service.checkin(member, payload)

        assert exc_info.value.reason == "ended"

    def test_unknown_event(self, checkin_service, db_session, test_settings, clock, member):
        payload = QrTokenService(db_session, settings=test_settings, clock=clock).issue(
            QrPurpose.CHECKIN, 999, 30
        ).payload
        db_session.commit()

        with pytest.raises(EventNotFoundError):
            checkin_service.checkin(member, payload)

    def test_wrong_purpose_qr(self, checkin_service, db_session, test_settings, clock, member):
        payload = QrTokenService(db_session, settings=test_settings, clock=clock).issue(
            QrPurpose.MEMBER_CARD, member.id, 60
        ).payload

        with pytest.raises(InvalidTokenError):
            checkin_service.checkin(member, payload)

    def test_display_cannot_earn_points(self, checkin_service, create_active_event, scan, display):
        event = create_active_event()

        with pytest.raises(AuthorizationError):
            checkin_service.checkin(display, scan(event.id))


class TestCheckinStatus:
    def test_status_before_any_checkin(self, checkin_service, create_active_event, member):
        event = create_active_event(allow_multiple_checkins=True, max_checkins_per_user=3)

        status = checkin_service.get_status(event.id, member.id)

        assert status.can_checkin is True
        assert status.checkins_remaining == 3
        assert status.checkin_count == 0

    def test_status_while_waiting(self, checkin_service, create_active_event, scan, clock, member):
        event = create_active_event(
            allow_multiple_checkins=True, max_checkins_per_user=3, checkin_interval_seconds=60
        )
        checkin_service.checkin(member, scan(event.id))
        clock.advance(15)

        status = checkin_service.get_status(event.id, member.id)

        assert status.can_checkin is False
        assert status.reason == "too_soon"
        assert status.wait_time_seconds == 45
        assert status.total_points_earned == 33
        assert status.checkins_remaining == 2
        assert status.last_checkin_at is not None

    def test_status_after_limit(self, checkin_service, create_active_event, scan, member):
        event = create_active_event()
        checkin_service.checkin(member, scan(event.id))

        status = checkin_service.get_status(event.id, member.id)

        assert status.reason == "limit_reached"
        assert status.checkins_remaining == 0

    def test_list_member_checkins(self, checkin_service, create_active_event, scan, member):
        event = create_active_event()
        checkin_service.checkin(member, scan(event.id))

        checkins = checkin_service.list_member_checkins(event.id, member.id)

        assert [c.checkin_number for c in checkins] == [1]
