from datetime import datetime, timezone

from ahub.core.exceptions import EventNotActiveError, StaleTokenError, TooSoonError
from ahub.deps import get_checkin_service, get_event_service
from ahub.models.events import EventStatus
from ahub.schemas.events import (
    Checkin,
    CheckinResponse,
    CheckinStatusResponse,
    Event,
    EventDisplayResponse,
    EventReportResponse,
    EventReportRow,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
END = datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc)


def sample_event(status: EventStatus = EventStatus.DRAFT) -> Event:
    return Event(
        id=4,
        name="Open House",
        start_at=START,
        end_at=END,
        total_points=100,
        allow_multiple_checkins=False,
        max_checkins_per_user=1,
        qr_rotation_seconds=30,
        status=status,
    )


class TestEventAdminRoutes:
    """이벤트 관리자 라우터 테스트"""

    def test_create_event(self, client, login_as, override_service, api_admin):
        # Given
        login_as(api_admin)
        service = override_service(get_event_service)
        service.create_event.return_value = sample_event()

        # When
        response = client.post(
            "/api/v1/events",
            json={
                "name": "Open House",
                "start_at": START.isoformat(),
                "end_at": END.isoformat(),
                "total_points": 100,
            },
        )

        # Then
        assert response.status_code == 201
        assert response.json()["status"] == "DRAFT"
        request = service.create_event.call_args.args[1]
        assert request.qr_rotation_seconds == 30

    def test_create_event_with_reversed_window(self, client, login_as, override_service, api_admin):
        login_as(api_admin)
        service = override_service(get_event_service)

        response = client.post(
            "/api/v1/events",
            json={
                "name": "Backwards",
                "start_at": END.isoformat(),
                "end_at": START.isoformat(),
                "total_points": 100,
            },
        )

        assert response.status_code == 422
        service.create_event.assert_not_called()

    def test_activate_event(self, client, login_as, override_service, api_admin):
        login_as(api_admin)
        service = override_service(get_event_service)
        service.update_status.return_value = sample_event(EventStatus.ACTIVE)

        response = client.patch("/api/v1/events/4/status", json={"status": "ACTIVE"})

        assert response.status_code == 200
        service.update_status.assert_called_once_with(api_admin, 4, EventStatus.ACTIVE)

    def test_report(self, client, login_as, override_service, api_admin):
        login_as(api_admin)
        service = override_service(get_event_service)
        service.get_report.return_value = EventReportResponse(
            event_id=4,
            total_checkins=1,
            unique_members=1,
            total_points_awarded=100,
            members=[EventReportRow(member_id=1, member_name="alice", checkin_count=1, points_earned=100)],
        )

        response = client.get("/api/v1/events/4/report")

        assert response.status_code == 200
        assert response.json()["members"][0]["member_name"] == "alice"

    def test_member_cannot_create_event(self, client, login_as, override_service, api_member):
        login_as(api_member)
        override_service(get_event_service)

        response = client.post(
            "/api/v1/events",
            json={"name": "x", "start_at": START.isoformat(), "end_at": END.isoformat(), "total_points": 1},
        )

        assert response.status_code == 403


class TestEventDisplayRoutes:
    def test_display_poll(self, client, login_as, override_service, api_display):
        login_as(api_display)
        service = override_service(get_event_service)
        service.get_display.return_value = EventDisplayResponse(
            event_id=4,
            name="Open House",
            status=EventStatus.ACTIVE,
            qr_payload="checkin-qr",
            next_rotation_in=12,
            total_checkins=3,
            unique_members=2,
        )

        response = client.get("/api/v1/events/4/display")

        assert response.status_code == 200
        assert response.json()["next_rotation_in"] == 12

    def test_display_for_ended_event(self, client, login_as, override_service, api_display):
        login_as(api_display)
        service = override_service(get_event_service)
        service.get_display.side_effect = EventNotActiveError(4, "ended")

        response = client.get("/api/v1/events/4/display")

        assert response.status_code == 400
        assert response.json()["error"]["details"]["reason"] == "ended"


class TestCheckinRoutes:
    """체크인 라우터 테스트"""

    def test_checkin(self, client, login_as, override_service, api_member):
        # Given
        login_as(api_member)
        service = override_service(get_checkin_service)
        service.checkin.return_value = CheckinResponse(
            checkin=Checkin(id=1, event_id=4, member_id=1, checkin_number=1, points_awarded=100),
            event_name="Open House",
            balance_after=100,
            checkins_remaining=0,
        )

        # When
        response = client.post("/api/v1/events/checkin", json={"qr_payload": "checkin-qr"})

        # Then
        assert response.status_code == 200
        assert response.json()["checkin"]["points_awarded"] == 100
        service.checkin.assert_called_once_with(api_member, "checkin-qr")

    def test_checkin_too_soon(self, client, login_as, override_service, api_member):
        login_as(api_member)
        service = override_service(get_checkin_service)
        service.checkin.side_effect = TooSoonError(4, 42)

        response = client.post("/api/v1/events/checkin", json={"qr_payload": "checkin-qr"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "CHECKIN_TOO_SOON"
        assert error["details"]["wait_seconds"] == 42

    def test_checkin_with_rotated_qr(self, client, login_as, override_service, api_member):
        login_as(api_member)
        service = override_service(get_checkin_service)
        service.checkin.side_effect = StaleTokenError()

        response = client.post("/api/v1/events/checkin", json={"qr_payload": "old-qr"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "TOKEN_STALE"

    def test_checkin_status(self, client, login_as, override_service, api_member):
        login_as(api_member)
        service = override_service(get_checkin_service)
        service.get_status.return_value = CheckinStatusResponse(
            event_id=4, can_checkin=True, checkins_remaining=1
        )

        response = client.get("/api/v1/events/4/checkin-status")

        assert response.status_code == 200
        assert response.json()["can_checkin"] is True
        service.get_status.assert_called_once_with(4, api_member.id)
