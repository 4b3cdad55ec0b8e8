from datetime import timedelta

import pytest

from ahub.core.security import create_access_token
from ahub.database.session import get_db
from ahub.deps import get_point_service
from ahub.models.user import MemberRole
from ahub.schemas.points import PointsBalanceResponse, PointsIntegrityCheckResponse


@pytest.fixture
def auth_client(app, client, db_session, override_service):
    """실제 토큰 검증 경로를 타는 클라이언트 (DB는 테스트 세션 사용)"""
    app.dependency_overrides[get_db] = lambda: db_session
    service = override_service(get_point_service)
    service.get_balance.side_effect = lambda member_id: PointsBalanceResponse(
        member_id=member_id, balance=0
    )
    return client


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestBearerAuthentication:
    """Bearer 토큰 인증 테스트"""

    def test_valid_token(self, auth_client, member):
        token = create_access_token(member.id)

        response = auth_client.get("/api/v1/points/balance", headers=bearer(token))

        assert response.status_code == 200
        assert response.json()["member_id"] == member.id

    def test_invalid_token(self, auth_client):
        response = auth_client.get("/api/v1/points/balance", headers=bearer("not-a-jwt"))

        assert response.status_code == 401

    def test_expired_token(self, auth_client, member):
        token = create_access_token(member.id, expires_delta=timedelta(minutes=-1))

        response = auth_client.get("/api/v1/points/balance", headers=bearer(token))

        assert response.status_code == 401

    def test_unknown_member(self, auth_client):
        response = auth_client.get(
            "/api/v1/points/balance", headers=bearer(create_access_token(4040))
        )

        assert response.status_code == 401

    def test_inactive_member(self, auth_client, make_member):
        inactive = make_member(MemberRole.MEMBER, name="carol", is_active=False)

        response = auth_client.get(
            "/api/v1/points/balance", headers=bearer(create_access_token(inactive.id))
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Inactive user account"

    def test_admin_route_with_member_token(self, auth_client, member):
        response = auth_client.get(
            "/api/v1/points/admin/integrity", headers=bearer(create_access_token(member.id))
        )

        assert response.status_code == 403

    def test_admin_route_with_admin_token(self, app, auth_client, admin):
        service = app.dependency_overrides[get_point_service]()
        service.verify_global_integrity.return_value = PointsIntegrityCheckResponse(status="OK")

        response = auth_client.get(
            "/api/v1/points/admin/integrity", headers=bearer(create_access_token(admin.id))
        )

        assert response.status_code == 200
