from datetime import datetime, timezone

from ahub.core.exceptions import ExpiredTokenError
from ahub.deps import get_member_card_service
from ahub.schemas.member_card import MemberCardQrResponse, MemberCardVerifyResponse


class TestMemberCardRoutes:
    """회원증 라우터 테스트"""

    def test_get_card_qr(self, client, login_as, override_service, api_member):
        # Given
        login_as(api_member)
        service = override_service(get_member_card_service)
        service.issue_card_qr.return_value = MemberCardQrResponse(
            qr_payload="card-qr",
            expires_at=datetime(2026, 3, 2, 9, 1, tzinfo=timezone.utc),
            expires_in=60,
        )

        # When
        response = client.get("/api/v1/member-card/qr")

        # Then
        assert response.status_code == 200
        assert response.json()["expires_in"] == 60
        service.issue_card_qr.assert_called_once_with(api_member)

    def test_verify_card(self, client, login_as, override_service, api_display):
        login_as(api_display)
        service = override_service(get_member_card_service)
        service.verify_card.return_value = MemberCardVerifyResponse(
            member_id=1, name="alice", matricula="A00001", is_active=True, balance=70
        )

        response = client.post("/api/v1/member-card/verify", json={"qr_payload": "card-qr"})

        assert response.status_code == 200
        assert response.json()["matricula"] == "A00001"
        service.verify_card.assert_called_once_with(api_display, "card-qr")

    def test_verify_expired_card(self, client, login_as, override_service, api_display):
        login_as(api_display)
        service = override_service(get_member_card_service)
        service.verify_card.side_effect = ExpiredTokenError()

        response = client.post("/api/v1/member-card/verify", json={"qr_payload": "card-qr"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "TOKEN_EXPIRED"
