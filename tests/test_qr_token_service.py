import pytest
from jose import jwt

from ahub.core.exceptions import (
    ExpiredTokenError,
    InvalidTokenError,
    StaleTokenError,
    ValidationError,
)
from ahub.models.qr import QrPurpose
from ahub.services.qr_token_service import QrTokenService


@pytest.fixture
def qr_service(db_session, test_settings, clock):
    return QrTokenService(db_session, settings=test_settings, clock=clock)


class TestQrIssueAndVerify:
    def test_issue_then_verify_returns_purpose_and_subject(self, qr_service, db_session):
        # Given
        issued = qr_service.issue(QrPurpose.CHECKIN, 7, 30)
        db_session.commit()

        # When
        claims = qr_service.verify(issued.payload, QrPurpose.CHECKIN)

        # Then
        assert claims.purpose == QrPurpose.CHECKIN
        assert claims.subject_id == "7"
        assert claims.nonce == issued.nonce

    def test_token_valid_at_59_seconds_and_expired_at_61(self, qr_service, clock):
        # Given: 60초 TTL로 발급
        issued = qr_service.issue(QrPurpose.KYOSK_PAYMENT, 1, 60, ref="10")

        # When / Then
        clock.advance(59)
        assert qr_service.verify(issued.payload, QrPurpose.KYOSK_PAYMENT).ref == "10"

        clock.advance(2)
        with pytest.raises(ExpiredTokenError):
            qr_service.verify(issued.payload, QrPurpose.KYOSK_PAYMENT)

    def test_expired_exactly_at_exp(self, qr_service, clock):
        issued = qr_service.issue(QrPurpose.MEMBER_CARD, 3, 60)
        clock.advance(60)

        with pytest.raises(ExpiredTokenError):
            qr_service.decode(issued.payload)

    def test_previous_token_is_stale_after_reissue(self, qr_service):
        # Given
        first = qr_service.issue(QrPurpose.CHECKIN, 5, 30)
        second = qr_service.issue(QrPurpose.CHECKIN, 5, 30)

        # When / Then: 이전 QR은 만료 전이라도 무효
        with pytest.raises(StaleTokenError):
            qr_service.verify(first.payload, QrPurpose.CHECKIN)
        assert qr_service.verify(second.payload, QrPurpose.CHECKIN).nonce == second.nonce

    def test_subjects_rotate_independently(self, qr_service):
        event_a = qr_service.issue(QrPurpose.CHECKIN, 1, 30)
        qr_service.issue(QrPurpose.CHECKIN, 2, 30)

        assert qr_service.verify(event_a.payload, QrPurpose.CHECKIN).subject_id == "1"

    def test_wrong_purpose_is_invalid(self, qr_service):
        issued = qr_service.issue(QrPurpose.MEMBER_CARD, 9, 60)

        with pytest.raises(InvalidTokenError):
            qr_service.verify(issued.payload, QrPurpose.KYOSK_PAYMENT)

    def test_tampered_signature_is_invalid(self, qr_service):
        issued = qr_service.issue(QrPurpose.CHECKIN, 1, 30)
        forged = jwt.encode(
            jwt.get_unverified_claims(issued.payload), "another-secret", algorithm="HS256"
        )

        with pytest.raises(InvalidTokenError):
            qr_service.decode(forged)

    def test_garbage_payload_is_invalid(self, qr_service):
        with pytest.raises(InvalidTokenError):
            qr_service.decode("not-a-token")

    def test_missing_claims_are_invalid(self, qr_service, test_settings, clock):
        payload = jwt.encode(
            {"pur": "CHECKIN", "sub": "1", "exp": int(clock().timestamp()) + 30},
            test_settings.qr_secret,
            algorithm="HS256",
        )

        with pytest.raises(InvalidTokenError):
            qr_service.decode(payload)

    def test_decode_does_not_touch_the_store(self, qr_service, db_session):
        # 발급 기록이 롤백되어도 서명/만료 검증은 성공, 유효 nonce 검증은 실패
        issued = qr_service.issue(QrPurpose.CHECKIN, 1, 30)
        db_session.rollback()

        claims = qr_service.decode(issued.payload)

        assert claims.subject_id == "1"
        with pytest.raises(StaleTokenError):
            qr_service.verify(issued.payload, QrPurpose.CHECKIN)


class TestQrRotation:
    def test_current_or_rotate_reuses_live_token(self, qr_service, clock):
        first = qr_service.current_or_rotate(QrPurpose.CHECKIN, 1, 30)
        clock.advance(10)

        again = qr_service.current_or_rotate(QrPurpose.CHECKIN, 1, 30)

        assert again.payload == first.payload
        assert qr_service.seconds_until_rotation(again) == 20

    def test_current_or_rotate_issues_new_token_after_expiry(self, qr_service, clock):
        first = qr_service.current_or_rotate(QrPurpose.CHECKIN, 1, 30)
        clock.advance(30)

        rotated = qr_service.current_or_rotate(QrPurpose.CHECKIN, 1, 30)

        assert rotated.nonce != first.nonce
        with pytest.raises((ExpiredTokenError, StaleTokenError)):
            qr_service.verify(first.payload, QrPurpose.CHECKIN)

    def test_current_or_rotate_rotates_when_ref_changes(self, qr_service):
        first = qr_service.current_or_rotate(QrPurpose.KYOSK_PAYMENT, 1, 60, ref="1")

        second = qr_service.current_or_rotate(QrPurpose.KYOSK_PAYMENT, 1, 60, ref="2")

        assert second.nonce != first.nonce
        assert qr_service.verify(second.payload, QrPurpose.KYOSK_PAYMENT).ref == "2"

    @pytest.mark.parametrize("ttl", [5, 301])
    def test_rotation_outside_allowed_range_is_rejected(self, qr_service, ttl):
        with pytest.raises(ValidationError):
            qr_service.current_or_rotate(QrPurpose.CHECKIN, 1, ttl)

    def test_retire_invalidates_live_nonce(self, qr_service):
        issued = qr_service.issue(QrPurpose.KYOSK_PAYMENT, 1, 60, ref="3")

        assert qr_service.retire(QrPurpose.KYOSK_PAYMENT, 1, issued.nonce) is True
        assert qr_service.retire(QrPurpose.KYOSK_PAYMENT, 1, issued.nonce) is False
        with pytest.raises(StaleTokenError):
            qr_service.verify(issued.payload, QrPurpose.KYOSK_PAYMENT)
