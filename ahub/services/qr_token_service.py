"""
QR 토큰 서비스

QR 페이로드는 HS256으로 서명된 compact JWS 입니다:

    {"pur": 용도, "sub": 대상 ID, "nonce": 난수, "iat": 발급, "exp": 만료, "ref": 주문 ID(선택)}

- 서명/만료 검증(decode)은 페이로드와 서버 비밀키만으로 수행 (DB 조회 없음)
- 용도/현재 유효 nonce 검증(verify)은 대상별 live nonce 행과 비교
- 대상당 유효한 nonce는 하나뿐이며 새로 발급하면 이전 nonce는 즉시 무효
"""

import logging
import secrets
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.exceptions import (
    ExpiredTokenError,
    InvalidTokenError,
    StaleTokenError,
    ValidationError,
)
from ahub.models.qr import QrPurpose
from ahub.repositories.qr_nonce_repository import QrNonceRepository
from ahub.schemas.qr import IssuedQr, QrClaims
from ahub.utils.date_utils import (
    Clock,
    ensure_utc,
    from_timestamp,
    seconds_until,
    to_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("ahub.security")

_REQUIRED_CLAIMS = ("pur", "sub", "nonce", "iat", "exp")


class QrTokenService:
    """QR 토큰 발급/검증 서비스"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.nonce_repo = QrNonceRepository(db)

    def validate_rotation_seconds(self, ttl_seconds: int) -> None:
        low = self.settings.QR_ROTATION_MIN_SECONDS
        high = self.settings.QR_ROTATION_MAX_SECONDS
        if not low <= ttl_seconds <= high:
            raise ValidationError(
                f"QR rotation must be between {low} and {high} seconds",
                {"qr_rotation_seconds": ttl_seconds},
            )

    def _encode(self, claims: dict) -> str:
        return jwt.encode(
            claims, self.settings.qr_secret, algorithm=self.settings.QR_ALGORITHM
        )

    def decode(self, payload: str) -> QrClaims:
        """
        서명과 만료만 검증합니다 (저장소 조회 없음).

        Raises:
            InvalidTokenError: 형식 오류 또는 서명 불일치
            ExpiredTokenError: now >= exp
        """
        try:
            claims = jwt.decode(
                payload,
                self.settings.qr_secret,
                algorithms=[self.settings.QR_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise InvalidTokenError(details={"reason": str(e)})

        if any(claims.get(key) in (None, "") for key in _REQUIRED_CLAIMS):
            raise InvalidTokenError(details={"reason": "missing claims"})
        try:
            purpose = QrPurpose(claims["pur"])
            issued_at = from_timestamp(int(claims["iat"]))
            expires_at = from_timestamp(int(claims["exp"]))
        except (TypeError, ValueError):
            raise InvalidTokenError(details={"reason": "malformed claims"})

        if self.clock().timestamp() >= expires_at.timestamp():
            raise ExpiredTokenError(
                details={"purpose": purpose.value, "expired_at": expires_at.isoformat()}
            )

        ref = claims.get("ref")
        return QrClaims(
            purpose=purpose,
            subject_id=str(claims["sub"]),
            nonce=str(claims["nonce"]),
            issued_at=issued_at,
            expires_at=expires_at,
            ref=str(ref) if ref is not None else None,
        )

    def issue(
        self,
        purpose: QrPurpose,
        subject_id,
        ttl_seconds: int,
        ref: Optional[str] = None,
    ) -> IssuedQr:
        """
        새 QR 토큰을 발급하고 대상의 유효 nonce로 등록합니다.

        호출자의 트랜잭션 안에서 flush까지만 수행합니다.

        Args:
            purpose: CHECKIN | KYOSK_PAYMENT | MEMBER_CARD
            subject_id: 이벤트/키오스크/회원 ID
            ttl_seconds: 유효 시간 (초)
            ref: 토큰에 묶을 주문 ID 등

        Returns:
            IssuedQr: 페이로드와 만료 정보
        """
        if ttl_seconds <= 0:
            raise ValidationError("ttl_seconds must be positive", {"ttl_seconds": ttl_seconds})

        subject = str(subject_id)
        now = self.clock()
        issued_ts = to_timestamp(now)
        claims = {
            "pur": purpose.value,
            "sub": subject,
            "nonce": secrets.token_urlsafe(16),
            "iat": issued_ts,
            "exp": issued_ts + ttl_seconds,
        }
        if ref is not None:
            claims["ref"] = str(ref)

        payload = self._encode(claims)
        issued_at = from_timestamp(claims["iat"])
        expires_at = from_timestamp(claims["exp"])
        self.nonce_repo.set_live(
            purpose=purpose,
            subject_id=subject,
            nonce=claims["nonce"],
            payload=payload,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        logger.debug(f"Issued {purpose.value} QR for subject {subject}")
        return IssuedQr(
            payload=payload,
            purpose=purpose,
            subject_id=subject,
            nonce=claims["nonce"],
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def verify(self, payload: str, expected_purpose: QrPurpose) -> QrClaims:
        """
        서명, 만료, 용도, 현재 유효 nonce 여부를 모두 검증합니다.

        Raises:
            InvalidTokenError: 서명 불일치 또는 다른 용도의 토큰
            ExpiredTokenError: 만료
            StaleTokenError: 더 새로운 QR로 교체됨
        """
        claims = self.decode(payload)
        if claims.purpose != expected_purpose:
            raise InvalidTokenError(
                message="QR code is not valid here",
                details={
                    "expected": expected_purpose.value,
                    "actual": claims.purpose.value,
                },
            )

        live = self.nonce_repo.get_live(claims.purpose, claims.subject_id)
        if live is None or live.nonce != claims.nonce:
            raise StaleTokenError(
                details={"purpose": claims.purpose.value, "subject_id": claims.subject_id}
            )
        return claims

    def current_or_rotate(
        self,
        purpose: QrPurpose,
        subject_id,
        ttl_seconds: int,
        ref: Optional[str] = None,
    ) -> IssuedQr:
        """
        디스플레이 폴링용: 현재 QR이 유효하면 그대로, 만료되었으면 새로 발급

        ref가 다르면(새 주문) 만료 전이라도 새로 발급합니다.
        """
        self.validate_rotation_seconds(ttl_seconds)
        subject = str(subject_id)
        live = self.nonce_repo.get_live(purpose, subject)
        if live is not None and live.nonce and live.payload and live.expires_at:
            expires_at = ensure_utc(live.expires_at)
            if self.clock() < expires_at:
                try:
                    claims = self.decode(live.payload)
                except (InvalidTokenError, ExpiredTokenError):
                    security_logger.warning(
                        f"Stored {purpose.value} QR for {subject} failed to decode, rotating"
                    )
                else:
                    if ref is None or claims.ref == str(ref):
                        return IssuedQr(
                            payload=live.payload,
                            purpose=purpose,
                            subject_id=subject,
                            nonce=live.nonce,
                            issued_at=ensure_utc(live.issued_at),
                            expires_at=expires_at,
                        )
        return self.issue(purpose, subject, ttl_seconds, ref=ref)

    def retire(self, purpose: QrPurpose, subject_id, nonce: str) -> bool:
        """사용된 nonce 폐기 - 이미 교체되었으면 False"""
        return self.nonce_repo.retire(purpose, str(subject_id), nonce)

    def seconds_until_rotation(self, issued: IssuedQr) -> int:
        return seconds_until(issued.expires_at, self.clock())
