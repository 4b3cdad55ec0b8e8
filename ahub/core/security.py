from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from ahub.config import settings
from ahub.core.exceptions import AuthenticationError
from ahub.utils.date_utils import utc_now


class TokenPayload(BaseModel):
    sub: str  # subject, member id


def create_access_token(member_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """액세스 토큰 생성 (발급은 인증 서비스 담당, 로컬 개발/테스트용)"""
    expire = utc_now() + (expires_delta or timedelta(minutes=30))
    to_encode = {"sub": str(member_id), "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> int:
    """JWT 액세스 토큰을 검증하고 member_id를 반환합니다."""
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        token_data = TokenPayload.model_validate(payload)
        return int(token_data.sub)
    except (JWTError, ValidationError, ValueError):
        raise AuthenticationError("Invalid authentication credentials")
