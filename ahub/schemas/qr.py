from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ahub.models.qr import QrPurpose


class QrClaims(BaseModel):
    """서명 검증이 끝난 QR 페이로드의 내용"""

    purpose: QrPurpose
    subject_id: str
    nonce: str
    issued_at: datetime
    expires_at: datetime
    ref: Optional[str] = None


class IssuedQr(BaseModel):
    payload: str = Field(..., description="QR 코드에 담길 서명된 토큰")
    purpose: QrPurpose
    subject_id: str
    nonce: str
    issued_at: datetime
    expires_at: datetime


class QrPayloadRequest(BaseModel):
    """QR 스캔 결과를 전달하는 요청"""

    qr_payload: str = Field(..., min_length=1, max_length=2048)


class LiveNonce(BaseModel):
    purpose: QrPurpose
    subject_id: str
    nonce: Optional[str] = None
    payload: Optional[str] = None
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    version: int = 0

    class Config:
        from_attributes = True
