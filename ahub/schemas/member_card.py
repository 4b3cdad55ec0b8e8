from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class MemberCardQrResponse(BaseModel):
    qr_payload: str
    expires_at: datetime
    expires_in: int


class MemberCardVerifyResponse(BaseModel):
    member_id: int
    name: str
    matricula: Optional[str] = None
    is_active: bool
    balance: int
