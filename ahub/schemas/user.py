from pydantic import BaseModel, EmailStr
from typing import Optional

from ahub.models.user import MemberRole


class Member(BaseModel):
    """인증된 호출자 (엔진은 이 정보를 신뢰하며 인증을 다시 하지 않음)"""

    id: int
    email: EmailStr
    name: str
    role: MemberRole = MemberRole.MEMBER
    is_active: bool = True
    matricula: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return MemberRole.is_admin(self.role)

    @property
    def is_display(self) -> bool:
        return MemberRole.is_display(self.role)
