from enum import Enum
from typing import Optional, Union

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ahub.models.base import BaseModel, BigIntPK


class MemberRole(str, Enum):
    """회원 역할 정의"""

    MEMBER = "member"  # 일반 회원
    ADMIN = "admin"  # 관리자
    DISPLAY = "display"  # 이벤트/키오스크 디스플레이 단말

    @classmethod
    def is_admin(cls, role: Union[str, "MemberRole"]) -> bool:
        if isinstance(role, cls):
            role = role.value
        return role == cls.ADMIN.value

    @classmethod
    def is_display(cls, role: Union[str, "MemberRole"]) -> bool:
        if isinstance(role, cls):
            role = role.value
        return role == cls.DISPLAY.value


class Member(BaseModel):
    __tablename__ = "members"
    __table_args__ = (Index("idx_members_email", "email"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), default=MemberRole.MEMBER.value, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # 회원증 번호 (DISPLAY 계정은 없음)
    matricula: Mapped[Optional[str]] = mapped_column(
        String(50), unique=True, nullable=True
    )

    def __repr__(self):
        return f"<Member(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return MemberRole.is_admin(str(self.role))
