from typing import Optional

from sqlalchemy.orm import Session

from ahub.models.user import Member as MemberModel
from ahub.repositories.base import BaseRepository
from ahub.schemas.user import Member as MemberSchema


class MemberRepository(BaseRepository[MemberModel, MemberSchema]):
    """회원 조회 리포지토리 (회원 관리 자체는 외부 시스템 담당)"""

    def __init__(self, db: Session):
        super().__init__(MemberModel, MemberSchema, db)

    def get_by_email(self, email: str) -> Optional[MemberSchema]:
        member = self.db.query(MemberModel).filter(MemberModel.email == email).first()
        return self._to_schema(member)

    def lock(self, member_id: int) -> Optional[MemberSchema]:
        """회원 행 잠금 - 같은 회원의 잔액 변경을 직렬화 (PostgreSQL FOR UPDATE)"""
        return self._to_schema(self._get_model(member_id, for_update=True))

    def get_names(self, member_ids) -> dict:
        member_ids = list(member_ids)
        if not member_ids:
            return {}
        rows = (
            self.db.query(MemberModel.id, MemberModel.name)
            .filter(MemberModel.id.in_(member_ids))
            .all()
        )
        return {row.id: row.name for row in rows}
