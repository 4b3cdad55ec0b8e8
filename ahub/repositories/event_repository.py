from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ahub.core.exceptions import ConflictError
from ahub.models.events import Event as EventModel
from ahub.models.events import EventCheckin as EventCheckinModel
from ahub.models.events import EventStatus
from ahub.repositories.base import BaseRepository
from ahub.schemas.events import Checkin as CheckinSchema
from ahub.schemas.events import Event as EventSchema


class EventRepository(BaseRepository[EventModel, EventSchema]):
    def __init__(self, db: Session):
        super().__init__(EventModel, EventSchema, db)

    def list_events(
        self, status: Optional[EventStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[EventSchema]:
        query = self.db.query(EventModel)
        if status is not None:
            query = query.filter(EventModel.status == status)
        rows = query.order_by(EventModel.start_at.desc()).offset(offset).limit(limit).all()
        return self._to_schemas(rows)

    def set_status(self, event_id: int, status: EventStatus) -> Optional[EventSchema]:
        return self.update(event_id, status=status)


class CheckinRepository(BaseRepository[EventCheckinModel, CheckinSchema]):
    """
    이벤트 체크인 리포지토리

    (event_id, member_id, checkin_number) 유니크 제약으로 같은 회원의 동시
    체크인을 직렬화합니다. 제약 위반은 ConflictError로 변환됩니다.
    """

    def __init__(self, db: Session):
        super().__init__(EventCheckinModel, CheckinSchema, db)

    def _member_query(self, event_id: int, member_id: int):
        return self.db.query(EventCheckinModel).filter(
            EventCheckinModel.event_id == event_id,
            EventCheckinModel.member_id == member_id,
        )

    def count_for(self, event_id: int, member_id: int) -> int:
        return self._member_query(event_id, member_id).count()

    def last_for(self, event_id: int, member_id: int) -> Optional[CheckinSchema]:
        row = (
            self._member_query(event_id, member_id)
            .order_by(EventCheckinModel.checkin_number.desc())
            .first()
        )
        return self._to_schema(row)

    def list_for(self, event_id: int, member_id: int) -> List[CheckinSchema]:
        rows = self._member_query(event_id, member_id).order_by(
            EventCheckinModel.checkin_number
        ).all()
        return self._to_schemas(rows)

    def points_earned(self, event_id: int, member_id: int) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(EventCheckinModel.points_awarded), 0))
            .filter(
                EventCheckinModel.event_id == event_id,
                EventCheckinModel.member_id == member_id,
            )
            .scalar()
        )
        return int(total or 0)

    def nonce_used(self, event_id: int, member_id: int, nonce: str) -> bool:
        return (
            self._member_query(event_id, member_id)
            .filter(EventCheckinModel.qr_nonce == nonce)
            .first()
            is not None
        )

    def create_checkin(
        self,
        event_id: int,
        member_id: int,
        checkin_number: int,
        points_awarded: int,
        qr_nonce: str,
        created_at: datetime,
    ) -> CheckinSchema:
        row = EventCheckinModel(
            event_id=event_id,
            member_id=member_id,
            checkin_number=checkin_number,
            points_awarded=points_awarded,
            qr_nonce=qr_nonce,
            created_at=created_at,
        )
        try:
            self.db.add(row)
            self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                message="Concurrent check-in detected",
                details={"event_id": event_id, "member_id": member_id},
            ) from e
        return self.schema_class.model_validate(row)

    def link_ledger_entry(self, checkin_id: int, ledger_entry_id: int) -> CheckinSchema:
        return self.update(checkin_id, ledger_entry_id=ledger_entry_id)

    def stats(self, event_id: int) -> Tuple[int, int]:
        """(총 체크인 수, 참여 회원 수)"""
        total, unique = (
            self.db.query(
                func.count(EventCheckinModel.id),
                func.count(func.distinct(EventCheckinModel.member_id)),
            )
            .filter(EventCheckinModel.event_id == event_id)
            .one()
        )
        return int(total), int(unique)

    def report_rows(self, event_id: int) -> List[Tuple[int, int, int]]:
        """회원별 (member_id, 체크인 수, 적립 포인트)"""
        rows = (
            self.db.query(
                EventCheckinModel.member_id,
                func.count(EventCheckinModel.id),
                func.coalesce(func.sum(EventCheckinModel.points_awarded), 0),
            )
            .filter(EventCheckinModel.event_id == event_id)
            .group_by(EventCheckinModel.member_id)
            .order_by(EventCheckinModel.member_id)
            .all()
        )
        return [(int(m), int(c), int(p)) for m, c, p in rows]
