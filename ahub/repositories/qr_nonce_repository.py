from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ahub.core.exceptions import ConflictError
from ahub.models.qr import QrLiveNonce, QrPurpose
from ahub.repositories.base import BaseRepository
from ahub.schemas.qr import LiveNonce


class QrNonceRepository(BaseRepository[QrLiveNonce, LiveNonce]):
    """
    QR 대상별 현재 유효 nonce 저장소

    대상당 한 행을 version 컬럼으로 compare-and-swap 갱신합니다.
    두 요청이 동시에 교체를 시도하면 하나만 성공하고 나머지는 ConflictError.
    """

    def __init__(self, db: Session):
        super().__init__(QrLiveNonce, LiveNonce, db)

    def _get_row(self, purpose: QrPurpose, subject_id: str) -> Optional[QrLiveNonce]:
        return (
            self.db.query(QrLiveNonce)
            .filter(
                QrLiveNonce.purpose == purpose,
                QrLiveNonce.subject_id == subject_id,
            )
            .first()
        )

    def get_live(self, purpose: QrPurpose, subject_id: str) -> Optional[LiveNonce]:
        return self._to_schema(self._get_row(purpose, subject_id))

    def set_live(
        self,
        purpose: QrPurpose,
        subject_id: str,
        nonce: str,
        payload: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> LiveNonce:
        """새 nonce를 현재 유효 nonce로 설정 (이전 nonce는 즉시 무효)"""
        row = self._get_row(purpose, subject_id)
        if row is None:
            row = QrLiveNonce(
                purpose=purpose,
                subject_id=subject_id,
                nonce=nonce,
                payload=payload,
                issued_at=issued_at,
                expires_at=expires_at,
                version=1,
                created_at=issued_at,
            )
            try:
                self.db.add(row)
                self.db.flush()
            except IntegrityError as e:
                raise ConflictError(
                    message="QR rotated concurrently",
                    details={"purpose": purpose.value, "subject_id": subject_id},
                ) from e
            return self.schema_class.model_validate(row)

        updated = (
            self.db.query(QrLiveNonce)
            .filter(QrLiveNonce.id == row.id, QrLiveNonce.version == row.version)
            .update(
                {
                    QrLiveNonce.nonce: nonce,
                    QrLiveNonce.payload: payload,
                    QrLiveNonce.issued_at: issued_at,
                    QrLiveNonce.expires_at: expires_at,
                    QrLiveNonce.version: QrLiveNonce.version + 1,
                },
                synchronize_session="fetch",
            )
        )
        if updated == 0:
            raise ConflictError(
                message="QR rotated concurrently",
                details={"purpose": purpose.value, "subject_id": subject_id},
            )
        self.db.flush()
        self.db.refresh(row)
        return self.schema_class.model_validate(row)

    def retire(self, purpose: QrPurpose, subject_id: str, nonce: str) -> bool:
        """nonce가 여전히 유효하면 폐기하고 True, 이미 교체되었으면 False"""
        updated = (
            self.db.query(QrLiveNonce)
            .filter(
                QrLiveNonce.purpose == purpose,
                QrLiveNonce.subject_id == subject_id,
                QrLiveNonce.nonce == nonce,
            )
            .update(
                {
                    QrLiveNonce.nonce: None,
                    QrLiveNonce.payload: None,
                    QrLiveNonce.version: QrLiveNonce.version + 1,
                },
                synchronize_session="fetch",
            )
        )
        self.db.flush()
        return updated > 0
