import logging

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import AuthorizationError, InvalidTokenError
from ahub.database.transaction import run_in_transaction
from ahub.models.qr import QrPurpose
from ahub.repositories.points_repository import PointsRepository
from ahub.repositories.user_repository import MemberRepository
from ahub.schemas.member_card import MemberCardQrResponse, MemberCardVerifyResponse
from ahub.schemas.user import Member
from ahub.services.qr_token_service import QrTokenService
from ahub.utils.date_utils import Clock, utc_now

logger = logging.getLogger(__name__)


class MemberCardService:
    """
    모바일 회원증 QR

    회원마다 유효한 QR은 하나이며, 만료 전에는 같은 QR을 재사용하고
    만료되면 새로 발급합니다.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.member_repo = MemberRepository(db)
        self.points_repo = PointsRepository(db)
        self.qr_service = QrTokenService(db, settings=settings, clock=clock)

    def issue_card_qr(self, actor: Member) -> MemberCardQrResponse:
        if not actor.is_active:
            raise AuthorizationError("Inactive members cannot use the member card")
        issued = run_in_transaction(
            self.db,
            lambda: self.qr_service.current_or_rotate(
                QrPurpose.MEMBER_CARD,
                actor.id,
                self.settings.MEMBER_CARD_QR_TTL_SECONDS,
            ),
            max_attempts=2,
            label="member_card_qr",
        )
        return MemberCardQrResponse(
            qr_payload=issued.payload,
            expires_at=issued.expires_at,
            expires_in=self.qr_service.seconds_until_rotation(issued),
        )

    def verify_card(self, actor: Member, qr_payload: str) -> MemberCardVerifyResponse:
        """회원증 QR 확인 (디스플레이/관리자 전용)"""
        ensure_capability(actor, Capability.VERIFY_MEMBER_CARD)
        claims = self.qr_service.verify(qr_payload, QrPurpose.MEMBER_CARD)

        member = self.member_repo.get_by_id(int(claims.subject_id))
        if member is None:
            raise InvalidTokenError(
                message="Member card does not belong to a known member",
                details={"subject_id": claims.subject_id},
            )
        logger.info(f"Member card of {member.id} verified by {actor.id}")
        return MemberCardVerifyResponse(
            member_id=member.id,
            name=member.name,
            matricula=member.matricula,
            is_active=member.is_active,
            balance=self.points_repo.balance_of(member.id),
        )
