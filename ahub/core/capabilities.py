"""
역할별 권한(capability) 검사

엔드포인트마다 역할을 직접 비교하지 않고, 각 엔진 작업 시작 시
ensure_capability를 한 번 호출합니다.
"""

import enum
import logging
from typing import Dict, FrozenSet

from ahub.core.exceptions import AuthorizationError
from ahub.models.user import MemberRole
from ahub.schemas.user import Member

logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
    SPEND_OWN_POINTS = "spend_own_points"
    EARN_POINTS = "earn_points"
    ADJUST_POINTS = "adjust_points"
    ADJUST_STOCK = "adjust_stock"
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_EVENTS = "manage_events"
    OPERATE_DISPLAY = "operate_display"
    VERIFY_MEMBER_CARD = "verify_member_card"


# 디스플레이 단말은 포인트를 적립/사용할 수 없음
ROLE_CAPABILITIES: Dict[MemberRole, FrozenSet[Capability]] = {
    MemberRole.MEMBER: frozenset({Capability.SPEND_OWN_POINTS, Capability.EARN_POINTS}),
    MemberRole.DISPLAY: frozenset(
        {Capability.OPERATE_DISPLAY, Capability.VERIFY_MEMBER_CARD}
    ),
    MemberRole.ADMIN: frozenset(Capability),
}


def has_capability(actor: Member, capability: Capability) -> bool:
    if not actor.is_active:
        return False
    return capability in ROLE_CAPABILITIES.get(MemberRole(actor.role), frozenset())


def ensure_capability(actor: Member, capability: Capability) -> None:
    """권한이 없으면 AuthorizationError"""
    if not has_capability(actor, capability):
        logger.info(
            f"Member {actor.id} ({actor.role}) lacks capability {capability.value}"
        )
        raise AuthorizationError(
            message=f"Not allowed to {capability.value.replace('_', ' ')}",
            details={"capability": capability.value},
        )
