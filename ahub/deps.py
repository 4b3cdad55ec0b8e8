from typing import Callable

from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from sqlalchemy.orm import Session

from ahub.containers import Container
from ahub.database.session import get_db

# Services
from ahub.services.cart_service import CartService
from ahub.services.checkin_service import CheckinService
from ahub.services.event_service import EventService
from ahub.services.kyosk_service import KyoskService
from ahub.services.member_card_service import MemberCardService
from ahub.services.point_service import PointService
from ahub.services.redemption_service import RedemptionService
from ahub.services.stock_service import StockService
from ahub.services.store_service import StoreService


@inject
def get_point_service(
    db: Session = Depends(get_db),
    factory: Callable[..., PointService] = Depends(
        Provide[Container.services.point_service.provider]
    ),
) -> PointService:
    return factory(db=db)


@inject
def get_stock_service(
    db: Session = Depends(get_db),
    factory: Callable[..., StockService] = Depends(
        Provide[Container.services.stock_service.provider]
    ),
) -> StockService:
    return factory(db=db)


@inject
def get_store_service(
    db: Session = Depends(get_db),
    factory: Callable[..., StoreService] = Depends(
        Provide[Container.services.store_service.provider]
    ),
) -> StoreService:
    return factory(db=db)


@inject
def get_cart_service(
    db: Session = Depends(get_db),
    factory: Callable[..., CartService] = Depends(
        Provide[Container.services.cart_service.provider]
    ),
) -> CartService:
    return factory(db=db)


@inject
def get_redemption_service(
    db: Session = Depends(get_db),
    factory: Callable[..., RedemptionService] = Depends(
        Provide[Container.services.redemption_service.provider]
    ),
) -> RedemptionService:
    return factory(db=db)


@inject
def get_kyosk_service(
    db: Session = Depends(get_db),
    factory: Callable[..., KyoskService] = Depends(
        Provide[Container.services.kyosk_service.provider]
    ),
) -> KyoskService:
    return factory(db=db)


@inject
def get_event_service(
    db: Session = Depends(get_db),
    factory: Callable[..., EventService] = Depends(
        Provide[Container.services.event_service.provider]
    ),
) -> EventService:
    return factory(db=db)


@inject
def get_checkin_service(
    db: Session = Depends(get_db),
    factory: Callable[..., CheckinService] = Depends(
        Provide[Container.services.checkin_service.provider]
    ),
) -> CheckinService:
    return factory(db=db)


@inject
def get_member_card_service(
    db: Session = Depends(get_db),
    factory: Callable[..., MemberCardService] = Depends(
        Provide[Container.services.member_card_service.provider]
    ),
) -> MemberCardService:
    return factory(db=db)
