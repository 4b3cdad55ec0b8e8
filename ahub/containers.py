from dependency_injector import containers, providers

from ahub.config import Settings
from ahub.services.cart_service import CartService
from ahub.services.checkin_service import CheckinService
from ahub.services.event_service import EventService
from ahub.services.kyosk_service import KyoskService
from ahub.services.member_card_service import MemberCardService
from ahub.services.point_service import PointService
from ahub.services.redemption_service import RedemptionService
from ahub.services.stock_service import StockService
from ahub.services.store_service import StoreService
from ahub.utils.date_utils import utc_now


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)
    clock = providers.Object(utc_now)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies. The request-scoped db session is passed at call time."""

    config = providers.DependenciesContainer()

    point_service = providers.Factory(
        PointService, settings=config.config, clock=config.clock
    )
    stock_service = providers.Factory(
        StockService, settings=config.config, clock=config.clock
    )
    store_service = providers.Factory(
        StoreService, settings=config.config, clock=config.clock
    )
    cart_service = providers.Factory(
        CartService, settings=config.config, clock=config.clock
    )
    redemption_service = providers.Factory(
        RedemptionService, settings=config.config, clock=config.clock
    )
    kyosk_service = providers.Factory(
        KyoskService, settings=config.config, clock=config.clock
    )
    event_service = providers.Factory(
        EventService, settings=config.config, clock=config.clock
    )
    checkin_service = providers.Factory(
        CheckinService, settings=config.config, clock=config.clock
    )
    member_card_service = providers.Factory(
        MemberCardService, settings=config.config, clock=config.clock
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(modules=["ahub.deps"])

    config = providers.Container(ConfigModule)
    services = providers.Container(ServiceModule, config=config)
