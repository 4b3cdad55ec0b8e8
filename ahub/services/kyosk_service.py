import logging
from collections import OrderedDict
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import (
    BusinessLogicError,
    InsufficientStockError,
    ItemUnavailableError,
    NotFoundError,
    ValidationError,
)
from ahub.database.transaction import run_in_transaction
from ahub.models.kyosk import KyoskOrderStatus, KyoskStatus
from ahub.models.qr import QrPurpose
from ahub.repositories.kyosk_repository import (
    KyoskOrderRepository,
    KyoskProductRepository,
    KyoskRepository,
)
from ahub.repositories.stock_repository import (
    INITIAL_STOCK_REASON,
    StockKind,
    StockRepository,
)
from ahub.schemas.kyosk import (
    Kyosk,
    KyoskCreate,
    KyoskDisplayResponse,
    KyoskLowStockAlert,
    KyoskOrder,
    KyoskOrderCreate,
    KyoskOrderDisplay,
    KyoskProduct,
    KyoskProductCreate,
    KyoskProductUpdate,
    KyoskSalesSummary,
)
from ahub.schemas.user import Member
from ahub.services.qr_token_service import QrTokenService
from ahub.utils.date_utils import Clock, ensure_utc, seconds_until, utc_now

logger = logging.getLogger(__name__)


class KyoskService:
    """키오스크 카탈로그 관리와 키오스크 디스플레이 주문 흐름"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.kyosk_repo = KyoskRepository(db)
        self.product_repo = KyoskProductRepository(db)
        self.order_repo = KyoskOrderRepository(db)
        self.stock_repo = StockRepository(db)
        self.qr_service = QrTokenService(db, settings=settings, clock=clock)

    def _get_kyosk(self, kyosk_id: int) -> Kyosk:
        kyosk = self.kyosk_repo.get_by_id(kyosk_id)
        if kyosk is None:
            raise NotFoundError(f"Kyosk {kyosk_id} not found", {"kyosk_id": kyosk_id})
        return kyosk

    def _get_active_kyosk(self, kyosk_id: int) -> Kyosk:
        kyosk = self._get_kyosk(kyosk_id)
        if kyosk.status != KyoskStatus.ACTIVE:
            raise BusinessLogicError(
                error_code="KYOSK_INACTIVE",
                message=f"Kyosk {kyosk_id} is not active",
                details={"kyosk_id": kyosk_id},
            )
        return kyosk

    def _get_order(self, kyosk_id: int, order_id: int) -> KyoskOrder:
        order = self.order_repo.get_order(order_id)
        if order is None or order.kyosk_id != kyosk_id:
            raise NotFoundError(
                f"Order {order_id} not found", {"kyosk_id": kyosk_id, "order_id": order_id}
            )
        return order

    # ------------------------------------------------------------------
    # Catalog (admin)
    # ------------------------------------------------------------------

    def create_kyosk(self, actor: Member, request: KyoskCreate) -> Kyosk:
        ensure_capability(actor, Capability.MANAGE_CATALOG)
        self.qr_service.validate_rotation_seconds(request.qr_rotation_seconds)
        now = self.clock()
        kyosk = run_in_transaction(
            self.db,
            lambda: self.kyosk_repo.create(
                name=request.name,
                description=request.description,
                status=KyoskStatus.ACTIVE,
                qr_rotation_seconds=request.qr_rotation_seconds,
                low_stock_threshold=request.low_stock_threshold,
                created_at=now,
                updated_at=now,
            ),
            label="create_kyosk",
        )
        logger.info(f"Admin {actor.id} created kyosk {kyosk.id}")
        return kyosk

    def list_kyosks(self) -> List[Kyosk]:
        return self.kyosk_repo.list_kyosks()

    def create_product(
        self, actor: Member, kyosk_id: int, request: KyoskProductCreate
    ) -> KyoskProduct:
        """상품 등록 - 초기 재고는 첫 번째 재고 이동으로 기록"""
        ensure_capability(actor, Capability.MANAGE_CATALOG)
        self._get_kyosk(kyosk_id)

        def operation() -> KyoskProduct:
            now = self.clock()
            product = self.product_repo.create(
                kyosk_id=kyosk_id,
                name=request.name,
                description=request.description,
                points_price=request.points_price,
                stock=request.initial_stock,
                is_active=request.is_active,
                created_at=now,
                updated_at=now,
            )
            if request.initial_stock > 0:
                self.stock_repo.record_movement(
                    StockKind.KYOSK,
                    product.id,
                    request.initial_stock,
                    INITIAL_STOCK_REASON,
                    created_at=now,
                )
            return product

        product = run_in_transaction(self.db, operation, label="create_kyosk_product")
        logger.info(f"Admin {actor.id} added product {product.id} to kyosk {kyosk_id}")
        return product

    def list_products(self, kyosk_id: int) -> List[KyoskProduct]:
        self._get_kyosk(kyosk_id)
        return self.product_repo.list_for_kyosk(kyosk_id)

    def update_product(
        self, actor: Member, product_id: int, request: KyoskProductUpdate
    ) -> KyoskProduct:
        """상품 활성화/가격 변경 - 기존 주문 가격에는 영향 없음"""
        ensure_capability(actor, Capability.MANAGE_CATALOG)
        changes = request.model_dump(exclude_none=True)
        if not changes:
            raise ValidationError("Nothing to update")
        product = run_in_transaction(
            self.db,
            lambda: self.product_repo.update(product_id, **changes),
            label="update_kyosk_product",
        )
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        return product

    def list_low_stock(
        self,
        actor: Member,
        kyosk_id: Optional[int] = None,
        threshold: Optional[int] = None,
    ) -> List[KyoskLowStockAlert]:
        """재고 부족 알림 - 재고가 기준 이하인 활성 상품 (재고 오름차순)"""
        ensure_capability(actor, Capability.ADJUST_STOCK)
        if kyosk_id is not None:
            self._get_kyosk(kyosk_id)
        if threshold is not None and threshold < 0:
            raise ValidationError("Threshold must not be negative", {"threshold": threshold})
        return self.product_repo.list_low_stock(kyosk_id=kyosk_id, threshold=threshold)

    def sales_summary(self, actor: Member, kyosk_id: int) -> KyoskSalesSummary:
        ensure_capability(actor, Capability.MANAGE_CATALOG)
        self._get_kyosk(kyosk_id)
        return self.order_repo.sales_summary(kyosk_id)

    # ------------------------------------------------------------------
    # Display terminal
    # ------------------------------------------------------------------

    def get_display(self, actor: Member, kyosk_id: int) -> KyoskDisplayResponse:
        """디스플레이용 판매 가능 상품 목록 (활성 + 재고 있음)"""
        ensure_capability(actor, Capability.OPERATE_DISPLAY)
        kyosk = self._get_active_kyosk(kyosk_id)
        return KyoskDisplayResponse(
            kyosk=kyosk,
            products=self.product_repo.list_for_kyosk(kyosk_id, available_only=True),
        )

    def create_order(
        self, actor: Member, kyosk_id: int, request: KyoskOrderCreate
    ) -> KyoskOrderDisplay:
        """
        결제 대기 주문 생성

        현재 가격을 주문 항목에 고정하고, 이 키오스크의 이전 대기 주문은 취소하며,
        주문에 묶인 KYOSK_PAYMENT QR을 발급합니다 (이전 QR은 즉시 무효).
        """
        ensure_capability(actor, Capability.OPERATE_DISPLAY)
        kyosk = self._get_active_kyosk(kyosk_id)

        merged: "OrderedDict[int, int]" = OrderedDict()
        for line in request.items:
            merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
        max_quantity = self.settings.MAX_CART_QUANTITY
        for product_id, quantity in merged.items():
            if quantity > max_quantity:
                raise ValidationError(
                    f"Quantity must be between 1 and {max_quantity}",
                    {"product_id": product_id, "quantity": quantity},
                )

        def operation() -> KyoskOrderDisplay:
            products = self.product_repo.get_many(merged.keys())
            lines = []
            for product_id, quantity in merged.items():
                product = products.get(product_id)
                if product is None or product.kyosk_id != kyosk_id:
                    raise NotFoundError(
                        f"Product {product_id} not found", {"product_id": product_id}
                    )
                if not product.is_active:
                    raise ItemUnavailableError(product.id, product.name, "inactive")
                if product.stock < quantity:
                    raise InsufficientStockError(
                        item_id=product.id,
                        item_name=product.name,
                        requested=quantity,
                        available=product.stock,
                    )
                lines.append((product.id, quantity, product.points_price))

            now = self.clock()
            self.order_repo.cancel_pending(kyosk_id)
            order = self.order_repo.create_order(
                kyosk_id,
                lines,
                expires_at=now
                + timedelta(minutes=self.settings.KYOSK_ORDER_EXPIRATION_MINUTES),
                created_at=now,
            )
            issued = self.qr_service.issue(
                QrPurpose.KYOSK_PAYMENT,
                kyosk_id,
                kyosk.qr_rotation_seconds,
                ref=str(order.id),
            )
            return KyoskOrderDisplay(
                order=order,
                qr_payload=issued.payload,
                next_rotation_in=self.qr_service.seconds_until_rotation(issued),
                expires_in=seconds_until(order.expires_at, now),
            )

        result = run_in_transaction(
            self.db,
            operation,
            max_attempts=self.settings.REDEMPTION_MAX_ATTEMPTS,
            label="create_kyosk_order",
        )
        logger.info(
            f"Kyosk {kyosk_id} opened order {result.order.id} "
            f"for {result.order.total_points} points"
        )
        return result

    def get_order_display(
        self, actor: Member, kyosk_id: int, order_id: int
    ) -> KyoskOrderDisplay:
        """
        디스플레이 폴링 - 대기 중이면 현재 결제 QR(만료 시 교체)을 함께 반환

        만료 시각이 지난 대기 주문은 EXPIRED로 전환됩니다.
        """
        ensure_capability(actor, Capability.OPERATE_DISPLAY)
        kyosk = self._get_kyosk(kyosk_id)
        order = self._get_order(kyosk_id, order_id)
        now = self.clock()

        if order.status != KyoskOrderStatus.PENDING:
            return KyoskOrderDisplay(order=order)

        if ensure_utc(order.expires_at) <= now:
            run_in_transaction(
                self.db,
                lambda: self.order_repo.transition(
                    order_id, KyoskOrderStatus.PENDING, KyoskOrderStatus.EXPIRED
                ),
                label="expire_kyosk_order",
            )
            logger.info(f"Kyosk order {order_id} expired without payment")
            return KyoskOrderDisplay(order=self.order_repo.get_order(order_id))

        issued = run_in_transaction(
            self.db,
            lambda: self.qr_service.current_or_rotate(
                QrPurpose.KYOSK_PAYMENT,
                kyosk_id,
                kyosk.qr_rotation_seconds,
                ref=str(order_id),
            ),
            max_attempts=self.settings.REDEMPTION_MAX_ATTEMPTS,
            label="kyosk_qr",
        )
        return KyoskOrderDisplay(
            order=order,
            qr_payload=issued.payload,
            next_rotation_in=self.qr_service.seconds_until_rotation(issued),
            expires_in=seconds_until(order.expires_at, now),
        )

    def cancel_order(self, actor: Member, kyosk_id: int, order_id: int) -> KyoskOrder:
        ensure_capability(actor, Capability.OPERATE_DISPLAY)
        order = self._get_order(kyosk_id, order_id)
        cancelled = run_in_transaction(
            self.db,
            lambda: self.order_repo.transition(
                order_id, KyoskOrderStatus.PENDING, KyoskOrderStatus.CANCELLED
            ),
            label="cancel_kyosk_order",
        )
        if not cancelled:
            raise BusinessLogicError(
                error_code="ORDER_NOT_CANCELLABLE",
                message=f"Order {order_id} is {order.status.value}",
                details={"order_id": order_id, "status": order.status.value},
            )
        logger.info(f"Kyosk {kyosk_id} cancelled order {order_id}")
        return self.order_repo.get_order(order_id)

    def list_orders(
        self,
        actor: Member,
        kyosk_id: int,
        status: Optional[KyoskOrderStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[KyoskOrder]:
        ensure_capability(actor, Capability.MANAGE_CATALOG)
        self._get_kyosk(kyosk_id)
        return self.order_repo.list_orders(kyosk_id, status=status, limit=limit, offset=offset)
