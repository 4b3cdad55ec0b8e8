"""
포인트 사용(구매) 엔진

스토어 결제와 키오스크 QR 결제를 하나의 원자적 단위로 처리합니다.
사전 조건(상품 상태, 재고, 잔액)을 모두 확인한 뒤 한 트랜잭션에서
주문 생성, 원장 차감, 재고 차감을 수행하며, 어느 단계에서든 실패하면
전체가 롤백됩니다.

동시성:
- 잔액: 원장 추가 시 회원 행 잠금 + (member_id, sequence) 유니크 제약
- 재고: 조건부 UPDATE (stock + delta >= 0)
- 충돌(ConflictError)은 최신 상태로 한 번 재시도
"""

import logging
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import (
    BusinessLogicError,
    ConflictError,
    InsufficientBalanceError,
    InsufficientStockError,
    ItemUnavailableError,
    NotFoundError,
    OrderNotPayableError,
    StaleTokenError,
    TokenNoLongerValidError,
    ValidationError,
)
from ahub.database.transaction import run_in_transaction
from ahub.models.kyosk import KyoskOrderStatus
from ahub.models.points import PointsTransactionType
from ahub.models.qr import QrPurpose
from ahub.models.store import OrderStatus
from ahub.repositories.kyosk_repository import (
    KyoskOrderRepository,
    KyoskProductRepository,
    KyoskRepository,
)
from ahub.repositories.points_repository import PointsRepository
from ahub.repositories.stock_repository import StockKind, StockRepository
from ahub.repositories.store_repository import OrderRepository, StoreItemRepository
from ahub.schemas.kyosk import (
    KyoskOrder,
    PaymentConfirmResponse,
    PaymentPreviewResponse,
)
from ahub.schemas.qr import QrClaims
from ahub.schemas.store import CheckoutItem, CheckoutResponse, Order
from ahub.schemas.user import Member
from ahub.services.qr_token_service import QrTokenService
from ahub.utils.date_utils import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class RedemptionService:
    """스토어 결제 / 키오스크 결제 / 주문 취소"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.points_repo = PointsRepository(db)
        self.stock_repo = StockRepository(db)
        self.store_item_repo = StoreItemRepository(db)
        self.order_repo = OrderRepository(db)
        self.kyosk_repo = KyoskRepository(db)
        self.kyosk_product_repo = KyoskProductRepository(db)
        self.kyosk_order_repo = KyoskOrderRepository(db)
        self.qr_service = QrTokenService(db, settings=settings, clock=clock)

    # ------------------------------------------------------------------
    # Store checkout
    # ------------------------------------------------------------------

    def _normalize_items(self, items: Sequence[CheckoutItem]) -> "OrderedDict[int, int]":
        """요청 형태 검증 - 조회 전에 수행. 같은 상품은 수량을 합산"""
        if not items:
            raise ValidationError("Cart is empty")

        max_quantity = self.settings.MAX_CART_QUANTITY
        merged: "OrderedDict[int, int]" = OrderedDict()
        for item in items:
            if item.quantity < 1 or item.quantity > max_quantity:
                raise ValidationError(
                    f"Quantity must be between 1 and {max_quantity}",
                    {"product_id": item.product_id, "quantity": item.quantity},
                )
            merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity

        for product_id, quantity in merged.items():
            if quantity > max_quantity:
                raise ValidationError(
                    f"Quantity must be between 1 and {max_quantity}",
                    {"product_id": product_id, "quantity": quantity},
                )
        return merged

    def _resolve_store_lines(
        self, member_id: int, merged: Dict[int, int]
    ) -> Tuple[List[Tuple[int, int, int]], int]:
        """카탈로그에서 가격을 다시 조회하고 상품 상태, 재고, 잔액을 확인"""
        catalog = self.store_item_repo.get_many(merged.keys())
        now = self.clock()
        lines = []
        for item_id, quantity in merged.items():
            item = catalog.get(item_id)
            if item is None:
                raise NotFoundError(f"Store item {item_id} not found", {"item_id": item_id})
            if not item.is_active:
                raise ItemUnavailableError(item.id, item.name, "inactive")
            if item.offer_ends_at is not None and ensure_utc(item.offer_ends_at) <= now:
                raise ItemUnavailableError(item.id, item.name, "offer ended")
            if item.stock < quantity:
                raise InsufficientStockError(
                    item_id=item.id,
                    item_name=item.name,
                    requested=quantity,
                    available=item.stock,
                )
            lines.append((item.id, quantity, item.points_price))

        total = sum(quantity * price for _, quantity, price in lines)
        balance = self.points_repo.balance_of(member_id)
        if balance < total:
            raise InsufficientBalanceError(required=total, available=balance)
        return lines, total

    def checkout(
        self,
        actor: Member,
        items: Sequence[CheckoutItem],
        before_commit: Optional[Callable[[], None]] = None,
    ) -> CheckoutResponse:
        """
        스토어 결제

        Args:
            actor: 결제하는 회원
            items: 상품 ID와 수량 목록 (가격은 카탈로그에서 조회)
            before_commit: 같은 트랜잭션 안에서 커밋 직전에 실행할 작업
                (장바구니 비우기 등)

        Returns:
            CheckoutResponse: 완료된 주문과 결제 후 잔액

        Raises:
            ValidationError: 빈 요청, 수량 범위 오류
            NotFoundError: 없는 상품
            ItemUnavailableError: 비활성 상품 또는 판매 종료
            InsufficientStockError: 재고 부족 (상품명 포함)
            InsufficientBalanceError: 잔액 부족
            ConflictError: 재시도 후에도 동시 변경 충돌
        """
        ensure_capability(actor, Capability.SPEND_OWN_POINTS)
        merged = self._normalize_items(items)

        def operation() -> CheckoutResponse:
            lines, total = self._resolve_store_lines(actor.id, merged)
            now = self.clock()
            order = self.order_repo.create_order(actor.id, lines, created_at=now)
            entry = self.points_repo.append(
                member_id=actor.id,
                amount=-total,
                type=PointsTransactionType.STORE_PURCHASE,
                description=f"Store order #{order.id}",
                created_at=now,
                reference_id=f"order:{order.id}",
            )
            # 교착 방지를 위해 상품 ID 순서로 차감
            for item_id, quantity, _ in sorted(lines):
                self.stock_repo.adjust(
                    StockKind.STORE,
                    item_id,
                    -quantity,
                    reason=f"order:{order.id}",
                    created_at=now,
                    purchase=True,
                )
            if before_commit is not None:
                before_commit()
            return CheckoutResponse(order=order, balance_after=entry.balance_after)

        result = run_in_transaction(
            self.db,
            operation,
            max_attempts=self.settings.REDEMPTION_MAX_ATTEMPTS,
            label="checkout",
        )
        logger.info(
            f"Member {actor.id} completed store order {result.order.id} "
            f"for {result.order.total_points} points"
        )
        return result

    def cancel_store_order(self, actor: Member, order_id: int) -> Order:
        """관리자 주문 취소 - 환불(REFUND) 원장 항목과 재입고를 한 트랜잭션으로"""
        ensure_capability(actor, Capability.ADJUST_POINTS)

        def operation() -> Order:
            order = self.order_repo.get_by_id(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
            if order.status != OrderStatus.COMPLETED:
                raise BusinessLogicError(
                    error_code="ORDER_NOT_CANCELLABLE",
                    message=f"Order {order_id} is {order.status.value}",
                    details={"order_id": order_id, "status": order.status.value},
                )
            if not self.order_repo.mark_status(
                order_id, OrderStatus.COMPLETED, OrderStatus.CANCELLED
            ):
                raise ConflictError("Order was modified concurrently", {"order_id": order_id})

            now = self.clock()
            if order.total_points > 0:
                self.points_repo.append(
                    member_id=order.member_id,
                    amount=order.total_points,
                    type=PointsTransactionType.REFUND,
                    description=f"Refund for store order #{order_id}",
                    created_at=now,
                    reference_id=f"order:{order_id}",
                    related_member_id=actor.id,
                )
            for item in sorted(order.items, key=lambda i: i.store_item_id):
                self.stock_repo.adjust(
                    StockKind.STORE,
                    item.store_item_id,
                    item.quantity,
                    reason=f"order:{order_id} cancelled",
                    created_at=now,
                )
            return self.order_repo.get_by_id(order_id)

        result = run_in_transaction(
            self.db,
            operation,
            max_attempts=self.settings.REDEMPTION_MAX_ATTEMPTS,
            label="cancel_store_order",
        )
        logger.info(f"Admin {actor.id} cancelled store order {order_id}")
        return result

    # ------------------------------------------------------------------
    # Kyosk payment (preview -> confirm)
    # ------------------------------------------------------------------

    def _bound_order(self, claims: QrClaims) -> KyoskOrder:
        order_id = int(claims.ref) if claims.ref and claims.ref.isdigit() else None
        order = self.kyosk_order_repo.get_order(order_id) if order_id else None
        if order is None or str(order.kyosk_id) != claims.subject_id:
            raise NotFoundError(
                "No pending order for this QR code",
                {"kyosk_id": claims.subject_id, "order_id": claims.ref},
            )
        return order

    def _verify_for_confirm(self, qr_payload: str) -> QrClaims:
        try:
            return self.qr_service.verify(qr_payload, QrPurpose.KYOSK_PAYMENT)
        except StaleTokenError as e:
            raise TokenNoLongerValidError(details=e.details) from e

    def _is_expired(self, order: KyoskOrder) -> bool:
        return ensure_utc(order.expires_at) <= self.clock()

    def preview_payment(self, qr_payload: str) -> PaymentPreviewResponse:
        """
        결제 미리보기 - 상태를 변경하지 않음

        Raises:
            InvalidTokenError / ExpiredTokenError / StaleTokenError: QR 검증 실패
            OrderNotPayableError: 주문이 대기 상태가 아니거나 만료됨
        """
        claims = self.qr_service.verify(qr_payload, QrPurpose.KYOSK_PAYMENT)
        order = self._bound_order(claims)
        if order.status != KyoskOrderStatus.PENDING:
            raise OrderNotPayableError(order.id, order.status.value)
        if self._is_expired(order):
            raise OrderNotPayableError(order.id, KyoskOrderStatus.EXPIRED.value)

        kyosk = self.kyosk_repo.get_by_id(order.kyosk_id)
        return PaymentPreviewResponse(
            order_id=order.id,
            kyosk_id=order.kyosk_id,
            kyosk_name=kyosk.name if kyosk else "",
            items=order.items,
            total_points=order.total_points,
            expires_at=order.expires_at,
        )

    def _expire_order(self, order: KyoskOrder) -> None:
        run_in_transaction(
            self.db,
            lambda: self.kyosk_order_repo.transition(
                order.id, KyoskOrderStatus.PENDING, KyoskOrderStatus.EXPIRED
            ),
            label="expire_kyosk_order",
        )
        logger.info(f"Kyosk order {order.id} expired before payment")

    def confirm_payment(self, actor: Member, qr_payload: str) -> PaymentConfirmResponse:
        """
        키오스크 결제 확정

        미리보기 이후 디스플레이가 QR을 교체했다면 TokenNoLongerValidError로
        실패하며 회원은 다시 스캔해야 합니다.

        Raises:
            TokenNoLongerValidError: 미리보기 이후 QR이 교체됨
            OrderNotPayableError: 주문이 대기 상태가 아니거나 만료됨
            InsufficientBalanceError / InsufficientStockError
        """
        ensure_capability(actor, Capability.SPEND_OWN_POINTS)

        claims = self._verify_for_confirm(qr_payload)
        order = self._bound_order(claims)
        if order.status == KyoskOrderStatus.PENDING and self._is_expired(order):
            self._expire_order(order)
            raise OrderNotPayableError(order.id, KyoskOrderStatus.EXPIRED.value)

        def operation() -> PaymentConfirmResponse:
            claims = self._verify_for_confirm(qr_payload)
            order = self._bound_order(claims)
            if order.status != KyoskOrderStatus.PENDING:
                raise OrderNotPayableError(order.id, order.status.value)

            products = self.kyosk_product_repo.get_many(
                item.kyosk_product_id for item in order.items
            )
            for item in order.items:
                product = products.get(item.kyosk_product_id)
                if product is None or not product.is_active:
                    raise ItemUnavailableError(
                        item.kyosk_product_id,
                        item.product_name or (product.name if product else ""),
                        "inactive",
                    )
                if product.stock < item.quantity:
                    raise InsufficientStockError(
                        item_id=product.id,
                        item_name=product.name,
                        requested=item.quantity,
                        available=product.stock,
                    )
            balance = self.points_repo.balance_of(actor.id)
            if balance < order.total_points:
                raise InsufficientBalanceError(
                    required=order.total_points, available=balance
                )

            now = self.clock()
            entry = self.points_repo.append(
                member_id=actor.id,
                amount=-order.total_points,
                type=PointsTransactionType.KYOSK_PURCHASE,
                description=f"Kyosk order #{order.id}",
                created_at=now,
                reference_id=f"kyosk_order:{order.id}",
            )
            for item in sorted(order.items, key=lambda i: i.kyosk_product_id):
                self.stock_repo.adjust(
                    StockKind.KYOSK,
                    item.kyosk_product_id,
                    -item.quantity,
                    reason=f"kyosk_order:{order.id}",
                    created_at=now,
                    purchase=True,
                )
            if not self.kyosk_order_repo.transition(
                order.id,
                KyoskOrderStatus.PENDING,
                KyoskOrderStatus.COMPLETED,
                paid_by_member_id=actor.id,
                paid_at=now,
            ):
                raise ConflictError("Order was modified concurrently", {"order_id": order.id})
            if not self.qr_service.retire(
                QrPurpose.KYOSK_PAYMENT, claims.subject_id, claims.nonce
            ):
                raise TokenNoLongerValidError(details={"order_id": order.id})

            kyosk = self.kyosk_repo.get_by_id(order.kyosk_id)
            return PaymentConfirmResponse(
                order_id=order.id,
                kyosk_name=kyosk.name if kyosk else "",
                total_points=order.total_points,
                balance_after=entry.balance_after,
            )

        result = run_in_transaction(
            self.db,
            operation,
            max_attempts=self.settings.REDEMPTION_MAX_ATTEMPTS,
            label="confirm_payment",
        )
        logger.info(
            f"Member {actor.id} paid kyosk order {result.order_id} "
            f"for {result.total_points} points"
        )
        return result
