import logging
from typing import Optional

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import (
    AuthorizationError,
    InsufficientStockError,
    ItemUnavailableError,
    NotFoundError,
    ValidationError,
)
from ahub.database.transaction import run_in_transaction
from ahub.models.store import OrderStatus
from ahub.repositories.store_repository import (
    CartRepository,
    OrderRepository,
    StoreItemRepository,
)
from ahub.schemas.store import (
    CartResponse,
    CheckoutItem,
    CheckoutResponse,
    Order,
    OrderListResponse,
)
from ahub.schemas.user import Member
from ahub.services.redemption_service import RedemptionService
from ahub.utils.date_utils import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class CartService:
    """
    장바구니와 스토어 주문 조회

    결제는 RedemptionService.checkout을 통해 수행되며, 장바구니 비우기는
    결제와 같은 트랜잭션에서 처리됩니다.
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
        self.cart_repo = CartRepository(db)
        self.item_repo = StoreItemRepository(db)
        self.order_repo = OrderRepository(db)
        self.redemption_service = RedemptionService(db, settings=settings, clock=clock)

    def get_cart(self, member_id: int) -> CartResponse:
        lines = self.cart_repo.get_lines(member_id)
        return CartResponse(
            items=lines,
            total_points=sum(line.subtotal for line in lines),
            item_count=sum(line.quantity for line in lines),
        )

    def _validate_quantity(self, store_item_id: int, quantity: int) -> None:
        max_quantity = self.settings.MAX_CART_QUANTITY
        if quantity < 1 or quantity > max_quantity:
            raise ValidationError(
                f"Quantity must be between 1 and {max_quantity}",
                {"store_item_id": store_item_id, "quantity": quantity},
            )
        item = self.item_repo.get_by_id(store_item_id)
        if item is None:
            raise NotFoundError(
                f"Store item {store_item_id} not found", {"item_id": store_item_id}
            )
        if not item.is_active:
            raise ItemUnavailableError(item.id, item.name, "inactive")
        if item.offer_ends_at is not None and ensure_utc(item.offer_ends_at) <= self.clock():
            raise ItemUnavailableError(item.id, item.name, "offer ended")
        if item.stock < quantity:
            raise InsufficientStockError(
                item_id=item.id,
                item_name=item.name,
                requested=quantity,
                available=item.stock,
            )

    def add_item(self, actor: Member, store_item_id: int, quantity: int = 1) -> CartResponse:
        """장바구니에 담기 - 이미 있으면 수량 합산"""
        ensure_capability(actor, Capability.SPEND_OWN_POINTS)

        def operation() -> None:
            new_quantity = self.cart_repo.get_quantity(actor.id, store_item_id) + quantity
            self._validate_quantity(store_item_id, new_quantity)
            self.cart_repo.set_quantity(actor.id, store_item_id, new_quantity, self.clock())

        run_in_transaction(self.db, operation, max_attempts=2, label="cart_add")
        return self.get_cart(actor.id)

    def update_item(self, actor: Member, store_item_id: int, quantity: int) -> CartResponse:
        ensure_capability(actor, Capability.SPEND_OWN_POINTS)
        if self.cart_repo.get_quantity(actor.id, store_item_id) == 0:
            raise NotFoundError("Item is not in the cart", {"store_item_id": store_item_id})
        self._validate_quantity(store_item_id, quantity)
        run_in_transaction(
            self.db,
            lambda: self.cart_repo.set_quantity(
                actor.id, store_item_id, quantity, self.clock()
            ),
            label="cart_update",
        )
        return self.get_cart(actor.id)

    def remove_item(self, actor: Member, store_item_id: int) -> CartResponse:
        removed = run_in_transaction(
            self.db,
            lambda: self.cart_repo.remove(actor.id, store_item_id),
            label="cart_remove",
        )
        if not removed:
            raise NotFoundError("Item is not in the cart", {"store_item_id": store_item_id})
        return self.get_cart(actor.id)

    def clear(self, actor: Member) -> CartResponse:
        run_in_transaction(
            self.db, lambda: self.cart_repo.clear(actor.id), label="cart_clear"
        )
        return self.get_cart(actor.id)

    def checkout(self, actor: Member) -> CheckoutResponse:
        """장바구니 전체 결제 - 성공하면 같은 트랜잭션에서 장바구니를 비움"""
        lines = self.cart_repo.get_lines(actor.id)
        if not lines:
            raise ValidationError("Cart is empty")
        items = [
            CheckoutItem(product_id=line.store_item_id, quantity=line.quantity)
            for line in lines
        ]
        return self.redemption_service.checkout(
            actor, items, before_commit=lambda: self.cart_repo.clear(actor.id)
        )

    def list_orders(
        self,
        member_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> OrderListResponse:
        orders, total = self.order_repo.list_orders(
            member_id=member_id, status=status, limit=limit, offset=offset
        )
        return OrderListResponse(
            orders=orders, total_count=total, has_next=offset + len(orders) < total
        )

    def get_order(self, actor: Member, order_id: int) -> Order:
        """주문 조회 - 본인 주문 또는 관리자"""
        order = self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
        if order.member_id != actor.id and not actor.is_admin:
            raise AuthorizationError("Not your order", {"order_id": order_id})
        return order
