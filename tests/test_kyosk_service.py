import pytest

from ahub.core.exceptions import (
    AuthorizationError,
    BusinessLogicError,
    NotFoundError,
    ValidationError,
)
from ahub.models.kyosk import KyoskOrderStatus
from ahub.schemas.kyosk import (
    KyoskCreate,
    KyoskOrderCreate,
    KyoskOrderLine,
    KyoskProductCreate,
    KyoskProductUpdate,
)
from ahub.services.kyosk_service import KyoskService
from ahub.services.redemption_service import RedemptionService


@pytest.fixture
def kyosk_service(db_session, test_settings, clock):
    return KyoskService(db_session, settings=test_settings, clock=clock)


@pytest.fixture
def kyosk(kyosk_service, admin):
    return kyosk_service.create_kyosk(admin, KyoskCreate(name="Snack bar"))


@pytest.fixture
def products(kyosk_service, admin, kyosk):
    def _add(name, price, stock):
        return kyosk_service.create_product(
            admin, kyosk.id, KyoskProductCreate(name=name, points_price=price, initial_stock=stock)
        )

    return {
        "chips": _add("Chips", 10, 5),
        "soda": _add("Soda", 15, 0),
        "gum": _add("Gum", 3, 20),
    }


def order_of(*lines):
    return KyoskOrderCreate(
        items=[KyoskOrderLine(product_id=pid, quantity=qty) for pid, qty in lines]
    )


class TestKyoskCatalog:
    def test_display_lists_only_sellable_products(
        self, kyosk_service, admin, display, kyosk, products
    ):
        kyosk_service.update_product(admin, products["gum"].id, KyoskProductUpdate(is_active=False))

        view = kyosk_service.get_display(display, kyosk.id)

        assert view.kyosk.name == "Snack bar"
        assert [p.name for p in view.products] == ["Chips"]

    def test_rotation_out_of_range(self, kyosk_service, admin):
        with pytest.raises(ValidationError):
            kyosk_service.create_kyosk(admin, KyoskCreate(name="Fast", qr_rotation_seconds=5))

    def test_empty_update_is_rejected(self, kyosk_service, admin, products):
        with pytest.raises(ValidationError):
            kyosk_service.update_product(admin, products["chips"].id, KyoskProductUpdate())

    def test_member_cannot_manage_catalog(self, kyosk_service, member):
        with pytest.raises(AuthorizationError):
            kyosk_service.create_kyosk(member, KyoskCreate(name="Mine"))


class TestLowStockAlerts:
    def test_lists_active_products_at_or_below_kyosk_threshold(
        self, kyosk_service, admin, kyosk, products
    ):
        alerts = kyosk_service.list_low_stock(admin, kyosk_id=kyosk.id)

        assert [(a.product_name, a.current_stock) for a in alerts] == [("Soda", 0), ("Chips", 5)]
        assert {a.threshold for a in alerts} == {5}
        assert alerts[0].kyosk_name == "Snack bar"

    def test_threshold_override(self, kyosk_service, admin, kyosk, products):
        alerts = kyosk_service.list_low_stock(admin, kyosk_id=kyosk.id, threshold=0)

        assert [a.product_name for a in alerts] == ["Soda"]

    def test_inactive_products_are_not_reported(self, kyosk_service, admin, kyosk, products):
        kyosk_service.update_product(admin, products["soda"].id, KyoskProductUpdate(is_active=False))

        alerts = kyosk_service.list_low_stock(admin)

        assert [a.product_id for a in alerts] == [products["chips"].id]

    def test_per_kyosk_threshold(self, kyosk_service, admin):
        # Given: 기준이 1인 키오스크
        strict = kyosk_service.create_kyosk(
            admin, KyoskCreate(name="Vending", low_stock_threshold=1)
        )
        kyosk_service.create_product(
            admin, strict.id, KyoskProductCreate(name="Water", points_price=2, initial_stock=2)
        )
        kyosk_service.create_product(
            admin, strict.id, KyoskProductCreate(name="Juice", points_price=4, initial_stock=1)
        )

        # When
        alerts = kyosk_service.list_low_stock(admin, kyosk_id=strict.id)

        # Then
        assert [(a.product_name, a.threshold) for a in alerts] == [("Juice", 1)]

    def test_unknown_kyosk(self, kyosk_service, admin):
        with pytest.raises(NotFoundError):
            kyosk_service.list_low_stock(admin, kyosk_id=404)

    def test_display_cannot_read_alerts(self, kyosk_service, display, kyosk):
        with pytest.raises(AuthorizationError):
            kyosk_service.list_low_stock(display, kyosk_id=kyosk.id)


class TestKyoskOrders:
    def test_order_price_is_fixed_at_creation(
        self, kyosk_service, admin, display, kyosk, products
    ):
        # Given
        opened = kyosk_service.create_order(
            display, kyosk.id, order_of((products["chips"].id, 2), (products["gum"].id, 1))
        )

        # When: 주문 이후 가격 변경
        kyosk_service.update_product(admin, products["chips"].id, KyoskProductUpdate(points_price=99))

        # Then
        polled = kyosk_service.get_order_display(display, kyosk.id, opened.order.id)
        assert opened.order.total_points == 23
        assert polled.order.total_points == 23
        assert polled.qr_payload == opened.qr_payload
        assert opened.expires_in == 300

    def test_product_from_other_kyosk(self, kyosk_service, admin, display, kyosk, products):
        other = kyosk_service.create_kyosk(admin, KyoskCreate(name="Other"))

        with pytest.raises(NotFoundError):
            kyosk_service.create_order(display, other.id, order_of((products["chips"].id, 1)))

    def test_members_cannot_open_orders(self, kyosk_service, member, kyosk, products):
        with pytest.raises(AuthorizationError):
            kyosk_service.create_order(member, kyosk.id, order_of((products["chips"].id, 1)))

    def test_cancel_pending_order_only_once(self, kyosk_service, display, kyosk, products):
        opened = kyosk_service.create_order(display, kyosk.id, order_of((products["gum"].id, 1)))

        cancelled = kyosk_service.cancel_order(display, kyosk.id, opened.order.id)

        assert cancelled.status == KyoskOrderStatus.CANCELLED
        with pytest.raises(BusinessLogicError) as exc_info:
            kyosk_service.cancel_order(display, kyosk.id, opened.order.id)
        assert exc_info.value.error_code == "ORDER_NOT_CANCELLABLE"

    def test_sales_summary_counts_completed_orders(
        self, kyosk_service, db_session, test_settings, clock, grant_points, admin, display, member, kyosk, products
    ):
        # Given
        grant_points(member, 100)
        payments = RedemptionService(db_session, settings=test_settings, clock=clock)
        paid = kyosk_service.create_order(display, kyosk.id, order_of((products["chips"].id, 3)))
        payments.confirm_payment(member, paid.qr_payload)
        kyosk_service.create_order(display, kyosk.id, order_of((products["gum"].id, 1)))

        # When
        summary = kyosk_service.sales_summary(admin, kyosk.id)
        orders = kyosk_service.list_orders(admin, kyosk.id, status=KyoskOrderStatus.COMPLETED)

        # Then: 결제 대기 주문은 집계하지 않음
        assert summary.completed_orders == 1
        assert summary.total_points == 30
        assert summary.items_sold == 3
        assert [o.id for o in orders] == [paid.order.id]
