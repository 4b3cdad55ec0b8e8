"""
동시 요청 테스트

파일 기반 SQLite에서 스레드마다 별도 세션을 열고, 쓰기 직전의 마지막 조회
뒤에 Barrier를 두어 두 요청이 같은 (곧 낡게 될) 상태를 읽은 채로 쓰기를
시작하게 만듭니다.
"""

import threading
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ahub.core.exceptions import (
    CheckinLimitReachedError,
    InsufficientBalanceError,
    InsufficientStockError,
    InvalidTokenError,
)
from ahub.models import Base
from ahub.models.events import EventStatus
from ahub.models.kyosk import KyoskOrderStatus
from ahub.models.qr import QrPurpose
from ahub.repositories.event_repository import CheckinRepository
from ahub.repositories.kyosk_repository import KyoskOrderRepository
from ahub.repositories.points_repository import PointsRepository
from ahub.repositories.qr_nonce_repository import QrNonceRepository
from ahub.repositories.stock_repository import StockKind, StockRepository
from ahub.repositories.store_repository import OrderRepository
from ahub.schemas.events import EventCreate
from ahub.schemas.kyosk import (
    KyoskCreate,
    KyoskOrderCreate,
    KyoskOrderLine,
    KyoskProductCreate,
    PaymentConfirmResponse,
)
from ahub.schemas.store import CheckoutItem, CheckoutResponse, StoreItemCreate
from ahub.services.checkin_service import CheckinService
from ahub.services.event_service import EventService
from ahub.services.kyosk_service import KyoskService
from ahub.services.redemption_service import RedemptionService
from ahub.services.store_service import StoreService

BARRIER_TIMEOUT = 10


@pytest.fixture
def engine(tmp_path):
    """스레드 간 공유되는 파일 DB (conftest의 메모리 DB 대체)"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
def in_own_session(session_factory, test_settings, clock):
    """서비스를 스레드 전용 세션으로 만들어 action을 실행하는 호출 생성"""

    def _call(service_class, action):
        def run():
            session = session_factory()
            try:
                return action(service_class(session, settings=test_settings, clock=clock))
            finally:
                session.close()

        return run

    return _call


def pause_after(barrier, original, nth=1):
    """스레드마다 nth번째 호출이 끝난 직후 barrier에서 대기하는 래퍼"""
    calls = threading.local()

    def wrapper(self, *args, **kwargs):
        result = original(self, *args, **kwargs)
        calls.count = getattr(calls, "count", 0) + 1
        if calls.count == nth:
            barrier.wait()
        return result

    return wrapper


def race(*calls):
    """각 호출을 별도 스레드에서 동시에 실행하고 반환값 또는 예외를 순서대로 반환"""
    outcomes = [None] * len(calls)

    def run(index, call):
        try:
            outcomes[index] = call()
        except Exception as e:
            outcomes[index] = e

    threads = [
        threading.Thread(target=run, args=(index, call))
        for index, call in enumerate(calls)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=BARRIER_TIMEOUT * 3)
        assert not thread.is_alive()
    return outcomes


def kinds(outcomes):
    return sorted(type(outcome).__name__ for outcome in outcomes)


class TestConcurrentCheckout:
    def test_two_checkouts_from_100_points_only_one_wins(
        self, db_session, in_own_session, admin, member, grant_points, test_settings, clock
    ):
        # Given: 잔액 100, 60점 상품 재고 10
        hoodie = StoreService(db_session, settings=test_settings, clock=clock).create_item(
            admin, StoreItemCreate(name="Hoodie", points_price=60, initial_stock=10)
        )
        grant_points(member, 100)
        items = [CheckoutItem(product_id=hoodie.id, quantity=1)]
        checkout = in_own_session(
            RedemptionService, lambda service: service.checkout(member, items)
        )
        barrier = threading.Barrier(2, timeout=BARRIER_TIMEOUT)

        # When: 두 요청 모두 잔액 100을 확인한 뒤 주문 생성 시작
        with patch.object(
            PointsRepository,
            "balance_of",
            pause_after(barrier, PointsRepository.balance_of),
        ):
            outcomes = race(checkout, checkout)

        # Then
        assert kinds(outcomes) == ["CheckoutResponse", "InsufficientBalanceError"]
        loser = next(o for o in outcomes if isinstance(o, InsufficientBalanceError))
        assert loser.details == {"required": 60, "available": 40}
        winner = next(o for o in outcomes if isinstance(o, CheckoutResponse))
        assert winner.balance_after == 40

        db_session.expire_all()
        assert PointsRepository(db_session).balance_of(member.id) == 40
        stock = StockRepository(db_session)
        assert stock.get_stock(StockKind.STORE, hoodie.id) == 9
        assert stock.reconcile(StockKind.STORE, hoodie.id).status == "OK"
        assert OrderRepository(db_session).list_orders(member_id=member.id)[1] == 1
        assert PointsRepository(db_session).verify_integrity_for_member(member.id).status == "OK"


class TestConcurrentCheckin:
    @pytest.fixture
    def event_service(self, db_session, test_settings, clock):
        return EventService(db_session, settings=test_settings, clock=clock)

    def test_racing_checkins_never_exceed_cap(
        self, db_session, in_own_session, event_service, admin, display, member, clock
    ):
        # Given: 100점, 회원당 최대 3회, 간격 제한 없음
        event = event_service.create_event(
            admin,
            EventCreate(
                name="Hackathon",
                start_at=clock.now - timedelta(minutes=1),
                end_at=clock.now + timedelta(hours=2),
                total_points=100,
                allow_multiple_checkins=True,
                max_checkins_per_user=3,
                qr_rotation_seconds=30,
            ),
        )
        event_service.update_status(admin, event.id, EventStatus.ACTIVE)
        create_checkin = CheckinRepository.create_checkin

        rounds, attempts = [], []
        for _ in range(4):
            # 라운드마다 새 QR
            payload = event_service.get_display(display, event.id).qr_payload
            checkin = in_own_session(
                CheckinService, lambda service, p=payload: service.checkin(member, p)
            )
            barrier = threading.Barrier(2, timeout=BARRIER_TIMEOUT)
            numbers = []

            def recording_create(self, **kwargs):
                numbers.append(kwargs["checkin_number"])
                return create_checkin(self, **kwargs)

            # When: 마지막 조회(nonce 사용 여부) 직후 두 요청을 맞춰 같은 순번으로 기록 시도
            with patch.object(
                CheckinRepository,
                "nonce_used",
                pause_after(barrier, CheckinRepository.nonce_used),
            ), patch.object(CheckinRepository, "create_checkin", recording_create):
                rounds.append(race(checkin, checkin))
            attempts.append(numbers)
            clock.advance(30)

        # Then: 순번 유니크 충돌로 라운드마다 하나만 성공
        assert attempts == [[1, 1], [2, 2], [3, 3], []]
        # 패자는 재시도에서 같은 QR 재사용(1, 2라운드) 또는 상한 도달(3라운드)로 거절
        assert kinds(rounds[0]) == ["CheckinResponse", "InvalidTokenError"]
        assert kinds(rounds[1]) == ["CheckinResponse", "InvalidTokenError"]
        assert kinds(rounds[2]) == ["CheckinLimitReachedError", "CheckinResponse"]
        assert all(isinstance(o, CheckinLimitReachedError) for o in rounds[3])
        loser = next(o for o in rounds[0] if isinstance(o, InvalidTokenError))
        assert loser.message == "QR code already used, wait for the next one"

        db_session.expire_all()
        checkins = CheckinRepository(db_session)
        assert [c.checkin_number for c in checkins.list_for(event.id, member.id)] == [1, 2, 3]
        assert checkins.points_earned(event.id, member.id) == 99
        assert PointsRepository(db_session).balance_of(member.id) == 99


class TestConcurrentQrRotation:
    def test_only_one_display_rotates_an_expired_qr(
        self, db_session, in_own_session, admin, display, clock, test_settings
    ):
        # Given: 만료된 체크인 QR
        event_service = EventService(db_session, settings=test_settings, clock=clock)
        event = event_service.create_event(
            admin,
            EventCreate(
                name="Open House",
                start_at=clock.now - timedelta(minutes=1),
                end_at=clock.now + timedelta(hours=2),
                total_points=10,
                qr_rotation_seconds=30,
            ),
        )
        event_service.update_status(admin, event.id, EventStatus.ACTIVE)
        first = event_service.get_display(display, event.id).qr_payload
        clock.advance(30)
        poll = in_own_session(EventService, lambda service: service.get_display(display, event.id))
        barrier = threading.Barrier(2, timeout=BARRIER_TIMEOUT)

        # When: 두 화면 모두 교체 직전의 version을 읽은 상태에서 갱신 시도
        # (_get_row는 get_live에서 한 번, set_live에서 한 번 호출됨)
        with patch.object(
            QrNonceRepository,
            "_get_row",
            pause_after(barrier, QrNonceRepository._get_row, nth=2),
        ):
            outcomes = race(poll, poll)

        # Then: 한 번만 교체되고, 진 쪽은 재시도에서 새 QR을 그대로 받음
        assert kinds(outcomes) == ["EventDisplayResponse", "EventDisplayResponse"]
        assert outcomes[0].qr_payload == outcomes[1].qr_payload != first

        db_session.expire_all()
        live = QrNonceRepository(db_session).get_live(QrPurpose.CHECKIN, str(event.id))
        assert live.version == 2
        assert live.payload == outcomes[0].qr_payload


class TestConcurrentKyoskPayment:
    def test_last_unit_is_sold_once(
        self,
        db_session,
        in_own_session,
        admin,
        display,
        member,
        other_member,
        grant_points,
        clock,
        test_settings,
    ):
        # Given: 재고 1개인 상품의 결제 대기 주문, 잔액 충분한 두 회원
        kyosk_service = KyoskService(db_session, settings=test_settings, clock=clock)
        kyosk = kyosk_service.create_kyosk(admin, KyoskCreate(name="Cafe", qr_rotation_seconds=60))
        latte = kyosk_service.create_product(
            admin, kyosk.id, KyoskProductCreate(name="Latte", points_price=40, initial_stock=1)
        )
        pending = kyosk_service.create_order(
            display,
            kyosk.id,
            KyoskOrderCreate(items=[KyoskOrderLine(product_id=latte.id, quantity=1)]),
        )
        grant_points(member, 100)
        grant_points(other_member, 100)

        def pay(actor):
            return in_own_session(
                RedemptionService,
                lambda service: service.confirm_payment(actor, pending.qr_payload),
            )

        barrier = threading.Barrier(2, timeout=BARRIER_TIMEOUT)

        # When: 두 회원 모두 재고 1과 충분한 잔액을 확인한 뒤 결제 시작
        with patch.object(
            PointsRepository,
            "balance_of",
            pause_after(barrier, PointsRepository.balance_of),
        ):
            outcomes = race(pay(member), pay(other_member))

        # Then: 조건부 재고 차감에서 진 쪽은 InsufficientStockError
        assert kinds(outcomes) == ["InsufficientStockError", "PaymentConfirmResponse"]
        loser = next(o for o in outcomes if isinstance(o, InsufficientStockError))
        assert loser.details["item_name"] == "Latte"
        assert loser.details["available"] == 0
        if isinstance(outcomes[0], PaymentConfirmResponse):
            winner, loser_member = member, other_member
        else:
            winner, loser_member = other_member, member

        db_session.expire_all()
        stock = StockRepository(db_session)
        assert stock.get_stock(StockKind.KYOSK, latte.id) == 0
        assert stock.reconcile(StockKind.KYOSK, latte.id).status == "OK"
        order = KyoskOrderRepository(db_session).get_order(pending.order.id)
        assert order.status == KyoskOrderStatus.COMPLETED
        assert order.paid_by_member_id == winner.id
        points = PointsRepository(db_session)
        assert points.balance_of(winner.id) == 60
        assert points.balance_of(loser_member.id) == 100
