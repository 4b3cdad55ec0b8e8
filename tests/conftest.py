import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ahub.config import Settings
from ahub.models import Base
from ahub.models.user import Member as MemberModel
from ahub.models.user import MemberRole
from ahub.schemas.user import Member
from ahub.services.point_service import PointService

BASE_TIME = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """테스트용 고정 시계 (advance로 시간 이동)"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock(BASE_TIME)


@pytest.fixture
def test_settings():
    return Settings(
        SECRET_KEY="test-secret-key",
        QR_SECRET_KEY="test-qr-secret",
        DATABASE_URL="sqlite://",
    )


@pytest.fixture
def make_member(db_session):
    """회원 생성 팩토리"""
    seq = count(1)

    def _make(role: MemberRole = MemberRole.MEMBER, name: str = None, is_active: bool = True) -> Member:
        n = next(seq)
        row = MemberModel(
            email=f"{role.value}{n}@example.com",
            name=name or f"{role.value}-{n}",
            role=role.value,
            is_active=is_active,
            matricula=f"A{n:05d}" if role == MemberRole.MEMBER else None,
        )
        db_session.add(row)
        db_session.commit()
        return Member.model_validate(row)

    return _make


@pytest.fixture
def admin(make_member):
    return make_member(MemberRole.ADMIN, name="admin")


@pytest.fixture
def member(make_member):
    return make_member(MemberRole.MEMBER, name="alice")


@pytest.fixture
def other_member(make_member):
    return make_member(MemberRole.MEMBER, name="bob")


@pytest.fixture
def display(make_member):
    return make_member(MemberRole.DISPLAY, name="lobby-display")


@pytest.fixture
def point_service(db_session, test_settings, clock):
    return PointService(db_session, settings=test_settings, clock=clock)


@pytest.fixture
def grant_points(point_service, admin):
    """관리자 조정으로 포인트 지급"""

    def _grant(target: Member, amount: int):
        return point_service.admin_adjust(admin, target.id, amount, "test grant")

    return _grant


# ---------------------------------------------------------------------------
# 라우터 테스트 (서비스는 Mock, 인증은 dependency override)
# ---------------------------------------------------------------------------


@pytest.fixture
def app():
    from ahub.main import create_app

    app = create_app()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """테스트 클라이언트 픽스처"""
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def login_as(app):
    """인증된 호출자를 지정 (토큰 검증은 건너뜀)"""
    from ahub.core.auth_middleware import get_current_user

    def _login(user: Member) -> Member:
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    return _login


@pytest.fixture
def override_service(app):
    """서비스 의존성을 Mock으로 교체"""
    from unittest.mock import Mock

    def _override(getter) -> Mock:
        service = Mock()
        app.dependency_overrides[getter] = lambda: service
        return service

    return _override


@pytest.fixture
def api_member():
    return Member(id=1, email="alice@example.com", name="alice", matricula="A00001")


@pytest.fixture
def api_admin():
    return Member(id=99, email="admin@example.com", name="admin", role=MemberRole.ADMIN)


@pytest.fixture
def api_display():
    return Member(id=50, email="display@example.com", name="lobby", role=MemberRole.DISPLAY)
