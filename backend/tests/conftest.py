"""
Pytest 配置和共享 fixtures
"""
import os

# 应用生命周期内创建的引擎不落盘
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from hotelops.database import Base, get_db
from hotelops.models import ontology  # noqa: F401
from hotelops.models.ontology import (
    User, UserRole, RoomType, Room, RoomStatus, ServiceCatalogItem, BookingStatus
)
from hotelops.models.schemas import BookingCreate
from hotelops.security.auth import get_password_hash, create_access_token
from hotelops.services.booking_service import BookingService
from hotelops.services.event_handlers import event_handlers
from hotelops.main import app


# 服务层测试使用的固定“今天”
TODAY = date(2025, 11, 10)


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_engine, db_session, monkeypatch):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    # 事件处理器使用测试库
    monkeypatch.setattr(
        event_handlers, "_db_session_factory",
        sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    )
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def publisher():
    """记录发布事件的 mock"""
    return MagicMock()


@pytest.fixture
def clock():
    """固定日期"""
    return lambda: TODAY


# ============== 用户相关 Fixtures ==============

def _create_user(db_session, username, full_name, role):
    user = User(
        username=username,
        password_hash=get_password_hash("123456"),
        full_name=full_name,
        email=f"{username}@hotel.test",
        role=role,
        is_active=True
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    return _create_user(db_session, "admin", "管理员", UserRole.ADMIN)


@pytest.fixture
def staff_user(db_session):
    return _create_user(db_session, "front1", "前台小王", UserRole.STAFF)


@pytest.fixture
def guest_user(db_session):
    return _create_user(db_session, "guest1", "张三", UserRole.GUEST)


@pytest.fixture
def other_guest(db_session):
    return _create_user(db_session, "guest2", "李四", UserRole.GUEST)


@pytest.fixture
def staff_auth_headers(staff_user):
    """返回员工认证的请求头"""
    return {"Authorization": f"Bearer {create_access_token(staff_user.id, staff_user.role)}"}


@pytest.fixture
def admin_auth_headers(admin_user):
    """返回管理员认证的请求头"""
    return {"Authorization": f"Bearer {create_access_token(admin_user.id, admin_user.role)}"}


@pytest.fixture
def guest_auth_headers(guest_user):
    """返回客人认证的请求头"""
    return {"Authorization": f"Bearer {create_access_token(guest_user.id, guest_user.role)}"}


@pytest.fixture
def other_guest_auth_headers(other_guest):
    return {"Authorization": f"Bearer {create_access_token(other_guest.id, other_guest.role)}"}


# ============== 实体相关 Fixtures ==============

@pytest.fixture
def sample_room_type(db_session):
    """创建测试房型（每晚 100）"""
    room_type = RoomType(
        name="标准间",
        description="Standard Room",
        base_price=Decimal("100.00"),
        capacity=2
    )
    db_session.add(room_type)
    db_session.commit()
    db_session.refresh(room_type)
    return room_type


@pytest.fixture
def sample_room(db_session, sample_room_type):
    """创建测试房间"""
    room = Room(
        room_number="101",
        floor=1,
        room_type_id=sample_room_type.id,
        status=RoomStatus.AVAILABLE
    )
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def sample_room_102(db_session, sample_room_type):
    """创建102房间"""
    room = Room(
        room_number="102",
        floor=1,
        room_type_id=sample_room_type.id,
        status=RoomStatus.AVAILABLE
    )
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def breakfast(db_session):
    """早餐，单价 25"""
    item = ServiceCatalogItem(
        name="早餐", category="餐饮", current_price=Decimal("25.00"), is_available=True
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def laundry(db_session):
    """洗衣，单价 40"""
    item = ServiceCatalogItem(
        name="洗衣", category="洗衣", current_price=Decimal("40.00"), is_available=True
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def spa_unavailable(db_session):
    item = ServiceCatalogItem(
        name="SPA", category="SPA", current_price=Decimal("300.00"), is_available=False
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def booking_service(db_session, publisher, clock):
    return BookingService(db_session, event_publisher=publisher, today=clock)


@pytest.fixture
def make_booking(booking_service, sample_room, guest_user):
    """
    预订工厂

    Usage:
        booking = make_booking(nights=3)
        booking = make_booking(check_in=date(...), check_out=date(...), status=BookingStatus.CONFIRMED)
    """
    def _make(check_in=None, check_out=None, nights=3, room=None, status=None, **kwargs):
        check_in = check_in or TODAY
        check_out = check_out or check_in + timedelta(days=nights)
        booking = booking_service.create_booking(BookingCreate(
            room_id=(room or sample_room).id,
            guest_id=kwargs.pop("guest_id", guest_user.id),
            check_in_date=check_in,
            check_out_date=check_out,
            **kwargs
        ))
        if status == BookingStatus.CONFIRMED:
            booking = booking_service.transition_status(booking.id, BookingStatus.CONFIRMED)
        elif status is not None and status != BookingStatus.PENDING:
            raise ValueError(f"unsupported fixture status {status}")
        return booking
    return _make


# ============== 多会话（并发）Fixtures ==============

@pytest.fixture
def file_session_factory(tmp_path):
    """
    基于临时文件的 SQLite，用于模拟两个独立连接上的并发操作
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'hotelops_concurrency.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def seeded_file_db(file_session_factory):
    """文件库中预置房型、房间和客人，返回 (会话工厂, room_id, guest_id)"""
    session = file_session_factory()
    try:
        room_type = RoomType(name="标准间", base_price=Decimal("100.00"), capacity=2)
        session.add(room_type)
        session.flush()
        room = Room(room_number="101", floor=1, room_type_id=room_type.id)
        guest = User(username="guest1", full_name="张三", role=UserRole.GUEST)
        session.add_all([room, guest])
        session.commit()
        return file_session_factory, room.id, guest.id
    finally:
        session.close()


# ============== API Fixtures ==============

@pytest.fixture
def api_booking(client, staff_auth_headers, guest_user, sample_room):
    """
    通过 API 创建预订（入住日默认今天），返回响应 JSON

    Usage:
        booking = api_booking(nights=2)
        booking = api_booking(offset=5, nights=1, status="Confirmed")
    """
    def _create(nights=3, offset=0, room_id=None, status=None, **payload):
        check_in = date.today() + timedelta(days=offset)
        body = {
            "room_id": room_id or sample_room.id,
            "guest_id": guest_user.id,
            "check_in_date": check_in.isoformat(),
            "check_out_date": (check_in + timedelta(days=nights)).isoformat(),
        }
        body.update(payload)
        response = client.post("/bookings", json=body, headers=staff_auth_headers)
        assert response.status_code == 200, response.text
        data = response.json()
        if status is not None:
            response = client.post(
                f"/bookings/{data['id']}/status", json={"status": status}, headers=staff_auth_headers
            )
            assert response.status_code == 200, response.text
            data = response.json()
        return data
    return _create
