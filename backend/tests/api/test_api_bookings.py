"""
预订管理 API 单元测试
覆盖 /bookings 端点
"""
from datetime import date, timedelta
from decimal import Decimal
from fastapi.testclient import TestClient

from hotelops.security.auth import create_access_token
from hotelops.models.ontology import UserRole


def _dates(offset, nights):
    check_in = date.today() + timedelta(days=offset)
    return check_in.isoformat(), (check_in + timedelta(days=nights)).isoformat()


class TestCreateBooking:
    """创建预订测试"""

    def test_staff_creates_booking(self, client: TestClient, staff_auth_headers, guest_user, sample_room):
        """测试员工为客人创建预订"""
        check_in, check_out = _dates(0, 3)
        response = client.post("/bookings", json={
            "room_id": sample_room.id,
            "guest_id": guest_user.id,
            "check_in_date": check_in,
            "check_out_date": check_out,
            "guest_count": 2,
        }, headers=staff_auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "Pending"
        assert data["booking_reference"].startswith("BK-")
        assert data["nights"] == 3
        assert Decimal(data["base_amount"]) == Decimal("300")
        assert Decimal(data["outstanding_amount"]) == Decimal("300")
        assert data["guest_name"] == "张三"
        assert data["room_number"] == "101"

    def test_guest_books_for_self(self, client: TestClient, guest_auth_headers, guest_user, sample_room):
        """测试客人自助下单（guest_id 由令牌填充）"""
        check_in, check_out = _dates(1, 2)
        response = client.post("/bookings", json={
            "room_id": sample_room.id,
            "check_in_date": check_in,
            "check_out_date": check_out,
        }, headers=guest_auth_headers)

        assert response.status_code == 200
        assert response.json()["guest_id"] == guest_user.id

    def test_guest_cannot_book_for_others(self, client: TestClient, guest_auth_headers, other_guest, sample_room):
        check_in, check_out = _dates(1, 2)
        response = client.post("/bookings", json={
            "room_id": sample_room.id,
            "guest_id": other_guest.id,
            "check_in_date": check_in,
            "check_out_date": check_out,
        }, headers=guest_auth_headers)

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "permission_denied"

    def test_staff_must_name_guest(self, client: TestClient, staff_auth_headers, sample_room):
        check_in, check_out = _dates(0, 1)
        response = client.post("/bookings", json={
            "room_id": sample_room.id,
            "check_in_date": check_in,
            "check_out_date": check_out,
        }, headers=staff_auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "validation_error"

    def test_past_check_in_rejected(self, client: TestClient, staff_auth_headers, guest_user, sample_room):
        check_in, check_out = _dates(-1, 2)
        response = client.post("/bookings", json={
            "room_id": sample_room.id,
            "guest_id": guest_user.id,
            "check_in_date": check_in,
            "check_out_date": check_out,
        }, headers=staff_auth_headers)

        assert response.status_code == 400

    def test_overlap_conflict(self, client: TestClient, staff_auth_headers, guest_user, sample_room, api_booking):
        """测试同一房间重叠日期下单"""
        api_booking(offset=0, nights=4)
        check_in, check_out = _dates(3, 2)
        response = client.post("/bookings", json={
            "room_id": sample_room.id,
            "guest_id": guest_user.id,
            "check_in_date": check_in,
            "check_out_date": check_out,
        }, headers=staff_auth_headers)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "room_no_longer_available"
        assert detail["reason"] == "booked"

    def test_initial_payment_requires_method(self, client: TestClient, staff_auth_headers, guest_user, sample_room):
        check_in, check_out = _dates(0, 1)
        response = client.post("/bookings", json={
            "room_id": sample_room.id,
            "guest_id": guest_user.id,
            "check_in_date": check_in,
            "check_out_date": check_out,
            "initial_payment_amount": "50.00",
        }, headers=staff_auth_headers)

        assert response.status_code == 422

    def test_initial_payment_recorded(self, api_booking):
        data = api_booking(nights=2, initial_payment_amount="50.00", payment_method="cash")
        assert Decimal(data["paid_amount"]) == Decimal("50")
        assert Decimal(data["outstanding_amount"]) == Decimal("150")

    def test_unauthenticated(self, client: TestClient, sample_room):
        response = client.post("/bookings", json={})
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client: TestClient):
        response = client.get("/bookings", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401


class TestReadBookings:
    """查询预订测试"""

    def test_guest_sees_only_own_bookings(self, client: TestClient, api_booking, sample_room_102,
                                          other_guest, guest_auth_headers, staff_auth_headers):
        mine = api_booking(nights=1)
        api_booking(nights=1, room_id=sample_room_102.id, guest_id=other_guest.id)

        response = client.get("/bookings", headers=guest_auth_headers)
        assert response.status_code == 200
        assert [b["id"] for b in response.json()] == [mine["id"]]

        response = client.get("/bookings", headers=staff_auth_headers)
        assert len(response.json()) == 2

    def test_filter_by_status(self, client: TestClient, api_booking, sample_room_102, staff_auth_headers):
        confirmed = api_booking(nights=1, status="Confirmed")
        api_booking(nights=1, room_id=sample_room_102.id)

        response = client.get("/bookings", params={"status": "Confirmed"}, headers=staff_auth_headers)
        assert [b["id"] for b in response.json()] == [confirmed["id"]]

    def test_get_booking(self, client: TestClient, api_booking, guest_auth_headers):
        booking = api_booking(nights=2)
        response = client.get(f"/bookings/{booking['id']}", headers=guest_auth_headers)
        assert response.status_code == 200
        assert response.json()["booking_reference"] == booking["booking_reference"]

    def test_other_guest_forbidden(self, client: TestClient, api_booking, other_guest_auth_headers):
        booking = api_booking(nights=2)
        response = client.get(f"/bookings/{booking['id']}", headers=other_guest_auth_headers)
        assert response.status_code == 403

    def test_booking_not_found(self, client: TestClient, staff_auth_headers):
        response = client.get("/bookings/99999", headers=staff_auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "booking_not_found"

    def test_get_ledger(self, client: TestClient, api_booking, staff_auth_headers):
        booking = api_booking(nights=3)
        response = client.get(f"/bookings/{booking['id']}/ledger", headers=staff_auth_headers)

        assert response.status_code == 200
        ledger = response.json()
        assert Decimal(ledger["base_amount"]) == Decimal("300")
        assert Decimal(ledger["services_amount"]) == Decimal("0")
        assert Decimal(ledger["outstanding"]) == Decimal("300")


class TestStatusTransitions:
    """状态变更测试"""

    def test_check_in_requires_payment(self, client: TestClient, api_booking, staff_auth_headers):
        booking = api_booking(nights=2, status="Confirmed")
        client.post(f"/bookings/{booking['id']}/payments",
                    json={"amount": "120.00", "method": "cash"}, headers=staff_auth_headers)

        response = client.post(f"/bookings/{booking['id']}/status",
                               json={"status": "CheckedIn"}, headers=staff_auth_headers)

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["code"] == "payment_required"
        assert detail["outstanding"] == 80.0

    def test_full_lifecycle(self, client: TestClient, api_booking, staff_auth_headers, db_session, sample_room):
        """付清 -> 自动确认 -> 入住 -> 退房"""
        booking = api_booking(nights=1)
        response = client.post(f"/bookings/{booking['id']}/payments",
                               json={"amount": "100.00", "method": "credit_card"}, headers=staff_auth_headers)
        assert response.json()["booking_status"] == "Confirmed"

        response = client.post(f"/bookings/{booking['id']}/status",
                               json={"status": "CheckedIn"}, headers=staff_auth_headers)
        assert response.status_code == 200
        assert response.json()["checked_in_at"] is not None

        response = client.post(f"/bookings/{booking['id']}/status",
                               json={"status": "CheckedOut"}, headers=staff_auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "CheckedOut"

        db_session.refresh(sample_room)
        assert sample_room.status.value == "Cleaning"

    def test_guest_can_cancel_own_booking(self, client: TestClient, api_booking, guest_auth_headers):
        booking = api_booking(nights=2)
        response = client.post(f"/bookings/{booking['id']}/status",
                               json={"status": "Cancelled"}, headers=guest_auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "Cancelled"

    def test_guest_cannot_confirm(self, client: TestClient, api_booking, guest_auth_headers):
        booking = api_booking(nights=2)
        response = client.post(f"/bookings/{booking['id']}/status",
                               json={"status": "Confirmed"}, headers=guest_auth_headers)
        assert response.status_code == 403

    def test_guest_cannot_mark_no_show(self, client: TestClient, api_booking, guest_auth_headers):
        booking = api_booking(nights=2)
        response = client.post(f"/bookings/{booking['id']}/status",
                               json={"status": "NoShow"}, headers=guest_auth_headers)
        assert response.status_code == 403

    def test_terminal_booking_is_frozen(self, client: TestClient, api_booking, admin_auth_headers):
        booking = api_booking(nights=2)
        client.post(f"/bookings/{booking['id']}/status",
                    json={"status": "Cancelled"}, headers=admin_auth_headers)

        for target in ["Pending", "Confirmed", "CheckedIn", "CheckedOut", "NoShow", "Cancelled"]:
            response = client.post(f"/bookings/{booking['id']}/status",
                                   json={"status": target}, headers=admin_auth_headers)
            assert response.status_code == 409
            assert response.json()["detail"]["code"] == "invalid_transition"

    def test_unknown_status_rejected(self, client: TestClient, api_booking, staff_auth_headers):
        booking = api_booking(nights=1)
        response = client.post(f"/bookings/{booking['id']}/status",
                               json={"status": "Teleported"}, headers=staff_auth_headers)
        assert response.status_code == 422

    def test_inactive_user_rejected(self, client: TestClient, db_session, staff_user):
        staff_user.is_active = False
        db_session.commit()
        token = create_access_token(staff_user.id, UserRole.STAFF)
        response = client.get("/bookings", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
