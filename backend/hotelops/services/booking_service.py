"""
预订服务 - 本体操作层
管理 Booking 聚合根的创建与状态流转

状态流转规则：
- Pending   -> Confirmed                     无额外条件
- Confirmed -> CheckedIn                     余额为 0 且已到入住日
- CheckedIn -> CheckedOut                    余额为 0
- Pending/Confirmed -> Cancelled             未入住
- Pending/Confirmed -> NoShow                仅员工，入住日已过且未入住
CheckedOut / Cancelled / NoShow 为终态。
transition_status / apply_transition 是唯一修改 Booking.status 的地方。
"""
from typing import List, Optional, Callable, Dict, Any
from datetime import datetime, date
import logging
import uuid

from sqlalchemy import update
from sqlalchemy.orm import Session

from hotelops.engine.state_machine import StateMachine, StateMachineConfig, StateTransition
from hotelops.errors import (
    ValidationError, NotFound, InvalidTransition, PermissionDenied, RoomNoLongerAvailable
)
from hotelops.models.events import (
    EventType, BookingCreatedData, BookingStatusChangedData, RoomStatusChangedData
)
from hotelops.models.ontology import (
    Booking, BookingStatus, PaymentType, Room, RoomStatus, User, UserRole,
    TERMINAL_STATUSES, ZERO
)
from hotelops.models.schemas import BookingCreate
from hotelops.security.permissions import is_staff
from hotelops.services.availability_service import AvailabilityService, validate_date_range
from hotelops.services.event_bus import event_bus, Event
from hotelops.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


# ============== 守卫 ==============

def _guard_settled(context: Dict[str, Any]) -> None:
    context["ledger"].require_settled(context["booking"])


def _guard_check_in_date_reached(context: Dict[str, Any]) -> None:
    booking = context["booking"]
    if context["today"] < booking.check_in_date:
        raise InvalidTransition(
            f"未到入住日期 {booking.check_in_date.isoformat()}，无法办理入住",
            current_status=booking.status.value, target_status=BookingStatus.CHECKED_IN.value
        )


def _guard_not_checked_in(context: Dict[str, Any]) -> None:
    booking = context["booking"]
    if booking.checked_in_at is not None:
        raise InvalidTransition(
            "预订已办理入住",
            current_status=booking.status.value, target_status=context["target"].value
        )


def _guard_staff_only(context: Dict[str, Any]) -> None:
    role = context.get("actor_role")
    # actor_role 为 None 表示服务内部调用
    if role is not None and not is_staff(role):
        raise PermissionDenied("只有员工可以标记未到店")


def _guard_check_in_date_passed(context: Dict[str, Any]) -> None:
    booking = context["booking"]
    if context["today"] <= booking.check_in_date:
        raise InvalidTransition(
            f"入住日期 {booking.check_in_date.isoformat()} 尚未过去，不能标记为未到店",
            current_status=booking.status.value, target_status=BookingStatus.NO_SHOW.value
        )


# ============== 副作用 ==============

def _set_room_status(context: Dict[str, Any], new_status: RoomStatus, reason: str) -> None:
    room = context["booking"].room
    old_status = room.status
    if old_status == new_status:
        return
    room.status = new_status
    context.setdefault("room_changes", []).append((room, old_status, new_status, reason))


def _stamp_checked_in(context: Dict[str, Any]) -> None:
    context["booking"].checked_in_at = context["now"]
    _set_room_status(context, RoomStatus.OCCUPIED, "入住")


def _stamp_checked_out(context: Dict[str, Any]) -> None:
    context["booking"].checked_out_at = context["now"]
    _set_room_status(context, RoomStatus.CLEANING, "退房")


# ============== 状态机配置 ==============

BOOKING_TRANSITIONS = [
    StateTransition(
        from_state=BookingStatus.PENDING,
        to_state=BookingStatus.CONFIRMED,
        trigger="confirm",
    ),
    StateTransition(
        from_state=BookingStatus.CONFIRMED,
        to_state=BookingStatus.CHECKED_IN,
        trigger="check_in",
        guards=[_guard_check_in_date_reached, _guard_settled],
        side_effects=[_stamp_checked_in],
    ),
    StateTransition(
        from_state=BookingStatus.CHECKED_IN,
        to_state=BookingStatus.CHECKED_OUT,
        trigger="check_out",
        guards=[_guard_settled],
        side_effects=[_stamp_checked_out],
    ),
    StateTransition(
        from_state=BookingStatus.PENDING,
        to_state=BookingStatus.CANCELLED,
        trigger="cancel",
        guards=[_guard_not_checked_in],
    ),
    StateTransition(
        from_state=BookingStatus.CONFIRMED,
        to_state=BookingStatus.CANCELLED,
        trigger="cancel",
        guards=[_guard_not_checked_in],
    ),
    StateTransition(
        from_state=BookingStatus.PENDING,
        to_state=BookingStatus.NO_SHOW,
        trigger="mark_no_show",
        guards=[_guard_staff_only, _guard_not_checked_in, _guard_check_in_date_passed],
    ),
    StateTransition(
        from_state=BookingStatus.CONFIRMED,
        to_state=BookingStatus.NO_SHOW,
        trigger="mark_no_show",
        guards=[_guard_staff_only, _guard_not_checked_in, _guard_check_in_date_passed],
    ),
]


def create_booking_state_machine(current_status: BookingStatus) -> StateMachine:
    """创建预订状态机"""
    return StateMachine(
        config=StateMachineConfig(
            name="Booking",
            states=list(BookingStatus),
            transitions=BOOKING_TRANSITIONS,
            initial_state=BookingStatus.PENDING,
            final_states=list(TERMINAL_STATUSES),
        ),
        current_state=current_status,
    )


class BookingService:
    """预订服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 today: Callable[[], date] = None, now: Callable[[], datetime] = None):
        self.db = db
        self.ledger = LedgerService(db)
        self.availability = AvailabilityService(db)
        # 支持依赖注入事件发布器和时钟，便于测试
        self._publish_event = event_publisher or event_bus.publish
        self._today = today or date.today
        self._now = now or datetime.now

    def _generate_booking_reference(self) -> str:
        """生成预订号：BK-日期-随机串"""
        return f"BK-{self._today().strftime('%Y%m%d')}-{uuid.uuid4().hex[:6].upper()}"

    # ============== 查询 ==============

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        """获取单个预订"""
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def get_booking_by_reference(self, booking_reference: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(
            Booking.booking_reference == booking_reference
        ).first()

    def list_bookings(self, status: Optional[BookingStatus] = None,
                      guest_id: Optional[int] = None,
                      room_id: Optional[int] = None) -> List[Booking]:
        """获取预订列表"""
        query = self.db.query(Booking)

        if status:
            query = query.filter(Booking.status == status)
        if guest_id:
            query = query.filter(Booking.guest_id == guest_id)
        if room_id:
            query = query.filter(Booking.room_id == room_id)

        return query.order_by(Booking.check_in_date.desc()).all()

    def get_booking_detail(self, booking_id: int) -> Optional[dict]:
        """获取预订详情（包含关联信息）"""
        booking = self.get_booking(booking_id)
        if not booking:
            return None

        return {
            'id': booking.id,
            'booking_reference': booking.booking_reference,
            'room_id': booking.room_id,
            'room_number': booking.room.room_number,
            'room_type': booking.room.room_type.name,
            'guest_id': booking.guest_id,
            'guest_name': booking.guest.full_name,
            'check_in_date': booking.check_in_date,
            'check_out_date': booking.check_out_date,
            'nights': booking.nights,
            'guest_count': booking.guest_count,
            'status': booking.status,
            'base_amount': booking.base_amount,
            'services_amount': booking.services_amount,
            'total_amount': booking.total_amount,
            'paid_amount': booking.paid_amount,
            'outstanding_amount': booking.outstanding_amount,
            'special_requests': booking.special_requests,
            'created_at': booking.created_at,
            'checked_in_at': booking.checked_in_at,
            'checked_out_at': booking.checked_out_at,
        }

    # ============== 创建 ==============

    def _claim_room(self, room_id: int) -> Room:
        """
        先写房间行再检查冲突：PostgreSQL 下获得行锁，SQLite 下获得写锁，
        同一房间的并发创建因此串行执行
        """
        result = self.db.execute(
            update(Room)
            .where(Room.id == room_id)
            .values(booking_seq=Room.booking_seq + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound("房间不存在", room_id=room_id)
        return self.db.query(Room).filter(Room.id == room_id).populate_existing().one()

    def create_booking(self, data: BookingCreate, operator_id: Optional[int] = None) -> Booking:
        """
        创建预订

        业务规则：
        - 入住日期不能早于今天，离店日期必须晚于入住日期
        - 入住人数不超过房型容量
        - 在插入事务内重新检查可用性，失败抛出 RoomNoLongerAvailable
        - 房费 = 每晚价格 × 晚数
        - 可选预付款与预订在同一事务内记录
        """
        validate_date_range(data.check_in_date, data.check_out_date)
        if data.check_in_date < self._today():
            raise ValidationError("入住日期不能早于今天", check_in_date=data.check_in_date.isoformat())
        if data.guest_count < 1:
            raise ValidationError("入住人数至少为 1")
        if data.guest_id is None:
            raise ValidationError("缺少客人信息")

        guest = self.db.query(User).filter(User.id == data.guest_id).first()
        if not guest:
            raise NotFound("客人不存在", guest_id=data.guest_id)

        try:
            room = self._claim_room(data.room_id)

            capacity = room.room_type.capacity
            if capacity and data.guest_count > capacity:
                raise ValidationError(f"该房间最多入住 {capacity} 人", capacity=capacity)

            verdict = self.availability.evaluate(room, data.check_in_date, data.check_out_date)
            if not verdict.available:
                logger.warning(
                    f"Booking rejected: room {room.id} not available "
                    f"[{data.check_in_date}, {data.check_out_date}) reason={verdict.reason}"
                )
                raise RoomNoLongerAvailable(room.id, verdict.reason)

            base_amount = self.availability.quote(room, data.check_in_date, data.check_out_date)
            booking = Booking(
                booking_reference=self._generate_booking_reference(),
                room_id=room.id,
                guest_id=guest.id,
                check_in_date=data.check_in_date,
                check_out_date=data.check_out_date,
                guest_count=data.guest_count,
                status=BookingStatus.PENDING,
                base_amount=base_amount,
                services_amount=ZERO,
                total_amount=base_amount,
                paid_amount=ZERO,
                special_requests=data.special_requests,
            )
            self.db.add(booking)
            self.db.flush()
            self.ledger.recompute(booking)

            payment = None
            confirmation = None
            if data.initial_payment_amount is not None:
                from hotelops.services.payment_service import PaymentService
                payment_service = PaymentService(
                    self.db, event_publisher=self._publish_event, today=self._today, now=self._now
                )
                payment = payment_service.append_payment(
                    booking,
                    amount=data.initial_payment_amount,
                    method=data.payment_method,
                    partial_type=PaymentType.RESERVATION_FEE,
                    operator_id=operator_id,
                )
                if payment_service.auto_confirm and booking.outstanding_amount == 0:
                    confirmation = self.apply_transition(booking, BookingStatus.CONFIRMED)

            self.ledger.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(
            f"Booking {booking.booking_reference} created for room {booking.room_id} "
            f"[{booking.check_in_date}, {booking.check_out_date}) base={booking.base_amount}"
        )

        self._publish_event(Event(
            event_type=EventType.BOOKING_CREATED,
            timestamp=self._now(),
            data=BookingCreatedData(
                booking_id=booking.id,
                booking_reference=booking.booking_reference,
                room_id=booking.room_id,
                guest_id=booking.guest_id,
                check_in_date=booking.check_in_date.isoformat(),
                check_out_date=booking.check_out_date.isoformat(),
                total_amount=float(booking.total_amount),
                paid_amount=float(booking.paid_amount),
            ).to_dict(),
            source="booking_service"
        ))
        if payment is not None:
            payment_service.publish_payment_received(booking, payment, operator_id)
        if confirmation is not None:
            self.publish_transition(booking, confirmation, operator_id)
        return booking

    # ============== 状态流转 ==============

    def apply_transition(self, booking: Booking, target: BookingStatus,
                         actor_role: Optional[UserRole] = None) -> Dict[str, Any]:
        """
        在当前事务内执行状态变更（不提交）

        Returns:
            上下文字典，包含 old_status / room_changes，供提交后发布事件
        """
        machine = create_booking_state_machine(booking.status)
        context: Dict[str, Any] = {
            "booking": booking,
            "target": target,
            "ledger": self.ledger,
            "today": self._today(),
            "now": self._now(),
            "actor_role": actor_role,
            "old_status": booking.status,
        }
        machine.transition_to(target, context)
        booking.status = machine.current_state
        return context

    def transition_status(self, booking_id: int, target: BookingStatus,
                          actor: Optional[User] = None) -> Booking:
        """
        变更预订状态

        Raises:
            BookingNotFound: 预订不存在
            InvalidTransition: 终态 / 转换表不允许 / 日期条件不满足
            PaymentRequired: 入住或退房时仍有未结余额
            PermissionDenied: 非员工标记未到店
        """
        try:
            target = BookingStatus(target)
        except ValueError:
            raise InvalidTransition(f"未知状态 {target}", target_status=str(target))
        try:
            booking = self.ledger.lock_booking(booking_id)
            context = self.apply_transition(
                booking, target, actor_role=actor.role if actor else None
            )
            self.ledger.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        self.publish_transition(booking, context, actor.id if actor else None)
        return booking

    def publish_transition(self, booking: Booking, context: Dict[str, Any],
                           operator_id: Optional[int] = None) -> None:
        """提交后发布状态变更事件"""
        old_status = context["old_status"]
        logger.info(
            f"Booking {booking.booking_reference}: {old_status.value} -> {booking.status.value}"
        )
        self._publish_event(Event(
            event_type=EventType.BOOKING_STATUS_CHANGED,
            timestamp=self._now(),
            data=BookingStatusChangedData(
                booking_id=booking.id,
                booking_reference=booking.booking_reference,
                guest_id=booking.guest_id,
                room_id=booking.room_id,
                old_status=old_status.value,
                new_status=booking.status.value,
                operator_id=operator_id,
            ).to_dict(),
            source="booking_service"
        ))

        for room, old_room_status, new_room_status, reason in context.get("room_changes", []):
            self._publish_event(Event(
                event_type=EventType.ROOM_STATUS_CHANGED,
                timestamp=self._now(),
                data=RoomStatusChangedData(
                    room_id=room.id,
                    room_number=room.room_number,
                    old_status=old_room_status.value,
                    new_status=new_room_status.value,
                    reason=reason,
                ).to_dict(),
                source="booking_service"
            ))
