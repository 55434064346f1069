"""
可用性服务 - 本体操作层
判断房间在某个日期区间内是否可以预订

区间一律按半开区间 [入住日, 离店日) 处理：离店当天即可被下一位客人入住。
overlap_filter / ranges_overlap 是全系统唯一的重叠判定，预订创建、
可用性查询、报表都必须复用它。
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session

from hotelops.errors import ValidationError, NotFound
from hotelops.models.ontology import (
    Booking, Room, RoomStatus, OCCUPYING_STATUSES
)

logger = logging.getLogger(__name__)

REASON_BOOKED = "booked"
REASON_MAINTENANCE = "maintenance"

# 静态状态为这些值的房间一律不可订
BLOCKED_ROOM_STATUSES = (RoomStatus.MAINTENANCE, RoomStatus.OUT_OF_ORDER)


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """半开区间 [a_start, a_end) 与 [b_start, b_end) 是否重叠"""
    return a_start < b_end and b_start < a_end


def overlap_filter(check_in: date, check_out: date):
    """与 ranges_overlap 等价的 SQL 条件"""
    return and_(Booking.check_in_date < check_out, check_in < Booking.check_out_date)


def validate_date_range(check_in: date, check_out: date) -> None:
    if check_in is None or check_out is None:
        raise ValidationError("入住日期和离店日期不能为空")
    if check_out <= check_in:
        raise ValidationError(
            "离店日期必须晚于入住日期",
            check_in_date=check_in.isoformat(), check_out_date=check_out.isoformat()
        )


@dataclass
class AvailabilityResult:
    """可用性结果"""
    available: bool
    reason: Optional[str] = None
    conflicts: List[Booking] = field(default_factory=list)


@dataclass
class RoomAvailability:
    """单个房间的可用性及报价"""
    room: Room
    available: bool
    reason: Optional[str]
    nights: int
    price_per_night: Decimal
    base_amount: Decimal


class AvailabilityService:
    """可用性服务（只读）"""

    def __init__(self, db: Session):
        self.db = db

    def get_room(self, room_id: int) -> Optional[Room]:
        return self.db.query(Room).filter(Room.id == room_id).first()

    def find_conflicts(self, room_id: int, check_in: date, check_out: date,
                       exclude_booking_id: Optional[int] = None) -> List[Booking]:
        """查询与区间重叠的占用中预订"""
        query = self.db.query(Booking).filter(
            Booking.room_id == room_id,
            Booking.status.in_(OCCUPYING_STATUSES),
            overlap_filter(check_in, check_out),
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.order_by(Booking.check_in_date.asc()).all()

    def evaluate(self, room: Room, check_in: date, check_out: date) -> AvailabilityResult:
        """对已加载的房间做可用性判定（维护状态优先于预订冲突）"""
        if room.status in BLOCKED_ROOM_STATUSES:
            return AvailabilityResult(available=False, reason=REASON_MAINTENANCE)

        conflicts = self.find_conflicts(room.id, check_in, check_out)
        if conflicts:
            return AvailabilityResult(available=False, reason=REASON_BOOKED, conflicts=conflicts)
        return AvailabilityResult(available=True)

    def is_available(self, room_id: int, check_in: date, check_out: date) -> AvailabilityResult:
        """
        检查房间可用性

        Raises:
            ValidationError: 日期区间非法（含入住日 == 离店日）
            NotFound: 房间不存在
        """
        validate_date_range(check_in, check_out)

        room = self.get_room(room_id)
        if not room:
            raise NotFound("房间不存在", room_id=room_id)

        return self.evaluate(room, check_in, check_out)

    def get_committed_windows(self, room_id: int, start: Optional[date] = None,
                              end: Optional[date] = None) -> List[tuple]:
        """
        房间已被占用的日期区间列表 [(check_in, check_out, booking_reference), ...]
        可选地只返回与 [start, end) 重叠的区间
        """
        query = self.db.query(Booking).filter(
            Booking.room_id == room_id,
            Booking.status.in_(OCCUPYING_STATUSES),
        )
        if start is not None and end is not None:
            validate_date_range(start, end)
            query = query.filter(overlap_filter(start, end))
        bookings = query.order_by(Booking.check_in_date.asc()).all()
        return [(b.check_in_date, b.check_out_date, b.booking_reference) for b in bookings]

    def quote(self, room: Room, check_in: date, check_out: date) -> Decimal:
        """房费报价 = 每晚价格 × 晚数"""
        nights = (check_out - check_in).days
        return (Decimal(room.room_type.base_price) * nights).quantize(Decimal("0.01"))

    def list_availability(self, check_in: date, check_out: date,
                          room_type_id: Optional[int] = None) -> List[RoomAvailability]:
        """列出所有房间（停用房间除外）在区间内的可用性"""
        validate_date_range(check_in, check_out)

        query = self.db.query(Room).filter(Room.status != RoomStatus.OUT_OF_ORDER)
        if room_type_id:
            query = query.filter(Room.room_type_id == room_type_id)
        rooms = query.order_by(Room.room_number).all()

        nights = (check_out - check_in).days
        result = []
        for room in rooms:
            verdict = self.evaluate(room, check_in, check_out)
            result.append(RoomAvailability(
                room=room,
                available=verdict.available,
                reason=verdict.reason,
                nights=nights,
                price_per_night=room.room_type.base_price,
                base_amount=self.quote(room, check_in, check_out),
            ))
        return result
