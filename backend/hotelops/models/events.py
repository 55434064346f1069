"""
领域事件定义 (Domain Events)
事件在事务提交后发布，供通知、报表等外部协作方订阅
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any


class EventType(str, Enum):
    """事件类型枚举"""
    # 预订相关
    BOOKING_CREATED = "booking.created"
    BOOKING_STATUS_CHANGED = "booking.status_changed"

    # 消费相关
    SERVICE_ADDED = "service.added"
    SERVICE_REMOVED = "service.removed"

    # 付款相关
    PAYMENT_RECEIVED = "payment.received"

    # 房间相关
    ROOM_STATUS_CHANGED = "room.status_changed"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class BookingCreatedData(BaseEventData):
    """预订创建事件数据"""
    booking_id: int = 0
    booking_reference: str = ""
    room_id: int = 0
    guest_id: int = 0
    check_in_date: str = ""   # date as string
    check_out_date: str = ""  # date as string
    total_amount: float = 0.0
    paid_amount: float = 0.0


@dataclass
class BookingStatusChangedData(BaseEventData):
    """预订状态变更事件数据"""
    booking_id: int = 0
    booking_reference: str = ""
    guest_id: int = 0
    room_id: int = 0
    old_status: str = ""
    new_status: str = ""
    operator_id: Optional[int] = None


@dataclass
class ServiceUsageChangedData(BaseEventData):
    """消费增减事件数据"""
    booking_id: int = 0
    service_usage_id: int = 0
    service_id: int = 0
    quantity: int = 0
    total_price: float = 0.0
    services_amount: float = 0.0
    outstanding_amount: float = 0.0


@dataclass
class PaymentReceivedData(BaseEventData):
    """收款事件数据"""
    booking_id: int = 0
    booking_reference: str = ""
    payment_id: int = 0
    payment_reference: str = ""
    amount: float = 0.0
    method: str = ""
    payment_type: str = ""
    outstanding_amount: float = 0.0
    operator_id: Optional[int] = None


@dataclass
class RoomStatusChangedData(BaseEventData):
    """房间状态变更事件数据"""
    room_id: int = 0
    room_number: str = ""
    old_status: str = ""
    new_status: str = ""
    reason: str = ""
