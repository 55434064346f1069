"""
事件处理器
订阅预订 / 付款领域事件，记录审计日志并在房间状态变化时做一致性检查。
邮件、收据等外部通知在这里挂接。
"""
from typing import Callable
import logging

from hotelops.database import SessionLocal
from hotelops.models.events import EventType
from hotelops.models.ontology import Booking, BookingStatus, Room
from hotelops.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)


class EventHandlers:
    """
    事件处理器集合

    支持依赖注入以便于测试：
    - db_session_factory: 数据库会话工厂
    """

    def __init__(self, db_session_factory: Callable = None):
        self._db_session_factory = db_session_factory or SessionLocal
        self._registered = False

    def _get_db(self):
        """获取数据库会话"""
        return self._db_session_factory()

    def handle_booking_created(self, event: Event) -> None:
        data = event.data
        logger.info(
            f"[audit] booking {data.get('booking_reference')} created: room {data.get('room_id')} "
            f"[{data.get('check_in_date')}, {data.get('check_out_date')}) "
            f"total={data.get('total_amount')} paid={data.get('paid_amount')}"
        )

    def handle_booking_status_changed(self, event: Event) -> None:
        data = event.data
        logger.info(
            f"[audit] booking {data.get('booking_reference')}: "
            f"{data.get('old_status')} -> {data.get('new_status')} (operator {data.get('operator_id')})"
        )

    def handle_payment_received(self, event: Event) -> None:
        data = event.data
        logger.info(
            f"[audit] payment {data.get('payment_reference')} {data.get('amount')} "
            f"({data.get('method')}/{data.get('payment_type')}) on booking "
            f"{data.get('booking_reference')}, outstanding {data.get('outstanding_amount')}"
        )

    def handle_room_status_changed(self, event: Event) -> None:
        """
        房间状态变为 Occupied 时，确认该房间只有一个在住预订

        只读检查，发现异常时记录 ERROR 日志，不修改数据
        """
        data = event.data
        room_id = data.get('room_id')
        if not room_id:
            logger.warning("Invalid room status event: missing room_id")
            return

        logger.info(
            f"[audit] room {data.get('room_number')}: {data.get('old_status')} -> "
            f"{data.get('new_status')} ({data.get('reason')})"
        )
        if data.get('new_status') != "Occupied":
            return

        db = self._get_db()
        try:
            room = db.query(Room).filter(Room.id == room_id).first()
            if not room:
                logger.warning(f"Room {room_id} from event not found")
                return
            in_house = db.query(Booking).filter(
                Booking.room_id == room_id,
                Booking.status == BookingStatus.CHECKED_IN
            ).count()
            if in_house > 1:
                logger.error(f"Room {room.room_number} has {in_house} checked-in bookings")
        finally:
            db.close()

    def register_handlers(self, event_bus_instance=None) -> None:
        """注册所有事件处理器"""
        if self._registered:
            return

        bus = event_bus_instance or event_bus

        bus.subscribe(EventType.BOOKING_CREATED, self.handle_booking_created)
        bus.subscribe(EventType.BOOKING_STATUS_CHANGED, self.handle_booking_status_changed)
        bus.subscribe(EventType.PAYMENT_RECEIVED, self.handle_payment_received)
        bus.subscribe(EventType.ROOM_STATUS_CHANGED, self.handle_room_status_changed)

        self._registered = True
        logger.info("Event handlers registered successfully")

    def unregister_handlers(self, event_bus_instance=None) -> None:
        """取消注册所有事件处理器（用于测试）"""
        bus = event_bus_instance or event_bus

        bus.unsubscribe(EventType.BOOKING_CREATED, self.handle_booking_created)
        bus.unsubscribe(EventType.BOOKING_STATUS_CHANGED, self.handle_booking_status_changed)
        bus.unsubscribe(EventType.PAYMENT_RECEIVED, self.handle_payment_received)
        bus.unsubscribe(EventType.ROOM_STATUS_CHANGED, self.handle_room_status_changed)

        self._registered = False
        logger.info("Event handlers unregistered")


# 全局事件处理器实例
event_handlers = EventHandlers()


def register_event_handlers():
    """注册所有事件处理器（应用启动时调用）"""
    event_handlers.register_handlers()
