"""
消费服务 - 本体操作层
管理 ServiceUsageEntry 对象：在未结束的预订上追加 / 撤销计价消费
"""
from typing import List, Optional, Callable
from datetime import datetime, date
import logging

from sqlalchemy.orm import Session

from hotelops.errors import ValidationError, NotFound, BookingClosed, RefundRequired
from hotelops.models.events import EventType, ServiceUsageChangedData
from hotelops.models.ontology import (
    Booking, ServiceCatalogItem, ServiceUsageEntry, OPEN_STATUSES
)
from hotelops.services.event_bus import event_bus, Event
from hotelops.services.ledger_service import LedgerService, to_money

logger = logging.getLogger(__name__)

class ServiceUsageService:
    """消费服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 today: Callable[[], date] = None, now: Callable[[], datetime] = None):
        self.db = db
        self.ledger = LedgerService(db)
        self._publish_event = event_publisher or event_bus.publish
        self._today = today or date.today
        self._now = now or datetime.now

    # ============== 查询 ==============

    def list_catalog(self, include_unavailable: bool = False) -> List[ServiceCatalogItem]:
        """获取服务目录"""
        query = self.db.query(ServiceCatalogItem)
        if not include_unavailable:
            query = query.filter(ServiceCatalogItem.is_available == True)  # noqa: E712
        return query.order_by(ServiceCatalogItem.category, ServiceCatalogItem.name).all()

    def get_entry(self, service_usage_id: int) -> Optional[ServiceUsageEntry]:
        return self.db.query(ServiceUsageEntry).filter(
            ServiceUsageEntry.id == service_usage_id
        ).first()

    def list_services(self, booking_id: int) -> List[ServiceUsageEntry]:
        """获取预订的消费记录"""
        self.ledger.get_booking(booking_id)
        return self.db.query(ServiceUsageEntry).filter(
            ServiceUsageEntry.booking_id == booking_id
        ).order_by(ServiceUsageEntry.created_at.asc(), ServiceUsageEntry.id.asc()).all()

    # ============== 变更 ==============

    def add_service(self, booking_id: int, service_id: int, quantity: int,
                    notes: Optional[str] = None) -> ServiceUsageEntry:
        """
        添加消费

        业务规则：
        - 预订处于 Pending / Confirmed / CheckedIn
        - 数量至少为 1
        - 单价取添加时的目录价格
        - 写入消费与重算账本在同一事务
        """
        if quantity is None or quantity < 1:
            raise ValidationError("数量至少为 1", quantity=quantity)

        service = self.db.query(ServiceCatalogItem).filter(
            ServiceCatalogItem.id == service_id
        ).first()
        if not service:
            raise NotFound("服务项目不存在", service_id=service_id)
        if not service.is_available:
            raise ValidationError("该服务暂不可用", service_id=service_id)

        try:
            booking = self.ledger.lock_booking(booking_id)
            if booking.status not in OPEN_STATUSES:
                raise BookingClosed(
                    f"预订状态为 {booking.status.value}，不能添加消费",
                    current_status=booking.status.value
                )

            unit_price = to_money(service.current_price)
            total_price = to_money(unit_price * quantity)
            expected_services = to_money(booking.services_amount) + total_price

            entry = ServiceUsageEntry(
                booking_id=booking.id,
                service_id=service.id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
                notes=notes,
                service_date=self._today(),
            )
            self.db.add(entry)
            self.ledger.recompute(booking, expected_services=expected_services)
            self.ledger.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(entry)
        self.db.refresh(booking)
        logger.info(
            f"Service {service.name} x{quantity} added to booking {booking.booking_reference}, "
            f"services_amount={booking.services_amount}"
        )
        self._publish_change(EventType.SERVICE_ADDED, booking, {
            "service_usage_id": entry.id,
            "service_id": entry.service_id,
            "quantity": entry.quantity,
            "total_price": entry.total_price,
        })
        return entry

    def remove_service(self, service_usage_id: int) -> None:
        """
        撤销消费

        只有 Pending / Confirmed / CheckedIn 的预订可以撤销；撤销后总额
        低于已付金额时拒绝（没有退款流程）。重算后的消费合计若为负，
        按 0 处理并记录 ERROR 日志
        """
        entry = self.get_entry(service_usage_id)
        if not entry:
            raise NotFound("消费记录不存在", service_usage_id=service_usage_id)

        try:
            booking = self.ledger.lock_booking(entry.booking_id)
            if booking.status not in OPEN_STATUSES:
                raise BookingClosed(
                    f"预订状态为 {booking.status.value}，不能撤销消费",
                    current_status=booking.status.value
                )

            expected_services = to_money(booking.services_amount) - to_money(entry.total_price)
            # 删除前保存事件所需字段
            removed = {
                "service_usage_id": entry.id,
                "service_id": entry.service_id,
                "quantity": entry.quantity,
                "total_price": entry.total_price,
            }
            self.db.delete(entry)
            view = self.ledger.recompute(booking, expected_services=expected_services)
            if view.paid_amount > view.total_amount:
                logger.warning(
                    f"Service removal rejected on booking {booking.id}: paid {view.paid_amount} "
                    f"> total {view.total_amount} after removal"
                )
                raise RefundRequired(view.paid_amount, view.total_amount)
            self.ledger.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(
            f"Service usage {service_usage_id} removed from booking {booking.booking_reference}, "
            f"services_amount={booking.services_amount}"
        )
        self._publish_change(EventType.SERVICE_REMOVED, booking, removed)

    def _publish_change(self, event_type: EventType, booking: Booking, entry: dict) -> None:
        self._publish_event(Event(
            event_type=event_type,
            timestamp=self._now(),
            data=ServiceUsageChangedData(
                booking_id=booking.id,
                service_usage_id=entry["service_usage_id"],
                service_id=entry["service_id"],
                quantity=entry["quantity"],
                total_price=float(entry["total_price"]),
                services_amount=float(booking.services_amount),
                outstanding_amount=float(booking.outstanding_amount),
            ).to_dict(),
            source="service_usage_service"
        ))
