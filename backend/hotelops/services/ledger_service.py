"""
结算账本服务 - 本体操作层
账本不是独立存储的对象，而是 Booking 上金额字段必须满足的不变量：

    services_amount = Σ service_usage.total_price
    total_amount    = base_amount + services_amount
    paid_amount     = Σ payments.amount (status = completed)
    outstanding     = max(0, total_amount - paid_amount)

recompute 是唯一的重算入口，所有修改金额的操作都在同一事务内调用它。
"""
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Optional, Callable
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from hotelops.errors import BookingNotFound, PaymentRequired, ConcurrentUpdateError
from hotelops.models.ontology import (
    Booking, ServiceUsageEntry, Payment, PaymentStatus, ZERO
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """统一金额精度为两位小数"""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


@dataclass(frozen=True)
class LedgerView:
    """账本视图"""
    booking_id: int
    base_amount: Decimal
    services_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PaymentSummary:
    """付款汇总"""
    total_payments: int
    completed_payments: int
    pending_payments: int
    total_paid: Decimal
    total_pending: Decimal


class LedgerService:
    """结算账本服务"""

    def __init__(self, db: Session):
        self.db = db

    # ============== 读取 ==============

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise BookingNotFound(booking_id)
        return booking

    def lock_booking(self, booking_id: int) -> Booking:
        """
        加锁读取预订行

        PostgreSQL 下为 SELECT ... FOR UPDATE；不支持行锁的引擎依靠
        version_id_col 在 flush 时发现并发修改。populate_existing 保证
        拿到的是数据库当前值而不是会话中的旧对象。
        """
        booking = (
            self.db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not booking:
            raise BookingNotFound(booking_id)
        return booking

    def view(self, booking: Booking) -> LedgerView:
        return LedgerView(
            booking_id=booking.id,
            base_amount=to_money(booking.base_amount),
            services_amount=to_money(booking.services_amount),
            total_amount=to_money(booking.total_amount),
            paid_amount=to_money(booking.paid_amount),
            outstanding=to_money(booking.outstanding_amount),
        )

    def get_ledger(self, booking_id: int) -> LedgerView:
        """获取账本（只读，无副作用）"""
        return self.view(self.get_booking(booking_id))

    def get_payment_summary(self, booking_id: int) -> PaymentSummary:
        """按状态汇总付款"""
        self.get_booking(booking_id)
        payments = self.db.query(Payment).filter(Payment.booking_id == booking_id).all()
        completed = [p for p in payments if p.status == PaymentStatus.COMPLETED]
        pending = [p for p in payments if p.status == PaymentStatus.PENDING]
        return PaymentSummary(
            total_payments=len(payments),
            completed_payments=len(completed),
            pending_payments=len(pending),
            total_paid=to_money(sum((p.amount for p in completed), ZERO)),
            total_pending=to_money(sum((p.amount for p in pending), ZERO)),
        )

    # ============== 重算 ==============

    def sum_services(self, booking_id: int) -> Decimal:
        total = self.db.query(
            func.coalesce(func.sum(ServiceUsageEntry.total_price), 0)
        ).filter(ServiceUsageEntry.booking_id == booking_id).scalar()
        return to_money(total)

    def sum_completed_payments(self, booking_id: int) -> Decimal:
        total = self.db.query(
            func.coalesce(func.sum(Payment.amount), 0)
        ).filter(
            Payment.booking_id == booking_id,
            Payment.status == PaymentStatus.COMPLETED
        ).scalar()
        return to_money(total)

    def recompute(self, booking: Booking, expected_services: Optional[Decimal] = None) -> LedgerView:
        """
        重算并写回预订金额（不提交）

        Args:
            booking: 已加锁的预订
            expected_services: 调用方按增量推算的消费合计，用于发现漂移
        """
        # 先把本事务内未落库的消费 / 付款写入，再做聚合
        self.db.flush()

        services_amount = self.sum_services(booking.id)
        if expected_services is not None and expected_services < 0:
            logger.error(
                f"Ledger invariant violation: booking {booking.id} services_amount "
                f"would be negative ({expected_services}), flooring at 0"
            )
        elif expected_services is not None and to_money(expected_services) != services_amount:
            logger.warning(
                f"Ledger drift on booking {booking.id}: expected services "
                f"{expected_services}, recomputed {services_amount}"
            )
        if services_amount < 0:
            logger.error(
                f"Ledger invariant violation: booking {booking.id} services sum {services_amount} < 0"
            )
            services_amount = ZERO

        base_amount = to_money(booking.base_amount)
        booking.services_amount = services_amount
        booking.total_amount = base_amount + services_amount
        booking.paid_amount = self.sum_completed_payments(booking.id)

        if booking.paid_amount > booking.total_amount:
            # 付款守卫本应阻止这种情况（例如撤销消费后总额下降）
            logger.warning(
                f"Booking {booking.id} is overpaid: paid {booking.paid_amount} > total {booking.total_amount}"
            )
        return self.view(booking)

    # ============== 守卫 ==============

    def require_settled(self, booking: Booking) -> None:
        """未结余额大于 0 时抛出 PaymentRequired"""
        outstanding = to_money(booking.outstanding_amount)
        if outstanding > 0:
            raise PaymentRequired(outstanding)

    # ============== 提交 ==============

    def commit(self, on_conflict: Optional[Callable[[], None]] = None) -> None:
        """
        提交当前事务

        版本号冲突时回滚；on_conflict 可基于最新数据重新校验并抛出更具体的
        业务异常，否则抛出 ConcurrentUpdateError。不会自动重试。
        """
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning("Concurrent booking update detected, transaction rolled back")
            if on_conflict is not None:
                on_conflict()
            raise ConcurrentUpdateError("预订已被其他操作修改，请刷新后重试")
