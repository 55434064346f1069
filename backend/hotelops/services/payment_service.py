"""
付款服务 - 本体操作层
管理 Payment 对象（只追加，不修改）

每笔付款不得超过当前未结余额，校验在加锁读取的预订行上进行，
与写入付款、重算 paid_amount 处于同一事务。
"""
from typing import List, Optional, Callable
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
import logging
import uuid

from sqlalchemy.orm import Session

from hotelops.config import settings
from hotelops.errors import InvalidAmount, BookingClosed, OverpaymentRejected, ValidationError
from hotelops.models.events import EventType, PaymentReceivedData
from hotelops.models.ontology import (
    Booking, BookingStatus, Payment, PaymentMethod, PaymentType, PaymentStatus,
    OPEN_STATUSES
)
from hotelops.services.event_bus import event_bus, Event
from hotelops.services.ledger_service import LedgerService, CENT, to_money

logger = logging.getLogger(__name__)


class PaymentService:
    """付款服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 today: Callable[[], date] = None, now: Callable[[], datetime] = None,
                 auto_confirm: Optional[bool] = None):
        self.db = db
        self.ledger = LedgerService(db)
        self._publish_event = event_publisher or event_bus.publish
        self._today = today or date.today
        self._now = now or datetime.now
        self.auto_confirm = (
            settings.AUTO_CONFIRM_ON_FULL_PAYMENT if auto_confirm is None else auto_confirm
        )

    def _generate_payment_reference(self) -> str:
        return f"PAY-{self._today().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"

    def list_payments(self, booking_id: int) -> List[Payment]:
        """获取预订的付款记录"""
        self.ledger.get_booking(booking_id)
        return self.db.query(Payment).filter(
            Payment.booking_id == booking_id
        ).order_by(Payment.paid_at.asc(), Payment.id.asc()).all()

    @staticmethod
    def _normalize_amount(amount) -> Decimal:
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmount("付款金额格式不正确", amount=str(amount))
        if not value.is_finite():
            raise InvalidAmount("付款金额格式不正确", amount=str(amount))
        # 不做舍入，超过两位小数的金额直接拒绝
        if value != value.quantize(CENT):
            raise InvalidAmount("付款金额最多两位小数", amount=str(amount))
        value = to_money(value)
        if value <= 0:
            raise InvalidAmount("付款金额必须大于 0", amount=value)
        return value

    def append_payment(self, booking: Booking, amount, method: PaymentMethod,
                       payment_type: Optional[PaymentType] = None,
                       transaction_id: Optional[str] = None,
                       notes: Optional[str] = None,
                       operator_id: Optional[int] = None,
                       partial_type: PaymentType = PaymentType.PARTIAL) -> Payment:
        """
        在当前事务内追加付款并重算账本（不提交）

        Args:
            booking: 已加锁的预订
            partial_type: 未指定类型且金额小于余额时使用的类型
        """
        amount = self._normalize_amount(amount)
        if method is None:
            raise ValidationError("缺少支付方式")

        if booking.status not in OPEN_STATUSES:
            raise BookingClosed(
                f"预订状态为 {booking.status.value}，不能再付款",
                current_status=booking.status.value
            )

        outstanding = to_money(booking.outstanding_amount)
        if amount > outstanding:
            logger.warning(
                f"Overpayment rejected on booking {booking.id}: amount {amount} > outstanding {outstanding}"
            )
            raise OverpaymentRejected(amount, outstanding)

        if payment_type is None:
            payment_type = PaymentType.FULL if amount == outstanding else partial_type

        payment = Payment(
            payment_reference=self._generate_payment_reference(),
            booking_id=booking.id,
            amount=amount,
            method=method,
            payment_type=payment_type,
            status=PaymentStatus.COMPLETED,
            transaction_id=transaction_id,
            notes=notes,
            paid_at=self._now(),
            created_by=operator_id,
        )
        self.db.add(payment)
        self.ledger.recompute(booking)
        return payment

    def _recheck_after_conflict(self, booking_id: int, amount: Decimal) -> None:
        """并发冲突回滚后，基于最新余额给出更具体的拒绝原因"""
        booking = self.ledger.get_booking(booking_id)
        self.db.refresh(booking)
        outstanding = to_money(booking.outstanding_amount)
        if amount > outstanding:
            raise OverpaymentRejected(amount, outstanding)

    def record_payment(self, booking_id: int, amount, method: PaymentMethod,
                       payment_type: Optional[PaymentType] = None,
                       transaction_id: Optional[str] = None,
                       notes: Optional[str] = None,
                       operator_id: Optional[int] = None) -> Payment:
        """
        记录付款

        业务规则：
        - 金额必须大于 0
        - 已退房 / 已取消 / 未到店的预订不能付款
        - 金额不得超过当前未结余额
        - 待确认预订付清后自动确认（AUTO_CONFIRM_ON_FULL_PAYMENT）

        Raises:
            InvalidAmount, BookingNotFound, BookingClosed,
            OverpaymentRejected, ConcurrentUpdateError
        """
        amount = self._normalize_amount(amount)
        confirmation = None

        try:
            booking = self.ledger.lock_booking(booking_id)
            payment = self.append_payment(
                booking, amount, method,
                payment_type=payment_type,
                transaction_id=transaction_id,
                notes=notes,
                operator_id=operator_id,
            )

            if (self.auto_confirm and booking.status == BookingStatus.PENDING
                    and booking.outstanding_amount == 0):
                from hotelops.services.booking_service import BookingService
                booking_service = BookingService(
                    self.db, event_publisher=self._publish_event, today=self._today, now=self._now
                )
                confirmation = booking_service.apply_transition(booking, BookingStatus.CONFIRMED)

            self.ledger.commit(on_conflict=lambda: self._recheck_after_conflict(booking_id, amount))
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        self.db.refresh(payment)
        self.publish_payment_received(booking, payment, operator_id)
        if confirmation is not None:
            booking_service.publish_transition(booking, confirmation, operator_id)
        return payment

    def publish_payment_received(self, booking: Booking, payment: Payment,
                                 operator_id: Optional[int] = None) -> None:
        """提交后发布收款事件"""
        logger.info(
            f"Payment {payment.payment_reference} of {payment.amount} recorded on "
            f"booking {booking.booking_reference}, outstanding {booking.outstanding_amount}"
        )
        self._publish_event(Event(
            event_type=EventType.PAYMENT_RECEIVED,
            timestamp=self._now(),
            data=PaymentReceivedData(
                booking_id=booking.id,
                booking_reference=booking.booking_reference,
                payment_id=payment.id,
                payment_reference=payment.payment_reference,
                amount=float(payment.amount),
                method=payment.method.value,
                payment_type=payment.payment_type.value,
                outstanding_amount=float(booking.outstanding_amount),
                operator_id=operator_id,
            ).to_dict(),
            source="payment_service"
        ))
