"""
业务异常定义
服务层抛出类型化异常，路由层统一转换为 HTTPException。
数据库连接等基础设施异常不在此列，直接向上传播。
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BookingEngineError(Exception):
    """业务异常基类"""

    code = "booking_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        detail = {"code": self.code, "message": self.message}
        for key, value in self.extra.items():
            detail[key] = float(value) if isinstance(value, Decimal) else value
        return detail


class ValidationError(BookingEngineError):
    """输入不合法（金额、日期区间、数量等）"""

    code = "validation_error"
    http_status = status.HTTP_400_BAD_REQUEST


class InvalidAmount(ValidationError):
    """金额必须大于 0"""

    code = "invalid_amount"


class NotFound(BookingEngineError):
    """引用的预订/服务/房间不存在"""

    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class BookingNotFound(NotFound):
    code = "booking_not_found"

    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__("预订不存在", booking_id=booking_id)


class InvalidTransition(BookingEngineError):
    """当前状态不允许该操作"""

    code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: Optional[str] = None,
                 target_status: Optional[str] = None, **extra: Any):
        self.current_status = current_status
        self.target_status = target_status
        if current_status is not None:
            extra["current_status"] = current_status
        if target_status is not None:
            extra["target_status"] = target_status
        super().__init__(message, **extra)


class BookingClosed(InvalidTransition):
    """预订已结束（退房/取消/未到），不能再追加消费或付款"""

    code = "booking_closed"


class PaymentRequired(BookingEngineError):
    """存在未结余额，需要先付款"""

    code = "payment_required"
    http_status = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, outstanding: Decimal, message: Optional[str] = None):
        self.outstanding = outstanding
        super().__init__(message or f"账单未结清，余额 {outstanding}", outstanding=outstanding)


class OverpaymentRejected(BookingEngineError):
    """付款金额超过当前未结余额"""

    code = "overpayment_rejected"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, amount: Decimal, outstanding: Decimal):
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"付款金额 {amount} 超过未结余额 {outstanding}",
            amount=amount, outstanding=outstanding
        )


class RefundRequired(BookingEngineError):
    """撤销消费会让总额低于已付金额，需要先走退款"""

    code = "refund_required"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, paid: Decimal, total: Decimal):
        self.paid = paid
        self.total = total
        super().__init__(
            f"撤销后总额 {total} 低于已付金额 {paid}，请先办理退款",
            paid=paid, total=total
        )


class RoomNoLongerAvailable(BookingEngineError):
    """提交时房间已被占用"""

    code = "room_no_longer_available"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, room_id: int, reason: str = "booked"):
        self.room_id = room_id
        self.reason = reason
        super().__init__("所选日期房间已被预订", room_id=room_id, reason=reason)


class ConcurrentUpdateError(BookingEngineError):
    """提交时检测到并发修改，调用方应重新获取状态后重试"""

    code = "concurrent_update"
    http_status = status.HTTP_409_CONFLICT


class PermissionDenied(BookingEngineError):
    """权限拒绝异常"""

    code = "permission_denied"
    http_status = status.HTTP_403_FORBIDDEN


def to_http_exception(exc: BookingEngineError) -> HTTPException:
    """业务异常 -> HTTPException"""
    return HTTPException(status_code=exc.http_status, detail=exc.to_dict())
