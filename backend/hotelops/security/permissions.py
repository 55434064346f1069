"""
权限规则
角色是封闭枚举 UserRole，所有判断都穷举每个角色，新增角色时
未处理的分支会直接抛错而不是静默放行
"""
from typing import Optional

from hotelops.errors import PermissionDenied
from hotelops.models.ontology import UserRole, BookingStatus, Booking, User


# 客人可以对自己的预订发起的状态变更
GUEST_TRANSITIONS = frozenset({BookingStatus.CANCELLED, BookingStatus.CHECKED_IN})


def _unhandled(role) -> None:
    raise PermissionDenied(f"未知角色: {role}")


def is_staff(role: Optional[UserRole]) -> bool:
    """员工或管理员"""
    if role is None:
        return False
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.STAFF:
        return True
    if role == UserRole.GUEST:
        return False
    _unhandled(role)


def can_access_booking(user: User, booking: Booking) -> bool:
    """用户是否可以查看 / 操作该预订"""
    role = user.role
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.STAFF:
        return True
    if role == UserRole.GUEST:
        return booking.guest_id == user.id
    _unhandled(role)


def require_booking_access(user: User, booking: Booking) -> None:
    if not can_access_booking(user, booking):
        raise PermissionDenied("无权访问该预订", booking_id=booking.id)


def can_transition(role: UserRole, target: BookingStatus) -> bool:
    """角色是否允许发起到目标状态的变更（不含业务守卫）"""
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.STAFF:
        return True
    if role == UserRole.GUEST:
        return target in GUEST_TRANSITIONS
    _unhandled(role)


def require_transition(user: User, booking: Booking, target: BookingStatus) -> None:
    require_booking_access(user, booking)
    if not can_transition(user.role, target):
        raise PermissionDenied(
            f"角色 {user.role.value} 不允许将预订变更为 {target.value}",
            booking_id=booking.id
        )
