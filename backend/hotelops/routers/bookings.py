"""
预订管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from hotelops.database import get_db
from hotelops.errors import BookingEngineError, PermissionDenied, to_http_exception
from hotelops.models.ontology import Booking, BookingStatus, User, UserRole
from hotelops.models.schemas import (
    BookingCreate, BookingResponse, StatusTransitionRequest, LedgerResponse
)
from hotelops.services.booking_service import BookingService
from hotelops.services.ledger_service import LedgerService
from hotelops.security.auth import get_current_user
from hotelops.security.permissions import is_staff, require_booking_access, require_transition

router = APIRouter(prefix="/bookings", tags=["预订管理"])


def get_accessible_booking(db: Session, booking_id: int, user: User) -> Booking:
    """加载预订并校验当前用户可访问"""
    booking = LedgerService(db).get_booking(booking_id)
    require_booking_access(user, booking)
    return booking


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    status: Optional[BookingStatus] = None,
    room_id: Optional[int] = None,
    guest_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """获取预订列表（客人只能看到自己的预订）"""
    if not is_staff(current_user.role):
        guest_id = current_user.id
    service = BookingService(db)
    bookings = service.list_bookings(status=status, guest_id=guest_id, room_id=room_id)
    return [BookingResponse(**service.get_booking_detail(b.id)) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """获取预订详情"""
    service = BookingService(db)
    try:
        get_accessible_booking(db, booking_id, current_user)
    except BookingEngineError as e:
        raise to_http_exception(e)
    return BookingResponse(**service.get_booking_detail(booking_id))


@router.post("", response_model=BookingResponse)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """创建预订（客人只能为自己下单）"""
    service = BookingService(db)
    try:
        if current_user.role == UserRole.GUEST:
            if data.guest_id is not None and data.guest_id != current_user.id:
                raise PermissionDenied("客人只能为自己创建预订")
            data = data.model_copy(update={"guest_id": current_user.id})
        booking = service.create_booking(data, operator_id=current_user.id)
    except BookingEngineError as e:
        raise to_http_exception(e)
    return BookingResponse(**service.get_booking_detail(booking.id))


@router.post("/{booking_id}/status", response_model=BookingResponse)
def transition_status(
    booking_id: int,
    data: StatusTransitionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """变更预订状态"""
    service = BookingService(db)
    try:
        booking = get_accessible_booking(db, booking_id, current_user)
        require_transition(current_user, booking, data.status)
        service.transition_status(booking_id, data.status, actor=current_user)
    except BookingEngineError as e:
        raise to_http_exception(e)
    return BookingResponse(**service.get_booking_detail(booking_id))


@router.get("/{booking_id}/ledger", response_model=LedgerResponse)
def get_ledger(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """获取预订账本"""
    try:
        get_accessible_booking(db, booking_id, current_user)
        view = LedgerService(db).get_ledger(booking_id)
    except BookingEngineError as e:
        raise to_http_exception(e)
    return LedgerResponse(**view.to_dict())
