"""
可用性查询路由
"""
from typing import List, Optional
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from hotelops.database import get_db
from hotelops.errors import BookingEngineError, to_http_exception
from hotelops.models.ontology import User
from hotelops.models.schemas import (
    AvailabilityCheck, AvailabilityResponse, ConflictingBooking, RoomAvailabilityResponse
)
from hotelops.services.availability_service import AvailabilityService
from hotelops.security.auth import get_current_user

router = APIRouter(prefix="/availability", tags=["可用性"])


@router.post("/check", response_model=AvailabilityResponse)
def check_availability(
    data: AvailabilityCheck,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """检查单个房间在日期区间内是否可订"""
    service = AvailabilityService(db)
    try:
        result = service.is_available(data.room_id, data.check_in_date, data.check_out_date)
    except BookingEngineError as e:
        raise to_http_exception(e)

    return AvailabilityResponse(
        room_id=data.room_id,
        available=result.available,
        reason=result.reason,
        conflicting_bookings=[
            ConflictingBooking(
                booking_reference=b.booking_reference,
                check_in_date=b.check_in_date,
                check_out_date=b.check_out_date,
                status=b.status,
            )
            for b in result.conflicts
        ]
    )


@router.get("", response_model=List[RoomAvailabilityResponse])
def list_availability(
    check_in_date: date = Query(...),
    check_out_date: date = Query(...),
    room_type_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """列出所有房间在日期区间内的可用性与报价"""
    service = AvailabilityService(db)
    try:
        rows = service.list_availability(check_in_date, check_out_date, room_type_id)
    except BookingEngineError as e:
        raise to_http_exception(e)

    return [
        RoomAvailabilityResponse(
            room_id=row.room.id,
            room_number=row.room.room_number,
            room_type=row.room.room_type.name,
            room_status=row.room.status,
            available=row.available,
            reason=row.reason,
            nights=row.nights,
            price_per_night=row.price_per_night,
            base_amount=row.base_amount,
        )
        for row in rows
    ]
