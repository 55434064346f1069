"""
消费管理路由
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from hotelops.database import get_db
from hotelops.errors import BookingEngineError, NotFound, to_http_exception
from hotelops.models.ontology import ServiceUsageEntry, User
from hotelops.models.schemas import (
    ServiceCatalogResponse, ServiceUsageCreate, ServiceUsageResponse
)
from hotelops.routers.bookings import get_accessible_booking
from hotelops.services.service_usage_service import ServiceUsageService
from hotelops.security.auth import get_current_user

router = APIRouter(tags=["消费管理"])


def _to_response(entry: ServiceUsageEntry) -> ServiceUsageResponse:
    return ServiceUsageResponse(
        id=entry.id,
        booking_id=entry.booking_id,
        service_id=entry.service_id,
        service_name=entry.service.name,
        quantity=entry.quantity,
        unit_price=entry.unit_price,
        total_price=entry.total_price,
        notes=entry.notes,
        service_date=entry.service_date,
        created_at=entry.created_at,
    )


@router.get("/services", response_model=List[ServiceCatalogResponse])
def list_catalog(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """获取可用服务目录"""
    return ServiceUsageService(db).list_catalog()


@router.get("/bookings/{booking_id}/services", response_model=List[ServiceUsageResponse])
def list_services(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """获取预订的消费记录"""
    service = ServiceUsageService(db)
    try:
        get_accessible_booking(db, booking_id, current_user)
        entries = service.list_services(booking_id)
    except BookingEngineError as e:
        raise to_http_exception(e)
    return [_to_response(entry) for entry in entries]


@router.post("/bookings/{booking_id}/services", response_model=ServiceUsageResponse)
def add_service(
    booking_id: int,
    data: ServiceUsageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """添加消费"""
    service = ServiceUsageService(db)
    try:
        get_accessible_booking(db, booking_id, current_user)
        entry = service.add_service(booking_id, data.service_id, data.quantity, data.notes)
    except BookingEngineError as e:
        raise to_http_exception(e)
    return _to_response(entry)


@router.delete("/service-usage/{service_usage_id}")
def remove_service(
    service_usage_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """撤销消费"""
    service = ServiceUsageService(db)
    try:
        entry = service.get_entry(service_usage_id)
        if not entry:
            raise NotFound("消费记录不存在", service_usage_id=service_usage_id)
        booking_id = entry.booking_id
        get_accessible_booking(db, booking_id, current_user)
        service.remove_service(service_usage_id)
    except BookingEngineError as e:
        raise to_http_exception(e)
    return {"message": "消费已撤销", "service_usage_id": service_usage_id, "booking_id": booking_id}
