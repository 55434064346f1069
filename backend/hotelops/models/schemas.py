"""
Pydantic 模式定义
用于 API 请求/响应验证
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict, model_validator
from hotelops.models.ontology import (
    BookingStatus, RoomStatus, PaymentMethod, PaymentType, PaymentStatus
)


# ============== 可用性 Schemas ==============

class AvailabilityCheck(BaseModel):
    room_id: int
    check_in_date: date
    check_out_date: date


class ConflictingBooking(BaseModel):
    booking_reference: str
    check_in_date: date
    check_out_date: date
    status: BookingStatus


class AvailabilityResponse(BaseModel):
    room_id: int
    available: bool
    reason: Optional[str] = None
    conflicting_bookings: List[ConflictingBooking] = []


class RoomAvailabilityResponse(BaseModel):
    room_id: int
    room_number: str
    room_type: str
    room_status: RoomStatus
    available: bool
    reason: Optional[str] = None
    nights: int
    price_per_night: Decimal
    base_amount: Decimal


# ============== 预订 Schemas ==============

class BookingCreate(BaseModel):
    room_id: int
    guest_id: Optional[int] = None  # 客人下单时由令牌填充
    check_in_date: date
    check_out_date: date
    guest_count: int = Field(default=1, ge=1)
    special_requests: Optional[str] = None
    initial_payment_amount: Optional[Decimal] = Field(None, gt=0)
    payment_method: Optional[PaymentMethod] = None

    @model_validator(mode="after")
    def _payment_method_required(self):
        if self.initial_payment_amount is not None and self.payment_method is None:
            raise ValueError("预付款需要指定支付方式")
        return self


class StatusTransitionRequest(BaseModel):
    status: BookingStatus


class LedgerResponse(BaseModel):
    booking_id: int
    base_amount: Decimal
    services_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal


class BookingResponse(BaseModel):
    id: int
    booking_reference: str
    room_id: int
    room_number: str
    room_type: str
    guest_id: int
    guest_name: str
    check_in_date: date
    check_out_date: date
    nights: int
    guest_count: int
    status: BookingStatus
    base_amount: Decimal
    services_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    special_requests: Optional[str]
    created_at: datetime
    checked_in_at: Optional[datetime]
    checked_out_at: Optional[datetime]
    model_config = ConfigDict(from_attributes=True)


# ============== 消费 Schemas ==============

class ServiceCatalogResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    category: Optional[str]
    current_price: Decimal
    is_available: bool
    model_config = ConfigDict(from_attributes=True)


class ServiceUsageCreate(BaseModel):
    service_id: int
    quantity: int = Field(default=1)
    notes: Optional[str] = None


class ServiceUsageResponse(BaseModel):
    id: int
    booking_id: int
    service_id: int
    service_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    notes: Optional[str]
    service_date: Optional[date]
    created_at: datetime


# ============== 付款 Schemas ==============

class PaymentCreate(BaseModel):
    amount: Decimal
    method: PaymentMethod
    payment_type: Optional[PaymentType] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    payment_reference: str
    booking_id: int
    amount: Decimal
    method: PaymentMethod
    payment_type: PaymentType
    status: PaymentStatus
    transaction_id: Optional[str]
    notes: Optional[str]
    paid_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PaymentSummaryResponse(BaseModel):
    total_payments: int
    completed_payments: int
    pending_payments: int
    total_paid: Decimal
    total_pending: Decimal


class PaymentHistoryResponse(BaseModel):
    ledger: LedgerResponse
    payments: List[PaymentResponse]
    summary: PaymentSummaryResponse


class PaymentRecordedResponse(BaseModel):
    payment: PaymentResponse
    ledger: LedgerResponse
    booking_status: BookingStatus
    fully_paid: bool
