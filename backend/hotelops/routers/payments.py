"""
付款管理路由
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from hotelops.database import get_db
from hotelops.errors import BookingEngineError, to_http_exception
from hotelops.models.ontology import User
from hotelops.models.schemas import (
    PaymentCreate, PaymentResponse, PaymentHistoryResponse, PaymentRecordedResponse,
    PaymentSummaryResponse, LedgerResponse
)
from hotelops.routers.bookings import get_accessible_booking
from hotelops.services.ledger_service import LedgerService
from hotelops.services.payment_service import PaymentService
from hotelops.security.auth import get_current_user

router = APIRouter(prefix="/bookings", tags=["付款管理"])


@router.get("/{booking_id}/payments", response_model=PaymentHistoryResponse)
def list_payments(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """获取付款历史与汇总"""
    ledger = LedgerService(db)
    try:
        get_accessible_booking(db, booking_id, current_user)
        payments = PaymentService(db).list_payments(booking_id)
        summary = ledger.get_payment_summary(booking_id)
        view = ledger.get_ledger(booking_id)
    except BookingEngineError as e:
        raise to_http_exception(e)

    return PaymentHistoryResponse(
        ledger=LedgerResponse(**view.to_dict()),
        payments=[PaymentResponse.model_validate(p) for p in payments],
        summary=PaymentSummaryResponse(
            total_payments=summary.total_payments,
            completed_payments=summary.completed_payments,
            pending_payments=summary.pending_payments,
            total_paid=summary.total_paid,
            total_pending=summary.total_pending,
        )
    )


@router.post("/{booking_id}/payments", response_model=PaymentRecordedResponse)
def record_payment(
    booking_id: int,
    data: PaymentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """记录付款"""
    service = PaymentService(db)
    try:
        get_accessible_booking(db, booking_id, current_user)
        payment = service.record_payment(
            booking_id,
            amount=data.amount,
            method=data.method,
            payment_type=data.payment_type,
            transaction_id=data.transaction_id,
            notes=data.notes,
            operator_id=current_user.id,
        )
        booking = service.ledger.get_booking(booking_id)
        view = service.ledger.view(booking)
    except BookingEngineError as e:
        raise to_http_exception(e)

    return PaymentRecordedResponse(
        payment=PaymentResponse.model_validate(payment),
        ledger=LedgerResponse(**view.to_dict()),
        booking_status=booking.status,
        fully_paid=view.outstanding == 0,
    )
