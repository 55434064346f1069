# Business Services
from hotelops.services.availability_service import AvailabilityService
from hotelops.services.ledger_service import LedgerService
from hotelops.services.booking_service import BookingService
from hotelops.services.service_usage_service import ServiceUsageService
from hotelops.services.payment_service import PaymentService

__all__ = [
    'AvailabilityService', 'LedgerService', 'BookingService',
    'ServiceUsageService', 'PaymentService'
]
