# API Routers
from hotelops.routers import availability, bookings, services, payments

__all__ = ['availability', 'bookings', 'services', 'payments']
