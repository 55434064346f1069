# Ontology Models
from hotelops.models.ontology import (
    User, RoomType, Room, ServiceCatalogItem, Booking,
    ServiceUsageEntry, Payment
)

__all__ = [
    'User', 'RoomType', 'Room', 'ServiceCatalogItem', 'Booking',
    'ServiceUsageEntry', 'Payment'
]
