"""Database models."""

from staybook.models.activity import ActivityItem
from staybook.models.availability import AvailabilityEntry, AvailabilityStatus
from staybook.models.booking import Booking, BookingStatus
from staybook.models.property import ExtendedStayDiscount, Property, PropertyType
from staybook.models.service import Service, ServiceBooking
from staybook.models.user import User

__all__ = [
    "ActivityItem",
    "AvailabilityEntry",
    "AvailabilityStatus",
    "Booking",
    "BookingStatus",
    "ExtendedStayDiscount",
    "Property",
    "PropertyType",
    "Service",
    "ServiceBooking",
    "User",
]
