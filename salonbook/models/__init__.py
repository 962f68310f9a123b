# salonbook/models/__init__.py
"""
Models package for SalonBook.

Importing this package registers every table on ``Base.metadata``.
"""

from .appointment import Appointment, AppointmentStatus, LocationType
from .payment import Payment, PaymentMethod, PaymentStatus
from .salon import Salon, SalonService, SalonStaff
from .webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "LocationType",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Salon",
    "SalonService",
    "SalonStaff",
    "WebhookEvent",
    "WebhookEventStatus",
]
