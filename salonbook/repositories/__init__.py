"""Repository layer for SalonBook."""

from .appointment_repository import AppointmentRepository
from .base_repository import BaseRepository, IRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .salon_repository import SalonRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "AppointmentRepository",
    "BaseRepository",
    "IRepository",
    "PaymentRepository",
    "RepositoryFactory",
    "SalonRepository",
    "WebhookEventRepository",
]
