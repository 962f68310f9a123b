# salonbook/repositories/factory.py
"""
Repository Factory for SalonBook

Central place for creating repository instances so services can be handed
fakes in tests without knowing concrete constructors.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .appointment_repository import AppointmentRepository
    from .payment_repository import PaymentRepository
    from .salon_repository import SalonRepository
    from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_appointment_repository(db: Session) -> "AppointmentRepository":
        """Create repository for appointment operations."""
        from .appointment_repository import AppointmentRepository

        return AppointmentRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for payment operations."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_salon_repository(db: Session) -> "SalonRepository":
        """Create repository for salon catalog and staff lookups."""
        from .salon_repository import SalonRepository

        return SalonRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        """Create repository for the webhook ledger."""
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)
