# salonbook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...integrations import FakePaymentGateway, PaymentGateway, RazorpayClient
from ...services.appointment_service import AppointmentService
from ...services.payment_service import PaymentService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    """
    Provide the payment gateway adapter.

    The in-memory gateway is used when ``payment_gateway_fake`` is set, or
    outside production when gateway credentials are missing.
    """
    use_fake = bool(settings.payment_gateway_fake)

    logger.info(
        "Payment gateway selection",
        extra={"environment": settings.environment, "payment_gateway_fake": use_fake},
    )

    if use_fake:
        return FakePaymentGateway()

    try:
        return RazorpayClient(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            webhook_secret=settings.razorpay_webhook_secret,
            base_url=settings.razorpay_api_base,
            timeout=settings.gateway_timeout_seconds,
        )
    except ValueError as exc:  # Missing credentials
        if settings.is_production:
            raise
        logger.warning(
            "Razorpay credentials missing; falling back to the in-memory gateway",
            extra={"environment": settings.environment, "error": str(exc)},
        )
        return FakePaymentGateway()


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    """Provide the payment service with its appointment service bound."""

    return PaymentService(db, gateway=gateway)


def get_appointment_service(
    payment_service: PaymentService = Depends(get_payment_service),
) -> AppointmentService:
    """Provide the appointment service sharing the payment service's session."""

    return payment_service.appointment_service
