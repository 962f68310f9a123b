# salonbook/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_actor, get_current_customer
from .database import get_db
from .services import get_appointment_service, get_payment_gateway, get_payment_service

__all__ = [
    # Auth
    "get_current_actor",
    "get_current_customer",
    # Database
    "get_db",
    # Services
    "get_appointment_service",
    "get_payment_gateway",
    "get_payment_service",
]
