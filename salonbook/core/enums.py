# salonbook/core/enums.py
"""
Core enums for the SalonBook platform.

Statuses owned by a single model live next to that model; the values here
are shared across services, schemas and routes.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles carried in access tokens."""

    SUPERADMIN = "superadmin"
    SUPPORT = "support"
    SALON_OWNER = "salon_owner"
    BARBER = "barber"
    RECEPTIONIST = "receptionist"
    CUSTOMER = "customer"


# Platform staff that may act on any salon
PLATFORM_ADMIN_ROLES = frozenset({RoleName.SUPERADMIN, RoleName.SUPPORT})


class StaffRole(str, Enum):
    """Membership role of a user inside a salon."""

    BARBER = "barber"
    RECEPTIONIST = "receptionist"
