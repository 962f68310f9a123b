# salonbook/models/appointment.py
"""
Appointment model for the SalonBook platform.

An appointment reserves a barber (or, when no barber is chosen, the salon)
for ``[scheduled_at, end_at)``. It is created ``pending`` and holds its slot
for a configurable window while payment is collected; payment settlement
promotes it to ``confirmed``.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    PENDING = "pending"  # Awaiting payment, slot held
    CONFIRMED = "confirmed"  # Paid
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"  # Customer didn't attend


class LocationType(str, Enum):
    """Where the service takes place."""

    SALON = "salon"
    HOME = "home"


# Allowed transitions; terminal states map to an empty set.
APPOINTMENT_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in APPOINTMENT_TRANSITIONS.get(current, frozenset())


class Appointment(Base):
    """
    A customer's reservation of salon services at a point in time.

    ``end_at`` is stored alongside ``duration_minutes`` so overlap checks
    can be expressed directly in SQL.
    """

    __tablename__ = "appointments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    customer_id = Column(String(26), nullable=False, index=True)
    salon_id = Column(String(26), ForeignKey("salons.id"), nullable=False, index=True)
    barber_id = Column(String(26), nullable=True, index=True)
    service_ids = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    location_type = Column(String(20), nullable=False, default=LocationType.SALON.value)
    notes = Column(Text, nullable=True)

    status = Column(
        String(20), nullable=False, default=AppointmentStatus.PENDING.value, index=True
    )
    hold_started_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation tracking
    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
            name="ck_appointments_status",
        ),
        CheckConstraint("location_type IN ('salon', 'home')", name="ck_appointments_location_type"),
        CheckConstraint("duration_minutes > 0", name="ck_appointments_duration_positive"),
        Index("ix_appointments_barber_window", "barber_id", "scheduled_at", "end_at"),
        Index("ix_appointments_salon_window", "salon_id", "scheduled_at", "end_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = AppointmentStatus.PENDING.value

    def __repr__(self) -> str:
        return (
            f"<Appointment {self.id}: customer={self.customer_id}, salon={self.salon_id}, "
            f"barber={self.barber_id}, at={self.scheduled_at}, "
            f"duration={self.duration_minutes}, status={self.status}>"
        )

    @property
    def status_enum(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)
