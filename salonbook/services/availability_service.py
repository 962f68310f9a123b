# salonbook/services/availability_service.py
"""
Availability Service for SalonBook

Answers whether a barber (or, without a barber, a salon) is free for a
candidate time range. Pending appointments only block their slot while
their payment hold is live; the hold is evaluated lazily at query time so
no background job is needed to release abandoned slots.
"""

from datetime import datetime, timedelta
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import validation_error
from ..core.time_range import TimeRange, ensure_utc, utcnow
from ..models.appointment import Appointment, AppointmentStatus
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class AvailabilityService(BaseService):
    """Slot conflict checks over stored appointments."""

    def __init__(
        self,
        db: Session,
        appointment_repository: Optional[AppointmentRepository] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.appointment_repository = (
            appointment_repository or RepositoryFactory.create_appointment_repository(db)
        )
        self.config = config or default_settings

    @property
    def hold_window(self) -> timedelta:
        return timedelta(minutes=self.config.slot_hold_minutes)

    def hold_cutoff(self, now: Optional[datetime] = None) -> datetime:
        """Pending appointments whose hold started before this instant are abandoned."""
        return ensure_utc(now or utcnow()) - self.hold_window

    def is_hold_live(self, appointment: Appointment, now: Optional[datetime] = None) -> bool:
        if appointment.status != AppointmentStatus.PENDING.value:
            return False
        if appointment.hold_started_at is None:
            return False
        return ensure_utc(appointment.hold_started_at) >= self.hold_cutoff(now)

    def validate_candidate(
        self, start: datetime, duration_minutes: int, now: Optional[datetime] = None
    ) -> TimeRange:
        """Reject non-positive durations and start times in the past."""
        if duration_minutes is None or duration_minutes <= 0:
            raise validation_error(
                "Duration must be a positive number of minutes",
                details={"duration": duration_minutes},
            )
        candidate = TimeRange.from_duration(start, duration_minutes)
        if candidate.is_past(now):
            raise validation_error(
                "Cannot book a time slot in the past",
                code="START_IN_PAST",
                details={"scheduled_at": candidate.start.isoformat()},
            )
        return candidate

    def find_conflicts(
        self,
        salon_id: str,
        barber_id: Optional[str],
        start: datetime,
        duration_minutes: int,
        *,
        exclude_appointment_id: Optional[str] = None,
        include_pending_holds: bool = True,
        now: Optional[datetime] = None,
    ) -> List[Appointment]:
        """
        Appointments that block ``[start, start + duration)``.

        With ``include_pending_holds=False`` only confirmed and in-progress
        appointments count, which is what the confirmation-time re-check uses.
        """
        candidate = TimeRange.from_duration(start, duration_minutes)
        cutoff = self.hold_cutoff(now) if include_pending_holds else None
        return self.appointment_repository.find_overlapping(
            salon_id=salon_id,
            barber_id=barber_id,
            start=candidate.start,
            end=candidate.end,
            pending_hold_cutoff=cutoff,
            exclude_appointment_id=exclude_appointment_id,
        )

    @BaseService.measure_operation("is_available")
    def is_available(
        self,
        salon_id: str,
        barber_id: Optional[str],
        start: datetime,
        duration_minutes: int,
        *,
        exclude_appointment_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        if not salon_id:
            raise validation_error("Salon ID is required")
        now = ensure_utc(now or utcnow())
        candidate = self.validate_candidate(start, duration_minutes, now)
        conflicts = self.find_conflicts(
            salon_id,
            barber_id,
            candidate.start,
            duration_minutes,
            exclude_appointment_id=exclude_appointment_id,
            now=now,
        )
        if conflicts:
            self.logger.debug(
                "Slot unavailable",
                extra={
                    "salon_id": salon_id,
                    "barber_id": barber_id,
                    "start": candidate.start.isoformat(),
                    "conflicting_ids": [appointment.id for appointment in conflicts],
                },
            )
        return not conflicts
