# salonbook/services/appointment_service.py
"""
Appointment Service for SalonBook

Owns the appointment state machine:

    pending     -> confirmed    (payment settlement only)
    pending     -> cancelled    (explicit cancel or abandoned hold)
    confirmed   -> in_progress
    confirmed   -> cancelled    (captured payment is refunded first)
    confirmed   -> no_show
    in_progress -> completed

Every status write is a conditional update on the current status, so two
concurrent writers can never both apply a transition.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.enums import RoleName, StaffRole
from ..core.exceptions import (
    appointment_unavailable,
    conflict_error,
    forbidden_error,
    not_found_error,
    validation_error,
)
from ..core.time_range import end_of, ensure_utc, utcnow
from ..models.appointment import (
    Appointment,
    AppointmentStatus,
    LocationType,
    can_transition,
)
from ..models.salon import Salon
from ..principal import SYSTEM_ACTOR_ID, Actor
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from ..repositories.salon_repository import SalonRepository
from ..schemas.appointment import AppointmentCreate
from ..schemas.common import MAX_PAGE_SIZE
from .availability_service import AvailabilityService
from .base import BaseService

if TYPE_CHECKING:
    from .payment_service import PaymentService

logger = logging.getLogger(__name__)

SLOT_CONFLICT_REASON = "slot_conflict"
HOLD_EXPIRED_REASON = "hold_expired"


class ConfirmationOutcome(str, Enum):
    """Result of trying to confirm an appointment after its payment settled."""

    CONFIRMED = "confirmed"
    CONFLICT = "conflict"  # a racing booking was confirmed for the same slot
    NOT_PENDING = "not_pending"  # cancelled or otherwise moved on meanwhile


def _clamp_page(page: int, per_page: int) -> Tuple[int, int]:
    return max(page, 1), min(max(per_page, 1), MAX_PAGE_SIZE)


class AppointmentService(BaseService):
    """
    Appointment lifecycle manager.

    Refunds on cancellation go through the payment service; it is bound
    after construction because the payment service in turn confirms
    appointments through this one.
    """

    def __init__(
        self,
        db: Session,
        availability_service: Optional[AvailabilityService] = None,
        appointment_repository: Optional[AppointmentRepository] = None,
        payment_repository: Optional[PaymentRepository] = None,
        salon_repository: Optional[SalonRepository] = None,
        payment_service: Optional["PaymentService"] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.config = config or default_settings
        self.appointment_repository = (
            appointment_repository or RepositoryFactory.create_appointment_repository(db)
        )
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self.salon_repository = salon_repository or RepositoryFactory.create_salon_repository(db)
        self.availability_service = availability_service or AvailabilityService(
            db, appointment_repository=self.appointment_repository, config=self.config
        )
        self.payment_service = payment_service

    # ------------------------------------------------------------------
    # Authority helpers
    # ------------------------------------------------------------------

    def _get_appointment_or_404(self, appointment_id: str) -> Appointment:
        appointment = self.appointment_repository.get_by_id(appointment_id)
        if appointment is None:
            raise not_found_error("Appointment not found", details={"appointment_id": appointment_id})
        return appointment

    def _get_salon_or_404(self, salon_id: str) -> Salon:
        salon = self.salon_repository.get_by_id(salon_id)
        if salon is None:
            raise not_found_error("Salon not found", details={"salon_id": salon_id})
        return salon

    def has_salon_authority(
        self, salon_id: str, actor: Actor, appointment: Optional[Appointment] = None
    ) -> bool:
        """
        Whether ``actor`` acts on behalf of ``salon_id``.

        Barbers are further limited to appointments assigned to them (or
        not assigned to anyone) when an appointment is given.
        """
        if actor.is_platform_admin or actor.is_system:
            return True
        if actor.role is RoleName.SALON_OWNER:
            salon = self.salon_repository.get_by_id(salon_id)
            return salon is not None and salon.owner_id == actor.id
        if actor.role in (RoleName.BARBER, RoleName.RECEPTIONIST):
            membership = self.salon_repository.get_staff_membership(salon_id, actor.id)
            if membership is None:
                return False
            if membership.role == StaffRole.BARBER.value and appointment is not None:
                return appointment.barber_id in (None, actor.id)
            return True
        return False

    def _can_view(self, appointment: Appointment, actor: Actor) -> bool:
        return appointment.customer_id == actor.id or self.has_salon_authority(
            appointment.salon_id, actor, appointment
        )

    def _require_salon_authority(self, salon_id: str, actor: Actor) -> None:
        if not self.has_salon_authority(salon_id, actor):
            raise forbidden_error("You do not have access to this salon")

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    @BaseService.measure_operation("check_availability")
    def check_availability(
        self,
        salon_id: str,
        barber_id: Optional[str],
        scheduled_at: datetime,
        duration_minutes: int,
    ) -> bool:
        self._get_salon_or_404(salon_id)
        return self.availability_service.is_available(
            salon_id, barber_id, scheduled_at, duration_minutes
        )

    @BaseService.measure_operation("create_appointment")
    def create_appointment(
        self, customer_id: str, data: AppointmentCreate, now: Optional[datetime] = None
    ) -> Appointment:
        """
        Book services at a salon; the appointment starts ``pending`` and
        holds its slot while payment is collected.

        Raises:
            DomainException: VALIDATION for bad input, NOT_FOUND for unknown
                salon, CONFLICT (APPOINTMENT_UNAVAILABLE) when the slot is taken
        """
        if not customer_id:
            raise validation_error("Customer ID is required")
        if not data.salon_id or not data.service_ids or data.scheduled_at is None:
            raise validation_error("Required fields missing")

        now = ensure_utc(now or utcnow())
        salon = self._get_salon_or_404(data.salon_id)
        if not salon.is_active:
            raise validation_error("Salon is not accepting bookings", code="SALON_INACTIVE")

        if len(set(data.service_ids)) != len(data.service_ids):
            raise validation_error("Duplicate services in request", code="DUPLICATE_SERVICES")

        services = self.salon_repository.get_services(salon.id, data.service_ids)
        unavailable = [
            service_id
            for service_id in data.service_ids
            if service_id not in services or not services[service_id].is_active
        ]
        if unavailable:
            raise validation_error(
                "One or more services are not offered by this salon",
                code="INVALID_SERVICES",
                details={"service_ids": unavailable},
            )

        location_type = LocationType(data.location_type)
        if location_type is LocationType.HOME and not salon.offers_home_service:
            raise validation_error(
                "This salon does not offer home service", code="HOME_SERVICE_UNAVAILABLE"
            )

        if data.barber_id and not self.salon_repository.is_barber_of(salon.id, data.barber_id):
            raise validation_error(
                "Barber does not work at this salon",
                code="BARBER_NOT_AVAILABLE",
                details={"barber_id": data.barber_id},
            )

        duration = sum(services[service_id].duration_minutes for service_id in data.service_ids)
        start = ensure_utc(data.scheduled_at)

        # Validates duration and past start, then the overlap query
        if not self.availability_service.is_available(
            salon.id, data.barber_id, start, duration, now=now
        ):
            raise appointment_unavailable(
                details={
                    "salon_id": salon.id,
                    "barber_id": data.barber_id,
                    "scheduled_at": start.isoformat(),
                    "duration": duration,
                }
            )

        with self.transaction():
            appointment = self.appointment_repository.create(
                customer_id=customer_id,
                salon_id=salon.id,
                barber_id=data.barber_id,
                service_ids=list(data.service_ids),
                scheduled_at=start,
                duration_minutes=duration,
                end_at=end_of(start, duration),
                location_type=location_type.value,
                notes=data.notes,
                status=AppointmentStatus.PENDING.value,
                hold_started_at=now,
            )

        self.log_operation(
            "create_appointment",
            appointment_id=appointment.id,
            salon_id=salon.id,
            barber_id=data.barber_id,
            duration=duration,
        )
        return appointment

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @BaseService.measure_operation("update_status")
    def update_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        actor: Actor,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        target = AppointmentStatus(new_status)
        if target is AppointmentStatus.CANCELLED:
            return self.cancel_appointment(
                appointment_id, actor, reason or f"Cancelled by {actor.role.value}"
            )

        appointment = self._get_appointment_or_404(appointment_id)
        current = appointment.status_enum

        if not self.has_salon_authority(appointment.salon_id, actor, appointment):
            raise forbidden_error("Only the salon can change this appointment's status")

        if not can_transition(current, target):
            raise validation_error(
                f"Cannot change appointment status from {current.value} to {target.value}",
                code="INVALID_TRANSITION",
                details={"from": current.value, "to": target.value},
            )

        if target is AppointmentStatus.CONFIRMED:
            raise forbidden_error(
                "Appointments are confirmed by payment settlement",
                code="CONFIRMATION_RESERVED",
            )

        now = ensure_utc(now or utcnow())
        values: Dict[str, object] = {}
        if target is AppointmentStatus.NO_SHOW:
            if now < ensure_utc(appointment.scheduled_at):
                raise validation_error(
                    "Cannot mark no-show before the scheduled time", code="NO_SHOW_TOO_EARLY"
                )
        elif target is AppointmentStatus.IN_PROGRESS:
            values["started_at"] = now
        elif target is AppointmentStatus.COMPLETED:
            values["completed_at"] = now

        with self.transaction():
            moved = self.appointment_repository.transition_status(
                appointment.id, [current], target, **values
            )
        if not moved:
            raise conflict_error(
                "Appointment was modified by another request; reload and retry",
                code="STALE_APPOINTMENT",
            )

        self.log_operation(
            "update_status",
            appointment_id=appointment.id,
            from_status=current.value,
            to_status=target.value,
            actor_id=actor.id,
        )
        return self.appointment_repository.refresh(appointment)

    @BaseService.measure_operation("cancel_appointment")
    def cancel_appointment(self, appointment_id: str, actor: Actor, reason: str) -> Appointment:
        """
        Cancel a pending or confirmed appointment.

        A captured payment is refunded before the status changes; if the
        refund cannot be issued the appointment stays as it was and the
        error propagates.
        """
        reason = (reason or "").strip()
        if not reason:
            raise validation_error("Cancellation reason is required")

        appointment = self._get_appointment_or_404(appointment_id)
        is_owner = appointment.customer_id == actor.id
        if not is_owner and not self.has_salon_authority(appointment.salon_id, actor, appointment):
            raise forbidden_error("You can only cancel your own appointments")

        current = appointment.status_enum
        if not can_transition(current, AppointmentStatus.CANCELLED):
            raise validation_error(
                f"Cannot cancel an appointment that is {current.value}",
                code="INVALID_TRANSITION",
                details={"from": current.value, "to": AppointmentStatus.CANCELLED.value},
            )

        captured = self.payment_repository.get_successful_for_appointment(appointment.id)
        if captured is not None:
            if self.payment_service is None:
                raise RuntimeError("AppointmentService has no payment service bound for refunds")
            self.payment_service.issue_refund(
                captured, refunded_by_id=actor.id, reason=f"Appointment cancelled: {reason}"
            )

        cancelled_at = utcnow()
        with self.transaction():
            moved = self.appointment_repository.transition_status(
                appointment.id,
                [AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED],
                AppointmentStatus.CANCELLED,
                cancelled_at=cancelled_at,
                cancelled_by_id=actor.id,
                cancellation_reason=reason,
            )

        appointment = self.appointment_repository.refresh(appointment)
        if not moved and appointment.status != AppointmentStatus.CANCELLED.value:
            raise conflict_error(
                "Appointment was modified by another request; reload and retry",
                code="STALE_APPOINTMENT",
            )

        self.log_operation(
            "cancel_appointment",
            appointment_id=appointment.id,
            actor_id=actor.id,
            refunded=captured is not None,
        )
        return appointment

    def confirm_after_payment(
        self, appointment_id: str, now: Optional[datetime] = None
    ) -> ConfirmationOutcome:
        """
        Promote a pending appointment once its payment has settled.

        Must run inside the settlement transaction. Re-validates that no
        confirmed or in-progress appointment now overlaps the slot; on
        conflict the appointment is cancelled instead of confirmed.

        The salon row is locked first so that two settlements for
        overlapping appointments cannot both pass the re-check.
        """
        now = ensure_utc(now or utcnow())
        appointment = self.appointment_repository.get_by_id(appointment_id)
        if appointment is None or appointment.status != AppointmentStatus.PENDING.value:
            return ConfirmationOutcome.NOT_PENDING

        self.salon_repository.lock_for_update(appointment.salon_id)
        appointment = self.appointment_repository.refresh(appointment)
        if appointment.status != AppointmentStatus.PENDING.value:
            return ConfirmationOutcome.NOT_PENDING

        conflicts = self.availability_service.find_conflicts(
            appointment.salon_id,
            appointment.barber_id,
            ensure_utc(appointment.scheduled_at),
            appointment.duration_minutes,
            exclude_appointment_id=appointment.id,
            include_pending_holds=False,
        )
        if conflicts:
            self.appointment_repository.transition_status(
                appointment.id,
                [AppointmentStatus.PENDING],
                AppointmentStatus.CANCELLED,
                cancelled_at=now,
                cancelled_by_id=SYSTEM_ACTOR_ID,
                cancellation_reason=SLOT_CONFLICT_REASON,
            )
            self.logger.warning(
                "Paid appointment lost its slot to a racing booking",
                extra={
                    "appointment_id": appointment.id,
                    "conflicting_ids": [conflict.id for conflict in conflicts],
                },
            )
            return ConfirmationOutcome.CONFLICT

        moved = self.appointment_repository.transition_status(
            appointment.id,
            [AppointmentStatus.PENDING],
            AppointmentStatus.CONFIRMED,
            confirmed_at=now,
        )
        return ConfirmationOutcome.CONFIRMED if moved else ConfirmationOutcome.NOT_PENDING

    @BaseService.measure_operation("expire_stale_holds")
    def expire_stale_holds(self, now: Optional[datetime] = None, limit: int = 500) -> int:
        """
        Cancel pending appointments whose hold lapsed without a captured payment.

        Availability already ignores them; this only tidies their status for
        an external periodic sweep.
        """
        now = ensure_utc(now or utcnow())
        cutoff = self.availability_service.hold_cutoff(now)
        expired = 0
        with self.transaction():
            for appointment in self.appointment_repository.find_stale_pending(cutoff, limit):
                if self.payment_repository.has_settled_payment(appointment.id):
                    continue
                if self.appointment_repository.transition_status(
                    appointment.id,
                    [AppointmentStatus.PENDING],
                    AppointmentStatus.CANCELLED,
                    cancelled_at=now,
                    cancelled_by_id=SYSTEM_ACTOR_ID,
                    cancellation_reason=HOLD_EXPIRED_REASON,
                ):
                    expired += 1
        if expired:
            self.log_operation("expire_stale_holds", expired=expired)
        return expired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_appointment(self, appointment_id: str, actor: Actor) -> Appointment:
        appointment = self._get_appointment_or_404(appointment_id)
        if not self._can_view(appointment, actor):
            raise forbidden_error("You do not have access to this appointment")
        return appointment

    def list_customer_appointments(
        self,
        customer_id: str,
        status: Optional[AppointmentStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Appointment], int, int, int]:
        page, per_page = _clamp_page(page, per_page)
        items, total = self.appointment_repository.list_for_customer(
            customer_id, status=status, page=page, per_page=per_page
        )
        return items, total, page, per_page

    def list_upcoming_appointments(
        self, customer_id: str, limit: int = 10, now: Optional[datetime] = None
    ) -> List[Appointment]:
        now = ensure_utc(now or utcnow())
        return self.appointment_repository.list_upcoming_for_customer(customer_id, now, limit)

    def list_salon_appointments(
        self,
        salon_id: str,
        actor: Actor,
        *,
        status: Optional[AppointmentStatus] = None,
        barber_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Appointment], int, int, int]:
        self._get_salon_or_404(salon_id)
        self._require_salon_authority(salon_id, actor)
        page, per_page = _clamp_page(page, per_page)
        items, total = self.appointment_repository.list_for_salon(
            salon_id,
            status=status,
            barber_id=barber_id,
            date_from=ensure_utc(date_from) if date_from else None,
            date_to=ensure_utc(date_to) if date_to else None,
            page=page,
            per_page=per_page,
        )
        return items, total, page, per_page

    def get_salon_statistics(
        self,
        salon_id: str,
        actor: Actor,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, object]:
        self._get_salon_or_404(salon_id)
        self._require_salon_authority(salon_id, actor)
        by_status = self.appointment_repository.count_by_status_for_salon(
            salon_id,
            date_from=ensure_utc(date_from) if date_from else None,
            date_to=ensure_utc(date_to) if date_to else None,
        )
        for status in AppointmentStatus:
            by_status.setdefault(status.value, 0)
        upcoming = self.appointment_repository.count_upcoming_for_salon(
            salon_id, ensure_utc(now or utcnow())
        )
        return {
            "salon_id": salon_id,
            "total": sum(by_status.values()),
            "upcoming": upcoming,
            "by_status": by_status,
        }
