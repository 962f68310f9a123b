# salonbook/repositories/appointment_repository.py
"""
Appointment Repository for SalonBook

Data access for appointments, including the overlap query behind slot
availability and the conditional status updates used by the lifecycle
manager and the settlement engine.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..models.appointment import Appointment, AppointmentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Always block a slot regardless of age
HARD_BLOCKING_STATUSES = (AppointmentStatus.CONFIRMED.value, AppointmentStatus.IN_PROGRESS.value)


class AppointmentRepository(BaseRepository[Appointment]):
    """Repository for appointment data access."""

    def __init__(self, db: Session):
        super().__init__(db, Appointment)

    def find_overlapping(
        self,
        *,
        salon_id: str,
        barber_id: Optional[str],
        start: datetime,
        end: datetime,
        pending_hold_cutoff: Optional[datetime] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> List[Appointment]:
        """
        Appointments whose ``[scheduled_at, end_at)`` overlaps ``[start, end)``.

        Scope is the salon, narrowed to the barber when one is given.
        Confirmed and in-progress appointments always count. Pending ones
        count only when ``pending_hold_cutoff`` is given and their hold
        started at or after it.
        """
        blocking = [Appointment.status.in_(HARD_BLOCKING_STATUSES)]
        if pending_hold_cutoff is not None:
            blocking.append(
                and_(
                    Appointment.status == AppointmentStatus.PENDING.value,
                    Appointment.hold_started_at >= pending_hold_cutoff,
                )
            )

        query = self._build_query().filter(
            Appointment.salon_id == salon_id,
            or_(*blocking),
            # half-open intervals: touching boundaries never conflict
            Appointment.scheduled_at < end,
            Appointment.end_at > start,
        )
        if barber_id:
            query = query.filter(Appointment.barber_id == barber_id)
        if exclude_appointment_id:
            query = query.filter(Appointment.id != exclude_appointment_id)

        return self._execute_query(query.order_by(Appointment.scheduled_at))

    def transition_status(
        self,
        appointment_id: str,
        from_statuses: Iterable[AppointmentStatus],
        to_status: AppointmentStatus,
        **values: Any,
    ) -> bool:
        """Move an appointment to ``to_status`` only if it is still in ``from_statuses``."""
        allowed = [status.value for status in from_statuses]
        return self._compare_and_set(
            appointment_id,
            [Appointment.status.in_(allowed)],
            {"status": to_status.value, **values},
        )

    def find_stale_pending(self, hold_cutoff: datetime, limit: int = 500) -> List[Appointment]:
        """Pending appointments whose hold started before ``hold_cutoff``."""
        query = (
            self._build_query()
            .filter(
                Appointment.status == AppointmentStatus.PENDING.value,
                Appointment.hold_started_at < hold_cutoff,
            )
            .order_by(Appointment.hold_started_at)
            .limit(limit)
        )
        return self._execute_query(query)

    def list_for_customer(
        self,
        customer_id: str,
        *,
        status: Optional[AppointmentStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Appointment], int]:
        query = self._build_query().filter(Appointment.customer_id == customer_id)
        if status is not None:
            query = query.filter(Appointment.status == status.value)
        return self._paginate(query.order_by(Appointment.scheduled_at.desc()), page, per_page)

    def list_upcoming_for_customer(
        self, customer_id: str, now: datetime, limit: int = 10
    ) -> List[Appointment]:
        query = (
            self._build_query()
            .filter(
                Appointment.customer_id == customer_id,
                Appointment.status.in_(
                    [AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value]
                ),
                Appointment.scheduled_at >= now,
            )
            .order_by(Appointment.scheduled_at.asc())
            .limit(limit)
        )
        return self._execute_query(query)

    def _salon_query(
        self,
        salon_id: str,
        *,
        status: Optional[AppointmentStatus] = None,
        barber_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Query:
        query = self._build_query().filter(Appointment.salon_id == salon_id)
        if status is not None:
            query = query.filter(Appointment.status == status.value)
        if barber_id:
            query = query.filter(Appointment.barber_id == barber_id)
        if date_from is not None:
            query = query.filter(Appointment.scheduled_at >= date_from)
        if date_to is not None:
            query = query.filter(Appointment.scheduled_at < date_to)
        return query

    def list_for_salon(
        self,
        salon_id: str,
        *,
        status: Optional[AppointmentStatus] = None,
        barber_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Appointment], int]:
        query = self._salon_query(
            salon_id, status=status, barber_id=barber_id, date_from=date_from, date_to=date_to
        )
        return self._paginate(query.order_by(Appointment.scheduled_at.asc()), page, per_page)

    def count_by_status_for_salon(
        self,
        salon_id: str,
        *,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, int]:
        try:
            query = self._salon_query(salon_id, date_from=date_from, date_to=date_to)
            rows = (
                query.with_entities(Appointment.status, func.count(Appointment.id))
                .group_by(Appointment.status)
                .all()
            )
            return {status: int(count) for status, count in rows}
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting appointments for salon {salon_id}: {str(e)}")
            raise RepositoryException(f"Failed to count appointments: {str(e)}")

    def count_upcoming_for_salon(self, salon_id: str, now: datetime) -> int:
        query = self._build_query().filter(
            Appointment.salon_id == salon_id,
            Appointment.status.in_(
                [AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value]
            ),
            Appointment.scheduled_at >= now,
        )
        return int(self._execute_scalar(query.with_entities(func.count(Appointment.id))) or 0)
