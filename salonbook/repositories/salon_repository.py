# salonbook/repositories/salon_repository.py
"""
Salon Repository for SalonBook

Read-only access to salons, their service catalog and staff membership.
"""

import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import StaffRole
from ..core.exceptions import RepositoryException
from ..models.salon import Salon, SalonService, SalonStaff
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SalonRepository(BaseRepository[Salon]):
    """Repository for salons and the records hanging off them."""

    def __init__(self, db: Session):
        super().__init__(db, Salon)

    def get_services(self, salon_id: str, service_ids: Sequence[str]) -> Dict[str, SalonService]:
        """Services of ``salon_id`` among ``service_ids``, keyed by id."""
        if not service_ids:
            return {}
        try:
            rows: List[SalonService] = (
                self.db.query(SalonService)
                .filter(
                    SalonService.salon_id == salon_id,
                    SalonService.id.in_(list(service_ids)),
                )
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading services for salon {salon_id}: {str(e)}")
            raise RepositoryException(f"Failed to load salon services: {str(e)}")
        return {row.id: row for row in rows}

    def get_staff_membership(self, salon_id: str, user_id: str) -> Optional[SalonStaff]:
        try:
            return (
                self.db.query(SalonStaff)
                .filter(
                    SalonStaff.salon_id == salon_id,
                    SalonStaff.user_id == user_id,
                    SalonStaff.is_active.is_(True),
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading staff {user_id} for salon {salon_id}: {str(e)}")
            raise RepositoryException(f"Failed to load salon staff: {str(e)}")

    def is_barber_of(self, salon_id: str, user_id: str) -> bool:
        membership = self.get_staff_membership(salon_id, user_id)
        return membership is not None and membership.role == StaffRole.BARBER.value

    def lock_for_update(self, salon_id: str) -> Optional[Salon]:
        """
        Load the salon with ``SELECT ... FOR UPDATE``.

        Callers holding the lock are serialized until their transaction
        ends. SQLite renders no locking clause; its single writer already
        serializes transactions that have written.
        """
        try:
            return (
                self.db.query(Salon)
                .filter(Salon.id == salon_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking salon {salon_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock salon: {str(e)}")
