# salonbook/repositories/payment_repository.py
"""
Payment Repository for SalonBook

Handles all data access for payment attempts: lookups by gateway
correlation ids, the compare-and-set settlement transitions, the refund
claim, and reporting aggregates.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import OPEN_PAYMENT_STATUSES, Payment, PaymentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    """Repository for payment data access."""

    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Payment]:
        try:
            return (
                self.db.query(Payment).filter(Payment.gateway_order_id == gateway_order_id).first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by order {gateway_order_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payment: {str(e)}")

    def get_open_for_appointment(self, appointment_id: str) -> Optional[Payment]:
        """The single initiated/processing attempt for an appointment, if any."""
        try:
            return (
                self.db.query(Payment)
                .filter(
                    Payment.appointment_id == appointment_id,
                    Payment.status.in_(OPEN_PAYMENT_STATUSES),
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get open payment for {appointment_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payment: {str(e)}")

    def get_successful_for_appointment(self, appointment_id: str) -> Optional[Payment]:
        try:
            return (
                self.db.query(Payment)
                .filter(
                    Payment.appointment_id == appointment_id,
                    Payment.status == PaymentStatus.SUCCESSFUL.value,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get successful payment for {appointment_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payment: {str(e)}")

    def has_settled_payment(self, appointment_id: str) -> bool:
        """True when a payment for the appointment was captured (even if later refunded)."""
        try:
            return (
                self.db.query(Payment.id)
                .filter(
                    Payment.appointment_id == appointment_id,
                    Payment.status.in_(
                        [PaymentStatus.SUCCESSFUL.value, PaymentStatus.REFUNDED.value]
                    ),
                )
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to check settled payment for {appointment_id}: {str(e)}")
            raise RepositoryException(f"Failed to check payment: {str(e)}")

    def transition_status(
        self,
        payment_id: str,
        from_statuses: Iterable[str],
        to_status: PaymentStatus,
        **values: Any,
    ) -> bool:
        """
        Compare-and-set on ``status``.

        Exactly one concurrent caller observes True for a given transition;
        every other caller gets False and must re-read the row.
        """
        return self._compare_and_set(
            payment_id,
            [Payment.status.in_(list(from_statuses))],
            {"status": to_status.value, **values},
        )

    def claim_refund(
        self,
        payment_id: str,
        claim: str,
        *,
        claimed_at: datetime,
        stale_before: Optional[datetime] = None,
    ) -> bool:
        """
        Take the refund claim on a successful payment.

        The claim is free when nobody holds it, or when the holder took it
        before ``stale_before`` and never finished.
        """
        free = Payment.refund_claim.is_(None)
        if stale_before is not None:
            free = or_(free, Payment.refund_claimed_at < stale_before)
        return self._compare_and_set(
            payment_id,
            [Payment.status == PaymentStatus.SUCCESSFUL.value, free],
            {"refund_claim": claim, "refund_claimed_at": claimed_at},
        )

    def release_refund_claim(self, payment_id: str, claim: str) -> bool:
        return self._compare_and_set(
            payment_id,
            [
                Payment.status == PaymentStatus.SUCCESSFUL.value,
                Payment.refund_claim == claim,
            ],
            {"refund_claim": None, "refund_claimed_at": None},
        )

    def record_refund(
        self,
        payment_id: str,
        claim: str,
        *,
        refund_total: Decimal,
        fully_refunded: bool,
        reason: str,
        refunded_by_id: str,
        refunded_at: datetime,
        gateway_refund_id: str,
    ) -> bool:
        """
        Store a gateway refund and release the claim.

        ``refund_total`` is the cumulative refunded amount. The payment
        stays ``successful`` until the whole total has been given back.
        """
        status = PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.SUCCESSFUL
        return self._compare_and_set(
            payment_id,
            [
                Payment.status == PaymentStatus.SUCCESSFUL.value,
                Payment.refund_claim == claim,
            ],
            {
                "status": status.value,
                "refund_amount": refund_total,
                "refund_reason": reason,
                "refunded_by_id": refunded_by_id,
                "refunded_at": refunded_at,
                "gateway_refund_id": gateway_refund_id,
                "refund_claim": None,
                "refund_claimed_at": None,
            },
        )

    def list_for_customer(
        self,
        customer_id: str,
        *,
        status: Optional[PaymentStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Payment], int]:
        query = self._build_query().filter(Payment.customer_id == customer_id)
        if status is not None:
            query = query.filter(Payment.status == status.value)
        return self._paginate(query.order_by(Payment.created_at.desc()), page, per_page)

    def get_salon_stats(
        self,
        salon_id: str,
        *,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Counts per status plus captured, platform-fee and refunded sums."""
        try:
            query = self.db.query(Payment).filter(Payment.salon_id == salon_id)
            if date_from is not None:
                query = query.filter(Payment.created_at >= date_from)
            if date_to is not None:
                query = query.filter(Payment.created_at < date_to)

            rows = (
                query.with_entities(
                    Payment.status,
                    func.count(Payment.id),
                    func.coalesce(func.sum(Payment.amount_total), 0),
                    func.coalesce(func.sum(Payment.amount_platform_fee), 0),
                    func.coalesce(func.sum(Payment.refund_amount), 0),
                )
                .group_by(Payment.status)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to aggregate payments for salon {salon_id}: {str(e)}")
            raise RepositoryException(f"Failed to aggregate payments: {str(e)}")

        captured_statuses = {PaymentStatus.SUCCESSFUL.value, PaymentStatus.REFUNDED.value}
        counts: Dict[str, int] = {}
        gross = Decimal("0")
        platform_fees = Decimal("0")
        refunded = Decimal("0")
        for status, count, total_sum, fee_sum, refund_sum in rows:
            counts[status] = int(count)
            if status in captured_statuses:
                gross += Decimal(str(total_sum))
                platform_fees += Decimal(str(fee_sum))
            refunded += Decimal(str(refund_sum))

        return {
            "counts": counts,
            "gross_captured": gross,
            "platform_fees": platform_fees,
            "refunded": refunded,
        }
