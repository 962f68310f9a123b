"""
Payment model for gateway-backed appointment payments.

One row per payment attempt. An appointment may accumulate several
``failed`` attempts but at most one open (``initiated``/``processing``)
attempt and at most one ``successful`` one.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class PaymentStatus(str, Enum):
    """Payment lifecycle statuses."""

    INITIATED = "initiated"
    PROCESSING = "processing"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    UPI = "upi"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    WALLET = "wallet"


# Statuses from which settlement (success or failure) may still happen
OPEN_PAYMENT_STATUSES = (PaymentStatus.INITIATED.value, PaymentStatus.PROCESSING.value)

_OPEN_STATUS_SQL = "status IN ('initiated', 'processing')"
_LIVE_GATEWAY_PAYMENT_SQL = "status <> 'failed' AND gateway_payment_id IS NOT NULL"


class Payment(Base):
    """A gateway payment attempt for an appointment."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "status IN ('initiated', 'processing', 'successful', 'failed', 'refunded')",
            name="ck_payments_status",
        ),
        CheckConstraint(
            "method IN ('upi', 'debit_card', 'credit_card', 'wallet')",
            name="ck_payments_method",
        ),
        CheckConstraint("amount_total >= 0", name="ck_payments_total_non_negative"),
        CheckConstraint(
            "refund_amount IS NULL OR refund_amount <= amount_total",
            name="ck_payments_refund_within_total",
        ),
        # gateway payment id is the settlement idempotency key
        Index(
            "uq_payments_gateway_payment_id_live",
            "gateway_payment_id",
            unique=True,
            sqlite_where=text(_LIVE_GATEWAY_PAYMENT_SQL),
            postgresql_where=text(_LIVE_GATEWAY_PAYMENT_SQL),
        ),
        Index(
            "uq_payments_open_attempt_per_appointment",
            "appointment_id",
            unique=True,
            sqlite_where=text(_OPEN_STATUS_SQL),
            postgresql_where=text(_OPEN_STATUS_SQL),
        ),
        Index("ix_payments_salon_created", "salon_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    appointment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("appointments.id"), nullable=False, index=True
    )
    customer_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    salon_id: Mapped[str] = mapped_column(String(26), nullable=False)

    # Amount breakdown in major currency units
    amount_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    amount_services: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    amount_home_service_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    amount_platform_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    amount_tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.INITIATED.value, index=True
    )

    # Gateway correlation
    gateway: Mapped[str] = mapped_column(String(30), nullable=False, default="razorpay")
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gateway_signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"), nullable=True
    )

    # Refund
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_by_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    gateway_refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refund_claim: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refund_claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, appointment_id={self.appointment_id}, "
            f"order={self.gateway_order_id}, status={self.status}, total={self.amount_total})>"
        )

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def refundable_amount(self) -> Decimal:
        return Decimal(self.amount_total) - Decimal(self.refund_amount or 0)
