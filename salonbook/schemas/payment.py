# salonbook/schemas/payment.py
"""
Payment schemas for the SalonBook API.

The gateway signature is accepted on verify but never serialised back out.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field

from ..models.payment import Payment, PaymentMethod, PaymentStatus
from ._strict_base import Money, StrictModel, StrictRequestModel


class PaymentInitiateRequest(StrictRequestModel):
    appointment_id: str = Field(..., min_length=1)
    method: PaymentMethod


class PaymentVerifyRequest(StrictRequestModel):
    order_id: str = Field(..., min_length=1, description="Gateway order id")
    payment_id: str = Field(..., min_length=1, description="Gateway payment id")
    signature: str = Field(..., min_length=1, description="Client-side checkout signature")


class PaymentRefundRequest(StrictRequestModel):
    reason: str = Field(..., min_length=1, max_length=500)
    amount: Optional[Decimal] = Field(
        None, gt=0, max_digits=10, decimal_places=2, description="Partial amount; omit for full"
    )


class AmountBreakdownResponse(StrictModel):
    total: Money
    services: Money
    home_service_fee: Money
    platform_fee: Money
    tax: Money

    @classmethod
    def from_payment(cls, payment: Payment) -> "AmountBreakdownResponse":
        return cls(
            total=payment.amount_total,
            services=payment.amount_services,
            home_service_fee=payment.amount_home_service_fee,
            platform_fee=payment.amount_platform_fee,
            tax=payment.amount_tax,
        )


class RefundInfo(StrictModel):
    amount: Money
    reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    refunded_by: Optional[str] = None
    gateway_refund_id: Optional[str] = None


class PaymentResponse(StrictModel):
    id: str
    appointment_id: str
    customer_id: str
    salon_id: str
    amount: AmountBreakdownResponse
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    gateway: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    refund: Optional[RefundInfo] = None
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, payment: Payment) -> "PaymentResponse":
        refund = None
        if payment.refund_amount is not None:
            refund = RefundInfo(
                amount=payment.refund_amount,
                reason=payment.refund_reason,
                refunded_at=payment.refunded_at,
                refunded_by=payment.refunded_by_id,
                gateway_refund_id=payment.gateway_refund_id,
            )
        return cls(
            id=payment.id,
            appointment_id=payment.appointment_id,
            customer_id=payment.customer_id,
            salon_id=payment.salon_id,
            amount=AmountBreakdownResponse.from_payment(payment),
            currency=payment.currency,
            method=PaymentMethod(payment.method),
            status=PaymentStatus(payment.status),
            gateway=payment.gateway,
            gateway_order_id=payment.gateway_order_id,
            gateway_payment_id=payment.gateway_payment_id,
            failure_reason=payment.failure_reason,
            refund=refund,
            settled_at=payment.settled_at,
            created_at=payment.created_at,
        )


class PaymentInitiateResponse(StrictModel):
    payment_id: str
    gateway_order_id: str
    amount: AmountBreakdownResponse
    currency: str
    key_id: str
    status: PaymentStatus


class WebhookResponse(StrictModel):
    success: bool = True
    handled: bool = False
    event_type: Optional[str] = None


class PaymentStatsResponse(StrictModel):
    salon_id: str
    by_status: Dict[str, int]
    gross_captured: Money
    platform_fees: Money
    refunded: Money
