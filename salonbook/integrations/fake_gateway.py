"""In-memory payment gateway for development and tests."""

from __future__ import annotations

from decimal import Decimal
import logging
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .payment_gateway import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    PaymentGateway,
    PaymentGatewayError,
    compute_payment_signature,
    compute_webhook_signature,
)


class FakePaymentGateway(PaymentGateway):
    """
    Simple in-memory stand-in that mimics a Razorpay-style gateway.

    Signatures are real HMACs over the configured secrets, so the
    verification paths are exercised exactly as in production.
    """

    name = "razorpay"

    def __init__(
        self,
        *,
        key_id: str = "rzp_test_fake",
        key_secret: str = "fake-key-secret",
        webhook_secret: str = "fake-webhook-secret",
    ) -> None:
        super().__init__(key_secret=key_secret, webhook_secret=webhook_secret)
        self._key_id = key_id
        self._logger = logging.getLogger(self.__class__.__name__)
        self._lock = Lock()
        self.orders: Dict[str, GatewayOrder] = {}
        self.payments: Dict[str, GatewayPayment] = {}
        self.refunds: Dict[str, GatewayRefund] = {}
        self._refunds_by_key: Dict[str, GatewayRefund] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._pending_failures: List[PaymentGatewayError] = []

    @property
    def key_id(self) -> str:
        return self._key_id

    def fail_next(self, times: int = 1, *, retryable: bool = True, status_code: int = 503) -> None:
        """Make the next ``times`` remote calls raise PaymentGatewayError."""
        with self._lock:
            for _ in range(times):
                self._pending_failures.append(
                    PaymentGatewayError(
                        "Simulated gateway failure",
                        status_code=status_code,
                        retryable=retryable,
                    )
                )

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, **details: Any) -> None:
        with self._lock:
            self.calls.append((operation, details))
            failure = self._pending_failures.pop(0) if self._pending_failures else None
        if failure is not None:
            raise failure

    def create_order(
        self,
        amount_total: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        self._record("create_order", amount=amount_total, currency=currency, receipt=receipt)
        order = GatewayOrder(
            gateway_order_id=f"order_fake_{uuid4().hex[:14]}",
            amount=Decimal(amount_total),
            currency=currency,
            receipt=receipt,
        )
        self.orders[order.gateway_order_id] = order
        self._logger.debug("Fake order created", extra={"order_id": order.gateway_order_id})
        return order

    def fetch_payment(self, gateway_payment_id: str) -> GatewayPayment:
        self._record("fetch_payment", payment_id=gateway_payment_id)
        payment = self.payments.get(gateway_payment_id)
        if payment is None:
            raise PaymentGatewayError(
                "The id provided does not exist", status_code=400, retryable=False
            )
        return payment

    def refund(
        self,
        gateway_payment_id: str,
        amount: Optional[Decimal] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        self._record("refund", payment_id=gateway_payment_id, amount=amount)
        if idempotency_key and idempotency_key in self._refunds_by_key:
            return self._refunds_by_key[idempotency_key]

        captured = self.payments.get(gateway_payment_id)
        refund_amount = Decimal(amount) if amount is not None else None
        if refund_amount is None:
            refund_amount = captured.amount if captured else Decimal("0")
        refund = GatewayRefund(
            gateway_refund_id=f"rfnd_fake_{uuid4().hex[:14]}",
            gateway_payment_id=gateway_payment_id,
            amount=refund_amount,
            status="processed",
        )
        self.refunds[refund.gateway_refund_id] = refund
        if idempotency_key:
            self._refunds_by_key[idempotency_key] = refund
        return refund

    # Helpers used by tests and local checkout simulation

    def simulate_capture(
        self, order_id: str, *, method: str = "upi", amount: Optional[Decimal] = None
    ) -> Tuple[str, str]:
        """Record a captured payment for ``order_id``; returns ``(payment_id, signature)``."""
        order = self.orders.get(order_id)
        payment_id = f"pay_fake_{uuid4().hex[:14]}"
        self.payments[payment_id] = GatewayPayment(
            gateway_payment_id=payment_id,
            order_id=order_id,
            status="captured",
            method=method,
            amount=amount if amount is not None else (order.amount if order else Decimal("0")),
        )
        return payment_id, self.sign_payment(order_id, payment_id)

    def sign_payment(self, order_id: str, payment_id: str) -> str:
        return compute_payment_signature(self._key_secret, order_id, payment_id)

    def sign_webhook(self, raw_body: bytes) -> str:
        return compute_webhook_signature(self._webhook_secret, raw_body)
