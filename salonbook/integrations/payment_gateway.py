"""Payment gateway contract shared by every vendor adapter."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
import hashlib
import hmac
from typing import Any, Dict, Optional

MINOR_UNITS_PER_MAJOR = 100


class PaymentGatewayError(RuntimeError):
    """Raised when the gateway is unreachable or rejects a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        retryable: bool = True,
        error_code: str | None = None,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.error_code = error_code
        self.error_body = error_body


@dataclass(frozen=True)
class GatewayOrder:
    gateway_order_id: str
    amount: Decimal
    currency: str
    receipt: Optional[str] = None
    status: str = "created"


@dataclass(frozen=True)
class GatewayPayment:
    gateway_payment_id: str
    order_id: str
    status: str
    method: Optional[str]
    amount: Decimal
    error_description: Optional[str] = None


@dataclass(frozen=True)
class GatewayRefund:
    gateway_refund_id: str
    gateway_payment_id: str
    amount: Decimal
    status: str
    notes: Dict[str, Any] = field(default_factory=dict)


def to_minor_units(amount: Decimal) -> int:
    """Major-unit Decimal (rupees) to integer minor units (paise)."""
    scaled = (Decimal(amount) * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(scaled)


def from_minor_units(value: int | str | None) -> Decimal:
    return (Decimal(value or 0) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def compute_payment_signature(key_secret: str, order_id: str, payment_id: str) -> str:
    """Hex HMAC-SHA256 over ``order_id|payment_id``."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_webhook_signature(webhook_secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 over the exact bytes of a webhook body."""
    return hmac.new(webhook_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: str | None) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected, provided.strip())


class PaymentGateway(ABC):
    """
    Operations the settlement engine needs from a payment gateway.

    Amounts cross this interface as major-unit ``Decimal`` values; adapters
    convert to whatever the vendor expects.
    """

    name: str = "gateway"

    def __init__(self, *, key_secret: str, webhook_secret: str) -> None:
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret

    @property
    @abstractmethod
    def key_id(self) -> str:
        """Public key id handed to checkout clients."""

    @abstractmethod
    def create_order(
        self,
        amount_total: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """Create a gateway order; raises PaymentGatewayError on failure."""

    @abstractmethod
    def fetch_payment(self, gateway_payment_id: str) -> GatewayPayment:
        """Fetch the gateway's own record of a payment."""

    @abstractmethod
    def refund(
        self,
        gateway_payment_id: str,
        amount: Optional[Decimal] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        """Refund ``amount`` or, when omitted, everything still captured."""

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            return False
        expected = compute_payment_signature(self._key_secret, order_id, payment_id)
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, raw_body: bytes, signature_header: str | None) -> bool:
        if not self._webhook_secret:
            return False
        expected = compute_webhook_signature(self._webhook_secret, raw_body)
        return signatures_match(expected, signature_header)
