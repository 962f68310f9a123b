"""External service integrations for the SalonBook platform."""

from .fake_gateway import FakePaymentGateway
from .payment_gateway import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    PaymentGateway,
    PaymentGatewayError,
)
from .razorpay_client import RazorpayClient

__all__ = [
    "FakePaymentGateway",
    "GatewayOrder",
    "GatewayPayment",
    "GatewayRefund",
    "PaymentGateway",
    "PaymentGatewayError",
    "RazorpayClient",
]
