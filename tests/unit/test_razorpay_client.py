"""RazorpayClient against httpx.MockTransport."""

import base64
from decimal import Decimal
import json

import httpx
import pytest

from salonbook.integrations.payment_gateway import PaymentGatewayError
from salonbook.integrations.razorpay_client import RazorpayClient


def _client(handler) -> RazorpayClient:
    return RazorpayClient(
        key_id="rzp_test_key",
        key_secret="key_secret",
        webhook_secret="wh_secret",
        base_url="https://api.example.test/v1",
        transport=httpx.MockTransport(handler),
    )


def test_requires_credentials():
    with pytest.raises(ValueError):
        RazorpayClient(key_id="", key_secret="", webhook_secret="")


def test_create_order_sends_minor_units_with_basic_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "id": "order_abc",
                "amount": 34500,
                "currency": "INR",
                "receipt": "pay_1",
                "status": "created",
            },
        )

    order = _client(handler).create_order(Decimal("345.00"), "INR", "pay_1", notes={"a": "b"})

    assert seen["method"] == "POST"
    assert seen["path"] == "/v1/orders"
    expected_auth = base64.b64encode(b"rzp_test_key:key_secret").decode()
    assert seen["auth"] == f"Basic {expected_auth}"
    assert seen["body"] == {
        "amount": 34500,
        "currency": "INR",
        "receipt": "pay_1",
        "notes": {"a": "b"},
    }
    assert order.gateway_order_id == "order_abc"
    assert order.amount == Decimal("345.00")


def test_fetch_payment_maps_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/pay_1"
        return httpx.Response(
            200,
            json={
                "id": "pay_1",
                "order_id": "order_abc",
                "status": "captured",
                "method": "upi",
                "amount": 34500,
            },
        )

    payment = _client(handler).fetch_payment("pay_1")
    assert payment.order_id == "order_abc"
    assert payment.status == "captured"
    assert payment.amount == Decimal("345.00")


def test_refund_carries_idempotency_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers.get("idempotency-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"id": "rfnd_1", "payment_id": "pay_1", "amount": 10000, "status": "processed"}
        )

    refund = _client(handler).refund("pay_1", Decimal("100"), idempotency_key="refund_p1")

    assert seen["key"] == "refund_p1"
    assert seen["body"] == {"amount": 10000, "receipt": "refund_p1"}
    assert refund.gateway_refund_id == "rfnd_1"
    assert refund.amount == Decimal("100.00")


@pytest.mark.parametrize("status, retryable", [(500, True), (503, True), (429, True), (400, False)])
def test_http_errors_are_classified(status, retryable):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "nope"}}
        )

    with pytest.raises(PaymentGatewayError) as exc_info:
        _client(handler).create_order(Decimal("1"), "INR", "r")

    assert exc_info.value.status_code == status
    assert exc_info.value.retryable is retryable
    assert exc_info.value.error_code == "BAD_REQUEST_ERROR"


def test_network_errors_are_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentGatewayError) as exc_info:
        _client(handler).fetch_payment("pay_1")
    assert exc_info.value.retryable is True


def test_malformed_json_raises_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>not json</html>")

    with pytest.raises(PaymentGatewayError):
        _client(handler).fetch_payment("pay_1")
