"""Signature helpers and the in-memory gateway."""

from decimal import Decimal
import hashlib
import hmac

import pytest

from salonbook.integrations.fake_gateway import FakePaymentGateway
from salonbook.integrations.payment_gateway import (
    PaymentGatewayError,
    compute_payment_signature,
    compute_webhook_signature,
    from_minor_units,
    signatures_match,
    to_minor_units,
)


class TestSignatures:
    def test_payment_signature_is_hmac_over_order_and_payment(self):
        expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
        assert compute_payment_signature("secret", "order_1", "pay_1") == expected

    def test_webhook_signature_covers_exact_bytes(self):
        body = b'{"event":"payment.captured"}'
        signature = compute_webhook_signature("whsec", body)
        assert signature == hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
        assert compute_webhook_signature("whsec", body + b" ") != signature

    def test_signatures_match(self):
        assert signatures_match("abc", "abc")
        assert signatures_match("abc", " abc ")
        assert not signatures_match("abc", "abd")
        assert not signatures_match("abc", None)
        assert not signatures_match("abc", "")

    def test_gateway_verifies_signatures(self):
        gateway = FakePaymentGateway(key_secret="k", webhook_secret="w")
        good = compute_payment_signature("k", "order_1", "pay_1")
        assert gateway.verify_signature("order_1", "pay_1", good)
        assert not gateway.verify_signature("order_1", "pay_2", good)

        body = b"{}"
        assert gateway.verify_webhook_signature(body, compute_webhook_signature("w", body))
        assert not gateway.verify_webhook_signature(body, compute_webhook_signature("k", body))
        assert not gateway.verify_webhook_signature(body, None)

    def test_empty_secret_never_verifies(self):
        gateway = FakePaymentGateway(key_secret="", webhook_secret="")
        assert not gateway.verify_signature("o", "p", compute_payment_signature("", "o", "p"))
        assert not gateway.verify_webhook_signature(b"{}", compute_webhook_signature("", b"{}"))


def test_minor_unit_conversion():
    assert to_minor_units(Decimal("345.00")) == 34500
    assert to_minor_units(Decimal("0.005")) == 1
    assert from_minor_units(34550) == Decimal("345.50")
    assert from_minor_units(None) == Decimal("0.00")


class TestFakePaymentGateway:
    def test_order_capture_and_refund(self):
        gateway = FakePaymentGateway()
        order = gateway.create_order(Decimal("345.00"), "INR", "receipt_1")
        payment_id, signature = gateway.simulate_capture(order.gateway_order_id)

        assert gateway.verify_signature(order.gateway_order_id, payment_id, signature)
        fetched = gateway.fetch_payment(payment_id)
        assert fetched.status == "captured"
        assert fetched.amount == Decimal("345.00")

        refund = gateway.refund(payment_id, idempotency_key="refund_x")
        assert refund.amount == Decimal("345.00")
        assert gateway.refund(payment_id, idempotency_key="refund_x") == refund
        assert len(gateway.refunds) == 1

    def test_failure_injection(self):
        gateway = FakePaymentGateway()
        gateway.fail_next(2, retryable=False, status_code=400)

        for _ in range(2):
            with pytest.raises(PaymentGatewayError) as exc_info:
                gateway.create_order(Decimal("1"), "INR", "r")
            assert exc_info.value.retryable is False

        gateway.create_order(Decimal("1"), "INR", "r")
        assert gateway.call_count("create_order") == 3

    def test_unknown_payment_is_not_retryable(self):
        with pytest.raises(PaymentGatewayError) as exc_info:
            FakePaymentGateway().fetch_payment("pay_missing")
        assert exc_info.value.retryable is False
