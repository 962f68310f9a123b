"""Minimal Razorpay REST client implementing the payment gateway contract."""

from __future__ import annotations

from decimal import Decimal
import json
import logging
from typing import Any, Dict, Optional, cast

import httpx
from pydantic import SecretStr

from .payment_gateway import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    PaymentGateway,
    PaymentGatewayError,
    from_minor_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)


def _secret(value: str | SecretStr) -> str:
    return value.get_secret_value() if isinstance(value, SecretStr) else value


class RazorpayClient(PaymentGateway):
    """Thin client for the Razorpay orders, payments and refunds API."""

    name = "razorpay"

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str | SecretStr,
        webhook_secret: str | SecretStr,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = _secret(key_secret)
        if not key_id or not secret_value:
            raise ValueError("Razorpay key id and key secret must be provided")

        super().__init__(key_secret=secret_value, webhook_secret=_secret(webhook_secret))
        self._key_id = key_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._auth = httpx.BasicAuth(key_id, secret_value)

    @property
    def key_id(self) -> str:
        return self._key_id

    def create_order(
        self,
        amount_total: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        body: Dict[str, Any] = {
            "amount": to_minor_units(amount_total),
            "currency": currency,
            "receipt": receipt,
        }
        if notes:
            body["notes"] = notes
        data = self.request("POST", "/orders", json_body=body)
        return GatewayOrder(
            gateway_order_id=str(data["id"]),
            amount=from_minor_units(data.get("amount")),
            currency=str(data.get("currency", currency)),
            receipt=data.get("receipt"),
            status=str(data.get("status", "created")),
        )

    def fetch_payment(self, gateway_payment_id: str) -> GatewayPayment:
        if not gateway_payment_id:
            raise ValueError("gateway_payment_id must be provided")
        data = self.request("GET", f"/payments/{gateway_payment_id}")
        return GatewayPayment(
            gateway_payment_id=str(data["id"]),
            order_id=str(data.get("order_id") or ""),
            status=str(data.get("status", "")),
            method=data.get("method"),
            amount=from_minor_units(data.get("amount")),
            error_description=data.get("error_description"),
        )

    def refund(
        self,
        gateway_payment_id: str,
        amount: Optional[Decimal] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        body: Dict[str, Any] = {}
        if amount is not None:
            body["amount"] = to_minor_units(amount)
        if idempotency_key:
            body["receipt"] = idempotency_key
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        data = self.request(
            "POST", f"/payments/{gateway_payment_id}/refund", json_body=body, headers=headers
        )
        return GatewayRefund(
            gateway_refund_id=str(data["id"]),
            gateway_payment_id=str(data.get("payment_id") or gateway_payment_id),
            amount=from_minor_units(data.get("amount")),
            status=str(data.get("status", "processed")),
            notes=cast(Dict[str, Any], data.get("notes") or {}),
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            auth=self._auth,
            headers={"Accept": "application/json"},
        ) as client:
            try:
                response = client.request(
                    method, url, json=json_body, params=params, headers=headers
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None = None
                error_code: str | None = None
                try:
                    error_payload = exc.response.json()
                    if isinstance(error_payload, dict):
                        error = error_payload.get("error") or {}
                        if isinstance(error, dict):
                            error_code = error.get("code")
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "Razorpay API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise PaymentGatewayError(
                    f"Razorpay API responded with status {status}",
                    status_code=status,
                    retryable=status >= 500 or status == 429,
                    error_code=error_code,
                    error_body=error_payload,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("Razorpay request failure for %s %s: %s", method, path, str(exc))
                raise PaymentGatewayError("Failed to reach Razorpay API") from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from Razorpay for %s %s", method, path)
            raise PaymentGatewayError("Received malformed JSON from Razorpay") from exc
