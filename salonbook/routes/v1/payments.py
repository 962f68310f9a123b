# salonbook/routes/v1/payments.py
"""
Payment API Routes - API v1

Versioned payment endpoints under /api/v1/payments.
Handles the Razorpay-style checkout flow for appointments:
- Payment initiation (gateway order creation)
- Client-side verification of the checkout signature
- Gateway webhook deliveries
- Refunds and reporting

Endpoints:
    POST /initiate                       → Create (or resume) a gateway order
    POST /verify                         → Verify checkout signature and settle
    POST /webhook                        → Handle gateway webhooks (unauthenticated, signed)
    GET /                                → My payment history
    GET /salon/{salon_id}/statistics     → Salon payment totals
    GET /{payment_id}                    → Payment details
    POST /{payment_id}/refund            → Refund a successful payment
"""

import asyncio
from datetime import datetime
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ...api.dependencies import get_current_actor, get_current_customer, get_payment_service
from ...models.payment import PaymentStatus
from ...principal import Actor
from ...schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PaginatedResponse
from ...schemas.payment import (
    AmountBreakdownResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentRefundRequest,
    PaymentResponse,
    PaymentStatsResponse,
    PaymentVerifyRequest,
    WebhookResponse,
)
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])

SIGNATURE_HEADER = "x-razorpay-signature"
EVENT_ID_HEADER = "x-razorpay-event-id"


# ========== Checkout ==========


@router.post("/initiate", response_model=PaymentInitiateResponse)
async def initiate_payment(
    request: PaymentInitiateRequest,
    current_actor: Actor = Depends(get_current_customer),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentInitiateResponse:
    """
    Create the gateway order for a pending appointment.

    Repeating the call while the attempt is open returns the same order.
    """
    payment = await asyncio.to_thread(
        payment_service.initiate_payment, current_actor.id, request.appointment_id, request.method
    )
    return PaymentInitiateResponse(
        payment_id=payment.id,
        gateway_order_id=payment.gateway_order_id or "",
        amount=AmountBreakdownResponse.from_payment(payment),
        currency=payment.currency,
        key_id=payment_service.gateway.key_id,
        status=PaymentStatus(payment.status),
    )


@router.post("/verify", response_model=PaymentResponse)
async def verify_payment(
    request: PaymentVerifyRequest,
    current_actor: Actor = Depends(get_current_customer),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    payment = await asyncio.to_thread(
        payment_service.verify_payment,
        current_actor.id,
        request.order_id,
        request.payment_id,
        request.signature,
    )
    return PaymentResponse.from_model(payment)


@router.post("/webhook", response_model=WebhookResponse)
async def handle_gateway_webhook(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    """
    Handle gateway webhook deliveries.

    The signature covers the exact request bytes, so the body is read raw and
    never re-serialised before verification.
    """
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    event_id = request.headers.get(EVENT_ID_HEADER)
    result = await asyncio.to_thread(
        payment_service.handle_webhook, payload, signature, event_id
    )
    return WebhookResponse(**result)


# ========== Reporting ==========


@router.get("", response_model=PaginatedResponse[PaymentResponse])
async def get_payment_history(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_actor: Actor = Depends(get_current_actor),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaginatedResponse[PaymentResponse]:
    items, total, page, per_page = await asyncio.to_thread(
        payment_service.get_payment_history, current_actor.id, status_filter, page, per_page
    )
    return PaginatedResponse[PaymentResponse].build(
        [PaymentResponse.from_model(item) for item in items], total, page, per_page
    )


@router.get("/salon/{salon_id}/statistics", response_model=PaymentStatsResponse)
async def get_salon_payment_stats(
    salon_id: str,
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    current_actor: Actor = Depends(get_current_actor),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentStatsResponse:
    stats = await asyncio.to_thread(
        payment_service.get_salon_payment_stats, salon_id, current_actor, date_from, date_to
    )
    return PaymentStatsResponse(**stats)


# ========== Payment-specific ==========


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    current_actor: Actor = Depends(get_current_actor),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    payment = await asyncio.to_thread(payment_service.get_payment, payment_id, current_actor)
    return PaymentResponse.from_model(payment)


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: str,
    request: PaymentRefundRequest,
    current_actor: Actor = Depends(get_current_actor),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    payment = await asyncio.to_thread(
        payment_service.refund_payment, payment_id, current_actor, request.reason, request.amount
    )
    return PaymentResponse.from_model(payment)
