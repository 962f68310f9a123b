# salonbook/services/payment_service.py
"""
Payment Service for SalonBook

Settlement engine for appointment payments.

Flow:
1. Customer initiates a payment -> an ``initiated`` row is committed, then a
   gateway order is created for its amount.
2. The client completes checkout and calls verify with the gateway's
   signature; the gateway independently delivers webhooks.
3. Whichever path wins the compare-and-set on the payment row confirms the
   appointment. Every other path observes the settled row and returns it.

No database lock is held while the gateway is being called.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
import hashlib
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import ulid

from ..core.config import Settings, settings as default_settings
from ..core.enums import RoleName
from ..core.exceptions import (
    DomainException,
    appointment_unavailable,
    conflict_error,
    external_service_error,
    forbidden_error,
    internal_error,
    not_found_error,
    payment_failed_error,
    unauthorized_error,
    validation_error,
)
from ..core.time_range import ensure_utc, utcnow
from ..integrations.payment_gateway import PaymentGateway, PaymentGatewayError, to_minor_units
from ..models.appointment import AppointmentStatus
from ..models.payment import OPEN_PAYMENT_STATUSES, Payment, PaymentMethod, PaymentStatus
from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import SYSTEM_ACTOR_ID, Actor
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from ..repositories.salon_repository import SalonRepository
from ..repositories.webhook_event_repository import WebhookEventRepository
from ..schemas.common import MAX_PAGE_SIZE
from .appointment_service import AppointmentService, ConfirmationOutcome
from .base import BaseService
from .pricing_service import CENT, PricingService
from .retry import retry

logger = logging.getLogger(__name__)

R = TypeVar("R")

WEBHOOK_SOURCE = "razorpay"

SUCCESS_EVENTS = frozenset({"payment.captured", "order.paid"})
AUTHORIZED_EVENT = "payment.authorized"
FAILED_EVENT = "payment.failed"
REFUND_EVENTS = frozenset({"refund.created", "refund.processed"})
KNOWN_EVENTS = SUCCESS_EVENTS | REFUND_EVENTS | {AUTHORIZED_EVENT, FAILED_EVENT}

# Gateway statuses that mean the customer's money was taken
SETTLED_GATEWAY_STATUSES = ("captured", "authorized")

ORDER_CREATION_FAILED = "order_creation_failed"
SIGNATURE_MISMATCH = "signature_mismatch"


def _refund_idempotency_key(payment_id: str, already_refunded: Decimal) -> str:
    # a refund slice is identified by what was already refunded before it
    return f"refund_{payment_id}_{to_minor_units(already_refunded)}"


def _capture_refund_key(payment_id: str, gateway_payment_id: str) -> str:
    return f"refund_{payment_id}_{gateway_payment_id}"


def _record_webhook(event_type: str, result: str) -> None:
    # event types come from the payload; keep the label set bounded
    label = event_type if event_type in KNOWN_EVENTS else "other"
    prometheus_metrics.record_webhook(label, result)


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    """``payload[name]["entity"]`` when it is a dict, else an empty dict."""
    wrapper = payload.get(name)
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get("entity")
    return entity if isinstance(entity, dict) else {}


class PaymentService(BaseService):
    """
    Service layer for payment initiation, settlement and refunds.

    The appointment service is a collaborator in both directions: settlement
    confirms appointments through it, and cancellation refunds through this
    service. When no appointment service is given one is built and bound
    back to this instance.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        appointment_service: Optional[AppointmentService] = None,
        pricing_service: Optional[PricingService] = None,
        payment_repository: Optional[PaymentRepository] = None,
        appointment_repository: Optional[AppointmentRepository] = None,
        salon_repository: Optional[SalonRepository] = None,
        webhook_event_repository: Optional[WebhookEventRepository] = None,
        config: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(db)
        self.gateway = gateway
        self.config = config or default_settings
        self._sleep = sleep
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self.appointment_repository = (
            appointment_repository or RepositoryFactory.create_appointment_repository(db)
        )
        self.salon_repository = salon_repository or RepositoryFactory.create_salon_repository(db)
        self.webhook_event_repository = (
            webhook_event_repository or RepositoryFactory.create_webhook_event_repository(db)
        )
        self.pricing_service = pricing_service or PricingService(
            db, salon_repository=self.salon_repository, config=self.config
        )

        if appointment_service is None:
            appointment_service = AppointmentService(
                db,
                appointment_repository=self.appointment_repository,
                payment_repository=self.payment_repository,
                salon_repository=self.salon_repository,
                payment_service=self,
                config=self.config,
            )
        elif appointment_service.payment_service is None:
            appointment_service.payment_service = self
        self.appointment_service = appointment_service

    # ------------------------------------------------------------------
    # Gateway plumbing
    # ------------------------------------------------------------------

    def _call_gateway(self, operation: str, func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Call the gateway with bounded exponential-backoff retry."""
        attempts = 0

        def attempt(*call_args: Any, **call_kwargs: Any) -> R:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                prometheus_metrics.record_gateway_call(operation, "retry")
            return func(*call_args, **call_kwargs)

        attempt.__name__ = f"gateway.{operation}"
        try:
            result = retry(
                max_attempts=self.config.gateway_retry_attempts,
                backoff_seconds=self.config.gateway_retry_backoff_seconds,
                sleep=self._sleep,
            )(attempt)(*args, **kwargs)
        except PaymentGatewayError as exc:
            prometheus_metrics.record_gateway_call(operation, "error")
            self.logger.error(
                f"Gateway {operation} failed after {attempts} attempt(s): {str(exc)}",
                extra={"operation": operation, "status_code": exc.status_code},
            )
            raise
        prometheus_metrics.record_gateway_call(operation, "success")
        return result

    @staticmethod
    def _translate_gateway_error(exc: PaymentGatewayError, message: str) -> DomainException:
        if not exc.retryable:
            return payment_failed_error(
                message, code="GATEWAY_REJECTED", details={"gateway_error": exc.error_code}
            )
        return external_service_error(message, code="GATEWAY_UNAVAILABLE")

    # ------------------------------------------------------------------
    # Authority
    # ------------------------------------------------------------------

    def _has_payment_authority(self, payment: Payment, actor: Actor) -> bool:
        """Salon owners, receptionists and platform admins act on a salon's payments."""
        if actor.is_system or actor.is_platform_admin:
            return True
        if actor.role not in (RoleName.SALON_OWNER, RoleName.RECEPTIONIST):
            return False
        return self.appointment_service.has_salon_authority(payment.salon_id, actor)

    def _get_payment_or_404(self, payment_id: str) -> Payment:
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise not_found_error("Payment not found", details={"payment_id": payment_id})
        return payment

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def _reuse_open_attempt(self, payment: Payment) -> Payment:
        if payment.gateway_order_id:
            self.logger.info(
                "Returning existing open payment attempt",
                extra={"payment_id": payment.id, "appointment_id": payment.appointment_id},
            )
            return payment
        raise conflict_error(
            "A payment for this appointment is already being set up; retry shortly",
            code="PAYMENT_IN_PROGRESS",
            details={"payment_id": payment.id},
        )

    @BaseService.measure_operation("initiate_payment")
    def initiate_payment(
        self,
        customer_id: str,
        appointment_id: str,
        method: PaymentMethod,
        now: Optional[datetime] = None,
    ) -> Payment:
        """
        Start (or resume) the payment for a pending appointment.

        Returns the payment row carrying the gateway order id. Calling it again
        while an attempt is open returns that same attempt.

        Raises:
            DomainException: NOT_FOUND, FORBIDDEN, VALIDATION (not pending),
                CONFLICT (slot lost or attempt mid-flight), EXTERNAL_SERVICE
        """
        now = ensure_utc(now or utcnow())
        method = PaymentMethod(method)

        appointment = self.appointment_repository.get_by_id(appointment_id)
        if appointment is None:
            raise not_found_error("Appointment not found", details={"appointment_id": appointment_id})
        if appointment.customer_id != customer_id:
            raise forbidden_error("You can only pay for your own appointments")
        if appointment.status != AppointmentStatus.PENDING.value:
            raise validation_error(
                "Appointment is not awaiting payment",
                code="APPOINTMENT_NOT_PENDING",
                details={"status": appointment.status},
            )

        availability = self.appointment_service.availability_service
        if not availability.is_hold_live(appointment, now):
            conflicts = availability.find_conflicts(
                appointment.salon_id,
                appointment.barber_id,
                ensure_utc(appointment.scheduled_at),
                appointment.duration_minutes,
                exclude_appointment_id=appointment.id,
                now=now,
            )
            if conflicts:
                raise appointment_unavailable(details={"appointment_id": appointment.id})
            with self.transaction():
                rearmed = self.appointment_repository.transition_status(
                    appointment.id,
                    [AppointmentStatus.PENDING],
                    AppointmentStatus.PENDING,
                    hold_started_at=now,
                )
            if not rearmed:
                raise validation_error(
                    "Appointment is not awaiting payment", code="APPOINTMENT_NOT_PENDING"
                )
            self.logger.info("Re-armed expired slot hold", extra={"appointment_id": appointment.id})

        existing = self.payment_repository.get_open_for_appointment(appointment.id)
        if existing is not None:
            return self._reuse_open_attempt(existing)

        breakdown = self.pricing_service.compute_for_appointment(appointment)

        try:
            with self.transaction():
                payment = self.payment_repository.create(
                    appointment_id=appointment.id,
                    customer_id=customer_id,
                    salon_id=appointment.salon_id,
                    amount_total=breakdown.total,
                    amount_services=breakdown.services,
                    amount_home_service_fee=breakdown.home_service_fee,
                    amount_platform_fee=breakdown.platform_fee,
                    amount_tax=breakdown.tax,
                    currency=self.config.currency,
                    method=method.value,
                    status=PaymentStatus.INITIATED.value,
                    gateway=self.gateway.name,
                )
        except IntegrityError:
            # A concurrent request inserted the open attempt first
            winner = self.payment_repository.get_open_for_appointment(appointment.id)
            if winner is None:
                raise conflict_error(
                    "A payment for this appointment is already being set up; retry shortly",
                    code="PAYMENT_IN_PROGRESS",
                )
            return self._reuse_open_attempt(winner)

        try:
            order = self._call_gateway(
                "create_order",
                self.gateway.create_order,
                breakdown.total,
                payment.currency,
                payment.id,
                notes={"appointment_id": appointment.id, "payment_id": payment.id},
            )
        except PaymentGatewayError as exc:
            with self.transaction():
                self.payment_repository.transition_status(
                    payment.id,
                    [PaymentStatus.INITIATED.value],
                    PaymentStatus.FAILED,
                    failure_reason=ORDER_CREATION_FAILED,
                )
            raise external_service_error(
                "Payment gateway is unavailable; please try again",
                code="GATEWAY_UNAVAILABLE",
                details={"payment_id": payment.id},
            ) from exc

        with self.transaction():
            self.payment_repository.update(payment.id, gateway_order_id=order.gateway_order_id)

        self.log_operation(
            "initiate_payment",
            payment_id=payment.id,
            appointment_id=appointment.id,
            order_id=order.gateway_order_id,
            amount=str(breakdown.total),
        )
        return self.payment_repository.refresh(payment)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    @BaseService.measure_operation("verify_payment")
    def verify_payment(
        self,
        customer_id: str,
        order_id: str,
        gateway_payment_id: str,
        signature: str,
        now: Optional[datetime] = None,
    ) -> Payment:
        """
        Settle a payment from the client's checkout callback.

        Idempotent: a payment that already settled is returned unchanged.
        """
        if not order_id or not gateway_payment_id or not signature:
            raise validation_error("order_id, payment_id and signature are required")

        payment = self.payment_repository.get_by_gateway_order_id(order_id)
        if payment is None:
            raise not_found_error("Payment not found", details={"order_id": order_id})
        if payment.customer_id != customer_id:
            raise forbidden_error("You can only verify your own payments")

        status = payment.status_enum
        if status in (PaymentStatus.SUCCESSFUL, PaymentStatus.REFUNDED):
            prometheus_metrics.record_settlement("verify", "duplicate")
            return payment
        if status is PaymentStatus.FAILED:
            raise payment_failed_error(
                "This payment has already failed; start a new payment",
                code="PAYMENT_ALREADY_FAILED",
                details={"failure_reason": payment.failure_reason},
            )

        if not self.gateway.verify_signature(order_id, gateway_payment_id, signature):
            with self.transaction():
                self.payment_repository.transition_status(
                    payment.id,
                    OPEN_PAYMENT_STATUSES,
                    PaymentStatus.FAILED,
                    failure_reason=SIGNATURE_MISMATCH,
                )
            prometheus_metrics.record_settlement("verify", "failed")
            self.logger.warning(
                "Payment signature mismatch",
                extra={"payment_id": payment.id, "order_id": order_id},
            )
            raise payment_failed_error(
                "Payment signature verification failed", code="SIGNATURE_MISMATCH"
            )

        if self.config.gateway_cross_check_enabled:
            self._cross_check(payment, gateway_payment_id)

        settled = self._settle_success(
            payment, gateway_payment_id, signature, source="verify", now=now
        )
        if settled.status in OPEN_PAYMENT_STATUSES:
            raise payment_failed_error(
                "This gateway payment was already used to settle another payment",
                code="GATEWAY_PAYMENT_REUSED",
                details={"gateway_payment_id": gateway_payment_id},
            )
        if settled.status == PaymentStatus.FAILED.value:
            raise payment_failed_error(
                "This payment has already failed; start a new payment",
                code="PAYMENT_ALREADY_FAILED",
                details={"failure_reason": settled.failure_reason},
            )
        return settled

    def _cross_check(self, payment: Payment, gateway_payment_id: str) -> None:
        try:
            remote = self._call_gateway(
                "fetch_payment", self.gateway.fetch_payment, gateway_payment_id
            )
        except PaymentGatewayError as exc:
            raise self._translate_gateway_error(
                exc, "Could not confirm the payment with the gateway"
            ) from exc

        if remote.order_id != payment.gateway_order_id:
            raise payment_failed_error(
                "Payment does not belong to this order", code="ORDER_MISMATCH"
            )
        if remote.status not in SETTLED_GATEWAY_STATUSES:
            raise payment_failed_error(
                "Payment has not been captured",
                code="PAYMENT_NOT_CAPTURED",
                details={"gateway_status": remote.status},
            )
        expected = Decimal(payment.amount_total).quantize(CENT)
        if Decimal(remote.amount).quantize(CENT) != expected:
            raise internal_error(
                "Gateway amount does not match the stored payment amount",
                code="AMOUNT_MISMATCH",
                details={
                    "payment_id": payment.id,
                    "expected": str(expected),
                    "gateway": str(remote.amount),
                },
            )

    def _settle_success(
        self,
        payment: Payment,
        gateway_payment_id: str,
        signature: Optional[str],
        *,
        source: str,
        now: Optional[datetime] = None,
    ) -> Payment:
        """
        Move an open payment to ``successful`` and confirm its appointment.

        Only the caller whose conditional update matched confirms the
        appointment; everyone else gets the reloaded row back untouched.
        """
        now = ensure_utc(now or utcnow())
        won = False
        outcome: Optional[ConfirmationOutcome] = None

        try:
            with self.transaction():
                won = self.payment_repository.transition_status(
                    payment.id,
                    OPEN_PAYMENT_STATUSES,
                    PaymentStatus.SUCCESSFUL,
                    gateway_payment_id=gateway_payment_id,
                    gateway_signature=signature,
                    settled_at=now,
                    failure_reason=None,
                )
                if won:
                    outcome = self.appointment_service.confirm_after_payment(
                        payment.appointment_id, now
                    )
                    if outcome is not ConfirmationOutcome.CONFIRMED:
                        current = self.payment_repository.refresh(payment)
                        metadata = dict(current.payment_metadata or {})
                        metadata.update(refund_required=True, refund_trigger=outcome.value)
                        self.payment_repository.update(payment.id, payment_metadata=metadata)
        except IntegrityError:
            # gateway payment id already recorded on another live payment
            prometheus_metrics.record_settlement(source, "duplicate")
            self.logger.warning(
                "Gateway payment id already settled elsewhere",
                extra={"payment_id": payment.id, "gateway_payment_id": gateway_payment_id},
            )
            return self.payment_repository.refresh(payment)

        settled = self.payment_repository.refresh(payment)
        if not won:
            prometheus_metrics.record_settlement(source, "duplicate")
            return settled

        if outcome is ConfirmationOutcome.CONFIRMED:
            prometheus_metrics.record_settlement(source, "won")
            self.log_operation(
                "settle_payment",
                payment_id=settled.id,
                appointment_id=settled.appointment_id,
                source=source,
            )
            return settled

        prometheus_metrics.record_settlement(source, "conflict")
        self.logger.warning(
            "Payment captured for an appointment that cannot be confirmed; refunding",
            extra={
                "payment_id": settled.id,
                "appointment_id": settled.appointment_id,
                "outcome": outcome.value if outcome else None,
            },
        )
        try:
            settled = self.issue_refund(
                settled,
                refunded_by_id=SYSTEM_ACTOR_ID,
                reason=f"Automatic refund: {outcome.value if outcome else 'unconfirmed'}",
            )
        except DomainException as exc:
            # refund_required stays set in payment_metadata for an operator retry
            self.logger.error(
                f"Automatic refund failed: {exc.message}",
                extra={"payment_id": settled.id, "code": exc.code},
            )
            settled = self.payment_repository.refresh(settled)
        return settled

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @BaseService.measure_operation("handle_webhook")
    def handle_webhook(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        event_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Process a gateway webhook delivery.

        The signature is checked over the exact received bytes before anything
        is parsed. Verified, well-formed deliveries always produce an
        acknowledgement; only the ``handled`` flag says whether state changed.
        """
        if not signature_header:
            raise validation_error("Missing webhook signature header", code="MISSING_SIGNATURE")
        if not self.gateway.verify_webhook_signature(raw_body, signature_header):
            self.logger.warning("Rejected webhook with an invalid signature")
            raise unauthorized_error("Invalid webhook signature", code="INVALID_SIGNATURE")

        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise validation_error("Malformed webhook payload", code="MALFORMED_PAYLOAD") from exc
        if not isinstance(event, dict) or not event.get("event"):
            raise validation_error("Webhook payload has no event type", code="MALFORMED_PAYLOAD")

        event_type = str(event["event"])
        payload = event.get("payload") if isinstance(event.get("payload"), dict) else {}
        payment_entity = _entity(payload, "payment")
        order_entity = _entity(payload, "order")
        order_id = payment_entity.get("order_id") or order_entity.get("id")
        ledger_id = event_id or hashlib.sha256(raw_body).hexdigest()

        ledger = self._record_delivery(ledger_id, event_type, order_id, event)
        if ledger is None:
            _record_webhook(event_type, "duplicate")
            self.logger.info(
                "Duplicate webhook delivery acknowledged",
                extra={"event_id": ledger_id, "event_type": event_type},
            )
            return {"success": True, "handled": False, "event_type": event_type}

        try:
            handled = self._dispatch_webhook(event_type, order_id, payment_entity)
        except Exception as exc:
            with self.transaction():
                self.webhook_event_repository.mark_status(
                    ledger, WebhookEventStatus.FAILED, error=str(exc)
                )
            _record_webhook(event_type, "error")
            raise

        with self.transaction():
            self.webhook_event_repository.mark_status(
                ledger, WebhookEventStatus.PROCESSED if handled else WebhookEventStatus.IGNORED
            )
        return {"success": True, "handled": handled, "event_type": event_type}

    def _record_delivery(
        self,
        ledger_id: str,
        event_type: str,
        order_id: Optional[str],
        event: Dict[str, Any],
    ) -> Optional[WebhookEvent]:
        """
        Ledger the delivery. Returns None for a delivery that was already
        processed; an earlier delivery that failed is returned for reprocessing.
        """
        try:
            with self.transaction():
                return self.webhook_event_repository.create_event(
                    source=WEBHOOK_SOURCE,
                    event_id=ledger_id,
                    event_type=event_type,
                    gateway_order_id=order_id,
                    payload=event,
                )
        except IntegrityError:
            existing = self.webhook_event_repository.find_by_source_and_event_id(
                WEBHOOK_SOURCE, ledger_id
            )
            if existing is None or existing.status in (
                WebhookEventStatus.PROCESSED,
                WebhookEventStatus.IGNORED,
            ):
                return None
            return existing

    def _payment_for_webhook(self, event_type: str, order_id: Optional[str]) -> Optional[Payment]:
        payment = self.payment_repository.get_by_gateway_order_id(order_id) if order_id else None
        if payment is None:
            _record_webhook(event_type, "unknown_order")
            self.logger.warning(
                "Webhook for unknown order acknowledged",
                extra={"event_type": event_type, "order_id": order_id},
            )
        return payment

    def _dispatch_webhook(
        self, event_type: str, order_id: Optional[str], payment_entity: Dict[str, Any]
    ) -> bool:
        if event_type in REFUND_EVENTS:
            self.logger.info(
                "Gateway refund notification", extra={"event_type": event_type, "order_id": order_id}
            )
            _record_webhook(event_type, "ignored")
            return False
        if event_type not in SUCCESS_EVENTS and event_type not in (AUTHORIZED_EVENT, FAILED_EVENT):
            self.logger.debug("Ignoring webhook event", extra={"event_type": event_type})
            _record_webhook(event_type, "ignored")
            return False

        payment = self._payment_for_webhook(event_type, order_id)
        if payment is None:
            return False

        if event_type in SUCCESS_EVENTS:
            gateway_payment_id = payment_entity.get("id")
            if not gateway_payment_id:
                self.logger.warning(
                    "Success webhook without a payment entity",
                    extra={"event_type": event_type, "order_id": order_id},
                )
                _record_webhook(event_type, "ignored")
                return False
            if payment.status == PaymentStatus.FAILED.value:
                self.logger.warning(
                    "Capture reported for a failed payment; refunding",
                    extra={"payment_id": payment.id, "gateway_payment_id": gateway_payment_id},
                )
                try:
                    self._refund_failed_attempt_capture(payment, str(gateway_payment_id))
                except DomainException as exc:
                    # refund_required stays set in payment_metadata for an operator retry
                    self.logger.error(
                        f"Refund of a capture on a failed payment failed: {exc.message}",
                        extra={"payment_id": payment.id, "code": exc.code},
                    )
                _record_webhook(event_type, "processed")
                return True
            settled = self._settle_success(payment, str(gateway_payment_id), None, source="webhook")
            if settled.status in OPEN_PAYMENT_STATUSES:
                _record_webhook(event_type, "duplicate")
                return False
            _record_webhook(event_type, "processed")
            return True

        if event_type == AUTHORIZED_EVENT:
            with self.transaction():
                moved = self.payment_repository.transition_status(
                    payment.id, [PaymentStatus.INITIATED.value], PaymentStatus.PROCESSING
                )
        else:
            reason = payment_entity.get("error_description") or "payment_failed"
            with self.transaction():
                moved = self.payment_repository.transition_status(
                    payment.id, OPEN_PAYMENT_STATUSES, PaymentStatus.FAILED, failure_reason=reason
                )
            if moved:
                prometheus_metrics.record_settlement("webhook", "failed")

        _record_webhook(event_type, "processed" if moved else "duplicate")
        return moved

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    @BaseService.measure_operation("refund_payment")
    def refund_payment(
        self,
        payment_id: str,
        actor: Actor,
        reason: str,
        amount: Optional[Decimal] = None,
    ) -> Payment:
        reason = (reason or "").strip()
        if not reason:
            raise validation_error("Refund reason is required")

        payment = self._get_payment_or_404(payment_id)
        if not self._has_payment_authority(payment, actor):
            raise forbidden_error("You cannot refund this payment")

        metadata = payment.payment_metadata or {}
        if payment.status == PaymentStatus.FAILED.value and metadata.get("refund_required"):
            return self._refund_failed_attempt_capture(
                payment, str(metadata["captured_gateway_payment_id"])
            )
        return self.issue_refund(payment, refunded_by_id=actor.id, reason=reason, amount=amount)

    def _refund_failed_attempt_capture(self, payment: Payment, gateway_payment_id: str) -> Payment:
        """
        Give back money the gateway captured on an attempt already marked ``failed``.

        The row keeps its ``failed`` status, so the refund lives in
        ``payment_metadata``. ``refund_required`` is set before the gateway
        call and cleared only once the gateway accepted the refund.
        """
        payment = self.payment_repository.refresh(payment)
        metadata = dict(payment.payment_metadata or {})
        already_refunded = metadata.get("captured_gateway_payment_id") == gateway_payment_id
        if already_refunded and metadata.get("captured_refund_id"):
            return payment

        metadata.update(
            refund_required=True,
            refund_trigger="failed_attempt",
            captured_gateway_payment_id=gateway_payment_id,
        )
        with self.transaction():
            self.payment_repository.update(payment.id, payment_metadata=metadata)

        try:
            refund = self._call_gateway(
                "refund",
                self.gateway.refund,
                gateway_payment_id,
                Decimal(payment.amount_total),
                idempotency_key=_capture_refund_key(payment.id, gateway_payment_id),
            )
        except PaymentGatewayError as exc:
            raise external_service_error(
                "Refund could not be processed by the payment gateway",
                code="REFUND_FAILED",
                details={"payment_id": payment.id},
            ) from exc

        metadata.update(
            refund_required=False,
            captured_refund_id=refund.gateway_refund_id,
            captured_refund_amount=str(refund.amount),
        )
        with self.transaction():
            self.payment_repository.update(payment.id, payment_metadata=metadata)

        self.log_operation(
            "refund_failed_attempt_capture",
            payment_id=payment.id,
            gateway_payment_id=gateway_payment_id,
            gateway_refund_id=refund.gateway_refund_id,
        )
        return self.payment_repository.refresh(payment)

    def issue_refund(
        self,
        payment: Payment,
        *,
        refunded_by_id: str,
        reason: str,
        amount: Optional[Decimal] = None,
    ) -> Payment:
        """
        Refund all or part of what is left on a successful payment.

        A conditional update on ``refund_claim`` picks a single caller to talk
        to the gateway. A claim older than ``refund_claim_timeout_seconds`` is
        treated as abandoned and may be taken over. The gateway call carries
        an idempotency key derived from the amount already refunded, so a
        taken-over slice resolves to the refund the first claimer started.

        Partial refunds accumulate in ``refund_amount``; the payment moves
        to ``refunded`` once nothing is left.
        """
        payment = self.payment_repository.refresh(payment)
        if payment.status == PaymentStatus.REFUNDED.value:
            return payment
        if payment.status != PaymentStatus.SUCCESSFUL.value:
            raise validation_error(
                "Only successful payments can be refunded",
                code="PAYMENT_NOT_REFUNDABLE",
                details={"status": payment.status},
            )
        requested = None if amount is None else Decimal(str(amount))
        self._check_refund_amount(payment, requested)

        now = utcnow()
        claim = f"{refunded_by_id}:{ulid.ULID()}"
        with self.transaction():
            claimed = self.payment_repository.claim_refund(
                payment.id,
                claim,
                claimed_at=now,
                stale_before=now - timedelta(seconds=self.config.refund_claim_timeout_seconds),
            )
        if not claimed:
            current = self.payment_repository.refresh(payment)
            if current.status == PaymentStatus.REFUNDED.value:
                return current
            raise conflict_error(
                "A refund for this payment is already in progress",
                code="REFUND_IN_PROGRESS",
                details={"payment_id": payment.id},
            )

        # another refund may have completed between the first read and the claim
        payment = self.payment_repository.refresh(payment)
        try:
            refund_amount = self._check_refund_amount(payment, requested)
        except DomainException:
            with self.transaction():
                self.payment_repository.release_refund_claim(payment.id, claim)
            raise
        already_refunded = Decimal(payment.refund_amount or 0)

        try:
            refund = self._call_gateway(
                "refund",
                self.gateway.refund,
                payment.gateway_payment_id,
                refund_amount,
                idempotency_key=_refund_idempotency_key(payment.id, already_refunded),
            )
        except PaymentGatewayError as exc:
            with self.transaction():
                self.payment_repository.release_refund_claim(payment.id, claim)
            raise external_service_error(
                "Refund could not be processed by the payment gateway",
                code="REFUND_FAILED",
                details={"payment_id": payment.id},
            ) from exc

        refund_total = already_refunded + Decimal(refund.amount).quantize(CENT)
        with self.transaction():
            recorded = self.payment_repository.record_refund(
                payment.id,
                claim,
                refund_total=refund_total,
                fully_refunded=refund_total >= Decimal(payment.amount_total),
                reason=reason,
                refunded_by_id=refunded_by_id,
                refunded_at=utcnow(),
                gateway_refund_id=refund.gateway_refund_id,
            )
        if not recorded:
            # the claim went stale and the taker records the same gateway refund
            self.logger.warning(
                "Refund claim was taken over before the refund was recorded",
                extra={"payment_id": payment.id, "gateway_refund_id": refund.gateway_refund_id},
            )
            return self.payment_repository.refresh(payment)

        self.log_operation(
            "refund_payment",
            payment_id=payment.id,
            amount=str(refund.amount),
            refund_total=str(refund_total),
            refunded_by_id=refunded_by_id,
            gateway_refund_id=refund.gateway_refund_id,
        )
        return self.payment_repository.refresh(payment)

    @staticmethod
    def _check_refund_amount(payment: Payment, requested: Optional[Decimal]) -> Decimal:
        refundable = payment.refundable_amount
        if requested is None:
            return refundable
        if requested < CENT or requested > refundable:
            raise validation_error(
                "Refund amount must be between 0.01 and the refundable amount",
                code="INVALID_REFUND_AMOUNT",
                details={"requested": str(requested), "refundable": str(refundable)},
            )
        return requested

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: str, actor: Actor) -> Payment:
        payment = self._get_payment_or_404(payment_id)
        if payment.customer_id != actor.id and not self._has_payment_authority(payment, actor):
            raise forbidden_error("You do not have access to this payment")
        return payment

    def get_payment_history(
        self,
        customer_id: str,
        status: Optional[PaymentStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Payment], int, int, int]:
        page = max(page, 1)
        per_page = min(max(per_page, 1), MAX_PAGE_SIZE)
        items, total = self.payment_repository.list_for_customer(
            customer_id, status=status, page=page, per_page=per_page
        )
        return items, total, page, per_page

    def get_salon_payment_stats(
        self,
        salon_id: str,
        actor: Actor,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        salon = self.salon_repository.get_by_id(salon_id)
        if salon is None:
            raise not_found_error("Salon not found", details={"salon_id": salon_id})
        allowed = actor.is_platform_admin or (
            actor.role in (RoleName.SALON_OWNER, RoleName.RECEPTIONIST)
            and self.appointment_service.has_salon_authority(salon_id, actor)
        )
        if not allowed:
            raise forbidden_error("You do not have access to this salon's payments")

        stats = self.payment_repository.get_salon_stats(
            salon_id,
            date_from=ensure_utc(date_from) if date_from else None,
            date_to=ensure_utc(date_to) if date_to else None,
        )
        by_status = dict(stats["counts"])
        for status in PaymentStatus:
            by_status.setdefault(status.value, 0)
        return {
            "salon_id": salon_id,
            "by_status": by_status,
            "gross_captured": stats["gross_captured"],
            "platform_fees": stats["platform_fees"],
            "refunded": stats["refunded"],
        }
