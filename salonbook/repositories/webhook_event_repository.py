"""Repository helpers for the webhook event ledger."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        """Find webhook event by source and external event ID."""
        try:
            result = (
                self.db.query(WebhookEvent)
                .filter(WebhookEvent.source == source, WebhookEvent.event_id == event_id)
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load webhook event %s: %s", event_id, str(exc))
            raise RepositoryException("Failed to load webhook event") from exc
        return cast(WebhookEvent | None, result)

    def create_event(
        self,
        *,
        source: str,
        event_id: str,
        event_type: str,
        gateway_order_id: str | None,
        payload: dict,
    ) -> WebhookEvent:
        """
        Insert a ledger row in ``received`` state.

        A duplicate ``(source, event_id)`` surfaces as IntegrityError so the
        caller can roll back and load the earlier delivery.
        """
        return self.create(
            source=source,
            event_id=event_id,
            event_type=event_type,
            gateway_order_id=gateway_order_id,
            payload=payload,
            status=WebhookEventStatus.RECEIVED,
        )

    def mark_status(self, event: WebhookEvent, status: str, error: str | None = None) -> None:
        event.status = status
        event.processing_error = error
        event.processed_at = _now_utc()
        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to update webhook event %s: %s", event.event_id, str(exc))
            raise RepositoryException("Failed to update webhook event") from exc
