"""
Transactional Outbox pattern implementation for notifications.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID, uuid4

from django.db import models, transaction
from django.db.models import F
from django.utils import timezone

from fulfillment.domain.events import DomainEvent
from fulfillment.infra.models import TimeStampedModel


logger = logging.getLogger(__name__)


class OutboxEvent(TimeStampedModel):
    """Outbox event for transactional outbox pattern."""
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    aggregate_id = models.UUIDField()
    aggregate_type = models.CharField(max_length=50)
    event_type = models.CharField(max_length=100)
    event_data = models.JSONField()
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    retry_count = models.IntegerField(default=0)
    last_error = models.TextField(blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=("processed", "created_at")),
            models.Index(fields=("aggregate_id", "aggregate_type")),
        ]


class OutboxRepository:
    """Repository for outbox events."""

    @transaction.atomic
    def add_event(self, event: DomainEvent, aggregate_type: str) -> UUID:
        """Add event to outbox (within transaction)."""
        if not event.occurred_at:
            event.occurred_at = timezone.now().isoformat()
        event_data = self._serialize_event(event)

        outbox_event = OutboxEvent.objects.create(
            aggregate_id=event.aggregate_id,
            aggregate_type=aggregate_type,
            event_type=event.event_type,
            event_data=event_data,
        )
        return outbox_event.id

    def get_unprocessed_events(self, limit: int = 100, max_retries: int | None = None) -> list[OutboxEvent]:
        """Get unprocessed events, oldest first, skipping exhausted ones."""
        qs = OutboxEvent.objects.filter(processed=False)
        if max_retries is not None:
            qs = qs.filter(retry_count__lt=max_retries)
        return list(qs.order_by("created_at")[:limit])

    def mark_processed(self, event_id: UUID) -> None:
        """Mark event as processed."""
        OutboxEvent.objects.filter(id=event_id).update(
            processed=True,
            processed_at=timezone.now(),
        )

    def increment_retry(self, event_id: UUID, error: str = "") -> None:
        """Increment retry count."""
        OutboxEvent.objects.filter(id=event_id).update(
            retry_count=F("retry_count") + 1,
            last_error=error[:2000],
        )

    def _serialize_event(self, event: DomainEvent) -> dict:
        """Serialize event to dict."""
        data = {
            "event_id": str(event.event_id),
            "aggregate_id": str(event.aggregate_id),
            "event_type": event.event_type,
            "version": event.version.value,
            "occurred_at": event.occurred_at,
        }
        for key, value in event.__dict__.items():
            if key not in ("event_id", "aggregate_id", "event_type", "version", "occurred_at"):
                if isinstance(value, UUID):
                    data[key] = str(value)
                elif isinstance(value, Decimal):
                    data[key] = str(value)
                else:
                    data[key] = value
        return data


def emit_notification(outbox_repo: OutboxRepository, event: DomainEvent, aggregate_type: str) -> bool:
    """
    Queue a notification without letting a failure escape.

    Runs in its own savepoint so a failed insert cannot poison an enclosing
    transaction. Returns False (and logs) when the event could not be queued.
    """
    try:
        with transaction.atomic():
            outbox_repo.add_event(event, aggregate_type)
        return True
    except Exception as e:
        logger.error(
            "notification_enqueue_failed",
            extra={
                "operation": event.event_type,
                "error": str(e),
            },
            exc_info=True,
        )
        return False
