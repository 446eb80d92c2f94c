"""
Relay delivering queued outbox events to the notification dispatcher.
"""
from __future__ import annotations

import logging

from django.db import transaction

from fulfillment.conf import FulfillmentSettings
from fulfillment.domain.events import NOTIFICATION_ROUTES
from fulfillment.infra.notifications import NotificationDispatcher, get_dispatcher
from fulfillment.infra.outbox import OutboxEvent, OutboxRepository


logger = logging.getLogger(__name__)


class NotificationRelay:
    """Drains the outbox into the notification dispatcher."""

    def __init__(
        self,
        outbox_repo: OutboxRepository | None = None,
        dispatcher: NotificationDispatcher | None = None,
        config: FulfillmentSettings | None = None,
    ):
        self.outbox_repo = outbox_repo or OutboxRepository()
        self.dispatcher = dispatcher or get_dispatcher()
        self.config = config or FulfillmentSettings.load()

    def process_outbox_events(self, limit: int = 100) -> int:
        """Deliver unprocessed events; returns how many were delivered."""
        events = self.outbox_repo.get_unprocessed_events(
            limit=limit,
            max_retries=self.config.outbox_max_retries,
        )
        processed_count = 0

        for event_orm in events:
            try:
                with transaction.atomic():
                    self._process_event(event_orm)
                    self.outbox_repo.mark_processed(event_orm.id)
                processed_count += 1
            except Exception as e:
                self.outbox_repo.increment_retry(event_orm.id, error=str(e))
                logger.error(
                    "relay_error",
                    extra={
                        "event_id": str(event_orm.id),
                        "operation": event_orm.event_type,
                        "error": str(e),
                    },
                    exc_info=True,
                )

        return processed_count

    def _process_event(self, event_orm: OutboxEvent) -> None:
        route = NOTIFICATION_ROUTES.get(event_orm.event_type)
        if route is None:
            logger.warning(
                "relay_unrouted_event",
                extra={"event_id": str(event_orm.id), "operation": event_orm.event_type},
            )
            return

        recipient_type, recipient_field, template = route
        data = event_orm.event_data
        self.dispatcher.send(recipient_type, data[recipient_field], template, data)
