"""
Stock ledger: decrements and rate-limited depletion alerts.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID, uuid4

from django.utils import timezone

from fulfillment.conf import FulfillmentSettings
from fulfillment.domain.events import ProductStockLevel
from fulfillment.domain.exceptions import NotFound, ValidationError
from fulfillment.infra.models import ProductORM
from fulfillment.infra.outbox import OutboxRepository, emit_notification
from fulfillment.infra.repositories import ProductRepository


logger = logging.getLogger(__name__)


class StockLedger:
    """Product stock decrements and depletion alerts."""

    def __init__(
        self,
        product_repo: ProductRepository | None = None,
        outbox_repo: OutboxRepository | None = None,
        config: FulfillmentSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.product_repo = product_repo or ProductRepository()
        self.outbox_repo = outbox_repo or OutboxRepository()
        self.config = config or FulfillmentSettings.load()
        self.sleep = sleep

    def decrement(self, product_id: UUID, quantity_ordered: int) -> int:
        """
        Lower stock by the ordered quantity (never below zero).

        Returns the new stock level. Queues a low/out-of-stock alert when the
        new level calls for one and no alert went out inside the window.
        """
        if quantity_ordered <= 0:
            raise ValidationError("Quantity must be positive")

        new_stock = self.product_repo.decrement_stock(product_id, quantity_ordered)
        if new_stock is None:
            raise NotFound(f"Product {product_id} not found")

        logger.info(
            "stock_decremented",
            extra={"product_id": str(product_id), "current_stock": new_stock},
        )

        if new_stock in self.config.low_stock_levels:
            product = self.product_repo.get_by_id(product_id)
            self._notify_if_due(product, new_stock)

        return new_stock

    def check_all_low_stock(self, now: datetime | None = None) -> int:
        """Alert vendors about every depleted product; returns alerts queued."""
        now = now or timezone.now()
        products = self.product_repo.depleted(max(self.config.low_stock_levels))
        sent = 0

        for index, product in enumerate(products):
            if self._notify_if_due(product, product.stock_quantity, now=now):
                sent += 1
            if self.config.stock_check_delay > 0 and index < len(products) - 1:
                self.sleep(self.config.stock_check_delay)

        logger.info("low_stock_check_completed", extra={"count": sent})
        return sent

    def low_stock_products(self, vendor_id: UUID, threshold: int | None = None) -> list[ProductORM]:
        """A vendor's products at or below the threshold, lowest stock first."""
        if threshold is None:
            threshold = self.config.low_stock_threshold
        return self.product_repo.low_stock_for_vendor(vendor_id, threshold)

    def _notify_if_due(self, product: ProductORM, stock: int, now: datetime | None = None) -> bool:
        now = now or timezone.now()
        window = timedelta(seconds=self.config.stock_notification_window)
        if not self.product_repo.stamp_stock_notification(product.id, now, window):
            return False

        event = ProductStockLevel(
            event_id=uuid4(),
            aggregate_id=product.id,
            event_type="ProductOutOfStock" if stock == 0 else "ProductLowStock",
            vendor_id=product.vendor_id,
            product_id=product.id,
            product_name=product.name,
            current_stock=stock,
        )
        event.occurred_at = now.isoformat()
        return emit_notification(self.outbox_repo, event, "Product")
