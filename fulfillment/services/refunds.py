"""
Refunds: the automatic sweep of stalled paid orders and manual refunds.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable
from uuid import UUID, uuid4

from django.db import IntegrityError, transaction
from django.utils import timezone

from fulfillment.conf import FulfillmentSettings
from fulfillment.domain.events import CustomerOrderRefunded
from fulfillment.domain.exceptions import NotFound, ValidationError
from fulfillment.domain.order import SYSTEM_ACTOR, ItemStatus, PaymentStatus
from fulfillment.infra.locks import advisory_lock
from fulfillment.infra.models import OrderORM, RefundORM
from fulfillment.infra.outbox import OutboxRepository, emit_notification
from fulfillment.infra.repositories import OrderRepository, RefundRepository
from fulfillment.services.fulfillment import OrderFulfillmentService


logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "fulfillment-refund-sweep"

METHOD_AUTOMATIC = "automatic"
METHOD_MANUAL = "manual"


@dataclass
class RefundOutcome:
    order_id: UUID
    status: str  # refunded, skipped or failed
    refund_id: UUID | None = None
    amount: Decimal | None = None
    delay_days: int | None = None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "status": self.status,
            "refundId": self.refund_id,
            "amount": self.amount,
            "delayDays": self.delay_days,
            "detail": self.detail,
        }


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    outcomes: list[RefundOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def refunded(self) -> int:
        return self._count("refunded")

    @property
    def failed(self) -> int:
        return self._count("failed")

    def to_dict(self) -> dict:
        return {
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "skipped": self.skipped,
            "checked": len(self.outcomes),
            "refunded": self.refunded,
            "failed": self.failed,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


class RefundService:
    """Service for refunding paid orders."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        refund_repo: RefundRepository | None = None,
        outbox_repo: OutboxRepository | None = None,
        fulfillment_service: OrderFulfillmentService | None = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.refund_repo = refund_repo or RefundRepository()
        self.outbox_repo = outbox_repo or OutboxRepository()
        self.fulfillment_service = fulfillment_service or OrderFulfillmentService(
            order_repo=self.order_repo,
            outbox_repo=self.outbox_repo,
        )

    def refund_order(
        self,
        order_id: UUID,
        reason: str,
        admin_id: str,
        amount: Decimal | str | None = None,
    ) -> RefundORM:
        """Refund a paid order on an administrator's request."""
        order = OrderORM.objects.filter(id=order_id).first()
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if not reason:
            raise ValidationError("Refund reason is required")

        if amount is None:
            amount = order.total_amount
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid refund amount: {amount}") from None
        if amount <= 0 or amount > order.total_amount:
            raise ValidationError("Refund amount must be positive and at most the order total")

        refund = self.record_refund(
            order_id=order.id,
            amount=amount,
            reason=reason,
            method=METHOD_MANUAL,
            processed_by=str(admin_id),
        )
        if refund is None:
            raise ValidationError(f"Order {order_id} cannot be refunded (already refunded or not paid)")
        return refund

    def record_refund(
        self,
        order_id: UUID,
        amount: Decimal,
        reason: str,
        method: str,
        processed_by: str,
        delay_days: int | None = None,
        require_pending: bool = False,
    ) -> RefundORM | None:
        """
        Create the refund and cancel the order with all its items.

        Returns None without changing anything when the order already has a
        refund, is not paid, or (with require_pending) has moved on from
        pending.
        """
        with transaction.atomic():
            order = self.order_repo.lock_order(order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            if order.payment_status != PaymentStatus.COMPLETED.value:
                return None
            if require_pending and order.status != ItemStatus.PENDING.value:
                return None
            if self.refund_repo.exists_for_order(order_id):
                return None

            try:
                with transaction.atomic():
                    refund = self.refund_repo.create(
                        order_id=order_id,
                        customer_id=order.customer_id,
                        amount=amount,
                        reason=reason,
                        status="processed",
                        method=method,
                        processed_by=processed_by,
                        processed_at=timezone.now(),
                    )
            except IntegrityError:
                return None

            self.order_repo.mark_refunded(order_id)
            self.order_repo.cancel_items(order_id)
            self.fulfillment_service.recompute_order_status(order_id)

        logger.info(
            "order_refunded",
            extra={
                "order_id": str(order_id),
                "refund_id": str(refund.id),
                "amount": str(amount),
                "operation": method,
            },
        )

        event = CustomerOrderRefunded(
            event_id=uuid4(),
            aggregate_id=order_id,
            event_type="CustomerOrderRefunded",
            customer_id=order.customer_id,
            order_id=order_id,
            refund_id=refund.id,
            amount=amount,
            reason=reason,
            delay_days=delay_days,
        )
        event.occurred_at = timezone.now().isoformat()
        emit_notification(self.outbox_repo, event, "Order")
        return refund


class RefundReconciliationJob:
    """Refunds paid orders that no vendor started processing in time."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        refund_service: RefundService | None = None,
        config: FulfillmentSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.refund_service = refund_service or RefundService(order_repo=self.order_repo)
        self.config = config or FulfillmentSettings.load()
        self.sleep = sleep

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """
        Refund every stalled order once.

        Returns immediately with skipped=True when another sweep holds the
        lock. A failing order is recorded in the report and does not stop
        the sweep.
        """
        now = now or timezone.now()
        report = SweepReport(started_at=now)

        with advisory_lock(SWEEP_LOCK_NAME) as acquired:
            if not acquired:
                logger.info("refund_sweep_already_running")
                report.skipped = True
                report.finished_at = timezone.now()
                return report

            cutoff = now - timedelta(days=self.config.refund_after_days)
            orders = self.order_repo.stalled_paid_orders(cutoff)
            logger.info("refund_sweep_started", extra={"count": len(orders)})

            for index, order in enumerate(orders):
                report.outcomes.append(self._process(order, now))
                if self.config.sweep_inter_order_delay > 0 and index < len(orders) - 1:
                    self.sleep(self.config.sweep_inter_order_delay)

        report.finished_at = timezone.now()
        logger.info(
            "refund_sweep_completed",
            extra={"count": report.refunded, "failed": report.failed},
        )
        return report

    def _process(self, order: OrderORM, now: datetime) -> RefundOutcome:
        delay_days = (now - order.created_at) // timedelta(days=1)
        lease = timedelta(seconds=self.config.refund_claim_lease)

        if not self.order_repo.claim_for_refund(order.id, now, lease):
            return RefundOutcome(order_id=order.id, status="skipped", delay_days=delay_days,
                                 detail="Claimed by another worker")

        try:
            refund = self.refund_service.record_refund(
                order_id=order.id,
                amount=order.total_amount,
                reason=f"Automatic refund - Order delayed for {delay_days} days",
                method=METHOD_AUTOMATIC,
                processed_by=SYSTEM_ACTOR,
                delay_days=delay_days,
                require_pending=True,
            )
        except Exception as e:
            self.order_repo.release_refund_claim(order.id)
            logger.error(
                "refund_failed",
                extra={"order_id": str(order.id), "error": str(e)},
                exc_info=True,
            )
            return RefundOutcome(order_id=order.id, status="failed", delay_days=delay_days, detail=str(e))

        if refund is None:
            self.order_repo.release_refund_claim(order.id)
            return RefundOutcome(order_id=order.id, status="skipped", delay_days=delay_days,
                                 detail="Already refunded or no longer pending")

        return RefundOutcome(
            order_id=order.id,
            status="refunded",
            refund_id=refund.id,
            amount=refund.amount,
            delay_days=delay_days,
        )
