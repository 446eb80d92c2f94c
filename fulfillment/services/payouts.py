"""
Vendor payouts over mobile money.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID, uuid4

from django.db import IntegrityError, transaction
from django.utils import timezone

from fulfillment.domain.events import PayoutFailed, PayoutSucceeded
from fulfillment.domain.exceptions import NotFound, PayoutConfigMissing, ValidationError
from fulfillment.domain.order import ItemStatus, PaymentStatus
from fulfillment.domain.payout import (
    Operator,
    PayoutDestination,
    PayoutResult,
    PayoutStatus,
    choose_destination,
)
from fulfillment.infra.gateway import CampayPayoutGateway, PayoutChannel, build_channels, normalize_phone
from fulfillment.infra.models import VendorORM, VendorPayoutORM
from fulfillment.infra.outbox import OutboxRepository, emit_notification
from fulfillment.infra.pii_masker import mask_phone
from fulfillment.infra.repositories import PayoutRepository, VendorRepository


logger = logging.getLogger(__name__)


class VendorPayoutService:
    """Sends vendor earnings to their mobile money account."""

    def __init__(
        self,
        payout_repo: PayoutRepository | None = None,
        vendor_repo: VendorRepository | None = None,
        outbox_repo: OutboxRepository | None = None,
        gateway: CampayPayoutGateway | None = None,
        channels: dict[Operator, PayoutChannel] | None = None,
    ):
        self.payout_repo = payout_repo or PayoutRepository()
        self.vendor_repo = vendor_repo or VendorRepository()
        self.outbox_repo = outbox_repo or OutboxRepository()
        self.gateway = gateway or CampayPayoutGateway()
        self.channels = channels or build_channels(self.gateway)

    def payout(
        self,
        order_id: UUID | None,
        vendor_id: UUID,
        amount: Decimal,
        order_item_id: UUID | None = None,
        method: str | Operator | None = None,
        target_status: str = ItemStatus.PROCESSING.value,
    ) -> PayoutResult:
        """
        Pay a vendor.

        For item-triggered payouts at most one payout exists per
        (item, target status); a repeated call returns the existing payout
        with duplicate=True and never reaches the gateway. Gateway failures
        are recorded on the payout row and returned, not raised. Raises
        PayoutConfigMissing when the vendor has no usable destination.
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError(f"Payout amount must be positive, got {amount}")

        vendor = self.vendor_repo.get_by_id(vendor_id)
        if vendor is None:
            raise NotFound(f"Vendor {vendor_id} not found")

        try:
            with transaction.atomic():
                payout = self.payout_repo.create_pending(
                    vendor_id=vendor_id,
                    order_id=order_id,
                    order_item_id=order_item_id,
                    target_status=target_status,
                    amount=amount,
                )
        except IntegrityError:
            existing = self.payout_repo.for_item(order_item_id, target_status)
            if existing is None:
                raise
            logger.info(
                "payout_duplicate_skipped",
                extra={"payout_id": str(existing.id), "item_id": str(order_item_id)},
            )
            return self._result_from_row(existing, duplicate=True)

        logger.info(
            "payout_claimed",
            extra={
                "payout_id": str(payout.id),
                "vendor_id": str(vendor_id),
                "order_id": str(order_id) if order_id else None,
                "amount": str(amount),
            },
        )

        destination = self._resolve_destination(payout, vendor, method)
        return self._disburse(payout, destination)

    def retry_payout(self, payout_id: UUID) -> PayoutResult:
        """Attempt a failed payout again."""
        payout = self.payout_repo.get_by_id(payout_id)
        if payout is None:
            raise NotFound(f"Payout {payout_id} not found")
        if payout.status != PayoutStatus.FAILED.value:
            raise ValidationError(f"Only failed payouts can be retried (payout is {payout.status})")
        voided = self._voided_reason(payout)
        if voided:
            self.payout_repo.note(payout.id, voided)
            logger.warning("payout_retry_skipped", extra={"payout_id": str(payout.id), "error": voided})
            return self._failed_result(payout, Operator(payout.operator) if payout.operator else None, voided)
        if not self.payout_repo.reopen(payout.id):
            payout.refresh_from_db()
            if payout.status == PayoutStatus.FAILED.value:
                # Voided between the check and the reopen
                return self._failed_result(payout, None, self._voided_reason(payout) or payout.notes)
            # Another worker reopened it first
            return self._result_from_row(payout, duplicate=True)

        payout.refresh_from_db()
        vendor = self.vendor_repo.get_by_id(payout.vendor_id)
        destination = self._resolve_destination(payout, vendor, payout.operator or None)
        logger.info("payout_retry", extra={"payout_id": str(payout.id), "attempt": payout.retry_count + 1})
        return self._disburse(payout, destination)

    def retry_failed_payouts(self, limit: int = 50, max_retries: int | None = None) -> list[PayoutResult]:
        """Retry failed payouts, oldest first."""
        results = []
        for payout in self.payout_repo.failed(limit=limit, max_retries=max_retries):
            try:
                results.append(self.retry_payout(payout.id))
            except PayoutConfigMissing as e:
                results.append(
                    PayoutResult(
                        payout_id=payout.id,
                        vendor_id=payout.vendor_id,
                        order_id=payout.order_id,
                        amount=payout.amount,
                        status=PayoutStatus.FAILED,
                        error=e.message,
                    )
                )
        return results

    def reconcile_pending_payouts(self, limit: int = 100) -> dict:
        """Settle pending payouts from the gateway's transaction status."""
        counts = {"completed": 0, "failed": 0, "pending": 0}

        for payout in self.payout_repo.pending_with_reference(limit):
            try:
                status = self.gateway.transaction_status(payout.reference)
            except Exception as e:
                logger.warning(
                    "payout_status_check_failed",
                    extra={"payout_id": str(payout.id), "reference": payout.reference, "error": str(e)},
                )
                counts["pending"] += 1
                continue

            if status == "SUCCESSFUL":
                self._complete(payout, payout.amount, payout.reference, payout.synthetic)
                counts["completed"] += 1
            elif status in ("FAILED", "ERROR"):
                self._fail(payout, f"Gateway reported status {status}")
                counts["failed"] += 1
            else:
                counts["pending"] += 1

        logger.info("payouts_reconciled", extra={"count": counts["completed"] + counts["failed"]})
        return counts

    def vendor_earnings(self, vendor_id: UUID) -> dict:
        """Balance, lifetime earnings and payout totals for a vendor."""
        vendor = self.vendor_repo.get_by_id(vendor_id)
        if vendor is None:
            raise NotFound(f"Vendor {vendor_id} not found")

        totals = self.payout_repo.totals_for_vendor(vendor_id)
        zero = (Decimal("0.00"), 0)
        return {
            "vendorId": vendor.id,
            "balance": vendor.balance,
            "totalEarnings": vendor.total_earnings,
            "lastPayoutDate": vendor.last_payout_date,
            "lastPayoutAmount": vendor.last_payout_amount,
            "completedPayouts": totals.get(PayoutStatus.COMPLETED.value, zero)[1],
            "pendingAmount": totals.get(PayoutStatus.PENDING.value, zero)[0],
            "failedPayouts": totals.get(PayoutStatus.FAILED.value, zero)[1],
        }

    def _resolve_destination(self, payout: VendorPayoutORM, vendor: VendorORM, method) -> PayoutDestination:
        try:
            return choose_destination(
                vendor.mobile_money_accounts,
                vendor.has_payment_setup,
                method or vendor.preferred_payout_method or None,
            )
        except PayoutConfigMissing as e:
            self._fail(payout, e.message)
            raise

    def _disburse(self, payout: VendorPayoutORM, destination: PayoutDestination) -> PayoutResult:
        channel = self.channels[destination.operator]
        reference = f"payout_{payout.id.hex}"

        try:
            phone = normalize_phone(destination.phone, self.gateway.config.country_code)
            self.payout_repo.mark_attempt(payout.id, reference, destination.operator.value, phone)
            result = channel.disburse(payout.amount, phone, reference)
        except Exception as e:
            logger.error(
                "payout_gateway_error",
                extra={"payout_id": str(payout.id), "error": str(e)},
                exc_info=True,
            )
            self._fail(payout, str(e))
            return self._failed_result(payout, destination.operator, str(e))

        logger.info(
            "payout_disbursed",
            extra={
                "payout_id": str(payout.id),
                "reference": result.reference,
                "phone_number": mask_phone(phone),
                "status": result.status,
            },
        )

        if result.failed:
            error = f"Gateway reported status {result.status}"
            self._fail(payout, error)
            return self._failed_result(payout, destination.operator, error)

        if not result.completed:
            self.payout_repo.mark_attempt(
                payout.id, result.reference, destination.operator.value, phone, amount=result.amount
            )
            return PayoutResult(
                payout_id=payout.id,
                vendor_id=payout.vendor_id,
                order_id=payout.order_id,
                amount=result.amount,
                status=PayoutStatus.PENDING,
                reference=result.reference,
                operator=destination.operator,
            )

        self._complete(payout, result.amount, result.reference, result.synthetic, destination.operator.value)
        return PayoutResult(
            payout_id=payout.id,
            vendor_id=payout.vendor_id,
            order_id=payout.order_id,
            amount=result.amount,
            status=PayoutStatus.COMPLETED,
            reference=result.reference,
            operator=destination.operator,
            synthetic=result.synthetic,
        )

    def _complete(
        self,
        payout: VendorPayoutORM,
        amount: Decimal,
        reference: str,
        synthetic: bool,
        operator: str | None = None,
    ) -> None:
        with transaction.atomic():
            if not self.payout_repo.mark_completed(payout.id, amount, reference, synthetic):
                return
            self.vendor_repo.credit_payout(payout.vendor_id, amount, timezone.now())

        logger.info(
            "payout_completed",
            extra={"payout_id": str(payout.id), "vendor_id": str(payout.vendor_id), "amount": str(amount)},
        )
        event = PayoutSucceeded(
            event_id=uuid4(),
            aggregate_id=payout.id,
            event_type="PayoutSucceeded",
            vendor_id=payout.vendor_id,
            order_id=payout.order_id,
            payout_id=payout.id,
            amount=amount,
            reference=reference,
            operator=operator or payout.operator,
        )
        event.occurred_at = timezone.now().isoformat()
        emit_notification(self.outbox_repo, event, "VendorPayout")

    def _fail(self, payout: VendorPayoutORM, error: str) -> None:
        self.payout_repo.mark_failed(payout.id, error)
        logger.warning(
            "payout_failed",
            extra={"payout_id": str(payout.id), "vendor_id": str(payout.vendor_id), "error": error},
        )
        event = PayoutFailed(
            event_id=uuid4(),
            aggregate_id=payout.id,
            event_type="PayoutFailed",
            vendor_id=payout.vendor_id,
            order_id=payout.order_id,
            payout_id=payout.id,
            amount=payout.amount,
            error=error,
        )
        event.occurred_at = timezone.now().isoformat()
        emit_notification(self.outbox_repo, event, "VendorPayout")

    def _failed_result(self, payout: VendorPayoutORM, operator: Operator | None, error: str) -> PayoutResult:
        return PayoutResult(
            payout_id=payout.id,
            vendor_id=payout.vendor_id,
            order_id=payout.order_id,
            amount=payout.amount,
            status=PayoutStatus.FAILED,
            operator=operator,
            error=error,
        )

    @staticmethod
    def _voided_reason(payout: VendorPayoutORM) -> str:
        """Why a failed payout must not be paid any more, or an empty string."""
        if payout.order_id and payout.order.payment_status == PaymentStatus.REFUNDED.value:
            return "Order was refunded; payout cancelled"
        if payout.order_item_id and payout.order_item.status == ItemStatus.CANCELLED.value:
            return "Order item was cancelled; payout cancelled"
        return ""

    def _result_from_row(self, payout: VendorPayoutORM, duplicate: bool = False) -> PayoutResult:
        return PayoutResult(
            payout_id=payout.id,
            vendor_id=payout.vendor_id,
            order_id=payout.order_id,
            amount=payout.amount,
            status=PayoutStatus(payout.status),
            reference=payout.reference or None,
            operator=Operator(payout.operator) if payout.operator else None,
            error=payout.notes or None,
            synthetic=payout.synthetic,
            duplicate=duplicate,
        )
