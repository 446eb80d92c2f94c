"""
Infrastructure repositories for the fulfillment aggregates.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from django.db.models import F, Q, Sum, Count
from django.db.models.functions import Greatest

from fulfillment.domain.order import ItemStatus, Order, OrderItem, PaymentStatus
from fulfillment.domain.payout import PayoutStatus
from fulfillment.infra.models import (
    CustomerORM,
    OrderItemORM,
    OrderORM,
    ProductORM,
    RefundORM,
    VendorORM,
    VendorPayoutORM,
)


class CustomerRepository:
    """Repository for Customer entities."""

    def get_by_id(self, customer_id: UUID) -> CustomerORM | None:
        return CustomerORM.objects.filter(id=customer_id).first()

    def create(self, name: str, email: str = "") -> UUID:
        return CustomerORM.objects.create(name=name, email=email).id


class VendorRepository:
    """Repository for Vendor entities."""

    def get_by_id(self, vendor_id: UUID) -> VendorORM | None:
        return VendorORM.objects.filter(id=vendor_id).first()

    def credit_payout(self, vendor_id: UUID, amount: Decimal, paid_at: datetime) -> None:
        """Add a completed payout to the vendor's accumulators in place."""
        VendorORM.objects.filter(id=vendor_id).update(
            balance=F("balance") + amount,
            total_earnings=F("total_earnings") + amount,
            last_payout_date=paid_at,
            last_payout_amount=amount,
        )


class ProductRepository:
    """Repository for Product stock."""

    def get_by_id(self, product_id: UUID) -> ProductORM | None:
        return ProductORM.objects.filter(id=product_id).first()

    def decrement_stock(self, product_id: UUID, quantity: int) -> int | None:
        """Atomically lower stock, floored at zero. Returns the new stock, None if unknown."""
        updated = ProductORM.objects.filter(id=product_id).update(
            stock_quantity=Greatest(F("stock_quantity") - quantity, 0),
        )
        if not updated:
            return None
        return ProductORM.objects.values_list("stock_quantity", flat=True).get(id=product_id)

    def stamp_stock_notification(self, product_id: UUID, now: datetime, window: timedelta) -> bool:
        """
        Stamp last_stock_notification unless it is inside the suppression window.

        Returns True for exactly one caller per window.
        """
        updated = ProductORM.objects.filter(id=product_id).filter(
            Q(last_stock_notification__isnull=True) | Q(last_stock_notification__lt=now - window)
        ).update(last_stock_notification=now)
        return updated == 1

    def depleted(self, max_level: int) -> list[ProductORM]:
        return list(
            ProductORM.objects
            .filter(stock_quantity__lte=max_level)
            .order_by("stock_quantity", "name")
        )

    def low_stock_for_vendor(self, vendor_id: UUID, threshold: int) -> list[ProductORM]:
        return list(
            ProductORM.objects
            .filter(vendor_id=vendor_id, stock_quantity__lte=threshold)
            .order_by("stock_quantity", "name")
        )


class OrderRepository:
    """Repository for Order aggregate."""

    def get_by_id(self, order_id: UUID) -> Order | None:
        """Get order by ID with items."""
        try:
            order_orm = (
                OrderORM.objects
                .prefetch_related("items")
                .get(id=order_id)
            )
            return self._to_domain(order_orm)
        except OrderORM.DoesNotExist:
            return None

    def get_by_customer(self, customer_id: UUID, limit: int = 50, offset: int = 0) -> list[Order]:
        orders_orm = (
            OrderORM.objects
            .filter(customer_id=customer_id)
            .prefetch_related("items")
            .order_by("-created_at")[offset:offset + limit]
        )
        return [self._to_domain(order_orm) for order_orm in orders_orm]

    @transaction.atomic
    def create(self, order: Order) -> UUID:
        """Insert the order and all its items; a failing item rolls back the order."""
        order_orm = OrderORM.objects.create(
            id=order.id,
            customer_id=order.customer_id,
            status=order.status.value,
            fulfillment_status=order.fulfillment_status,
            payment_status=order.payment_status.value,
            subtotal=order.subtotal,
            shipping_fee=order.shipping_fee,
            total_amount=order.total_amount,
            shipping_address=order.shipping_address,
            billing_address=order.billing_address,
        )
        for item in order.items:
            OrderItemORM.objects.create(
                id=item.id,
                order=order_orm,
                vendor_id=item.vendor_id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
                status=item.status.value,
            )
        order.created_at = order_orm.created_at
        return order_orm.id

    def set_payment_status(self, order_id: UUID, payment_status: PaymentStatus) -> bool:
        return OrderORM.objects.filter(id=order_id).update(payment_status=payment_status.value) == 1

    def lock_item(self, item_id: UUID) -> OrderItemORM | None:
        """Item row locked for the rest of the transaction, with its product."""
        return (
            OrderItemORM.objects
            .select_for_update(of=("self",))
            .select_related("product", "order")
            .filter(id=item_id)
            .first()
        )

    def order_id_for_item(self, item_id: UUID) -> UUID | None:
        return OrderItemORM.objects.filter(id=item_id).values_list("order_id", flat=True).first()

    def lock_order(self, order_id: UUID) -> OrderORM | None:
        return OrderORM.objects.select_for_update().filter(id=order_id).first()

    def item_statuses(self, order_id: UUID) -> list[str]:
        return list(OrderItemORM.objects.filter(order_id=order_id).values_list("status", flat=True))

    def set_status(self, order_id: UUID, status: str | None, fulfillment_status: str) -> None:
        fields = {"fulfillment_status": fulfillment_status}
        if status is not None:
            fields["status"] = status
        OrderORM.objects.filter(id=order_id).update(**fields)

    def mark_refunded(self, order_id: UUID) -> None:
        OrderORM.objects.filter(id=order_id).update(
            status=ItemStatus.CANCELLED.value,
            fulfillment_status=ItemStatus.CANCELLED.value,
            payment_status=PaymentStatus.REFUNDED.value,
            refund_claimed_at=None,
        )

    def cancel_items(self, order_id: UUID) -> int:
        return OrderItemORM.objects.filter(order_id=order_id).update(status=ItemStatus.CANCELLED.value)

    def stalled_paid_orders(self, cutoff: datetime) -> list[OrderORM]:
        """Paid orders still pending that were created before the cutoff."""
        return list(
            OrderORM.objects
            .filter(
                status=ItemStatus.PENDING.value,
                payment_status=PaymentStatus.COMPLETED.value,
                created_at__lt=cutoff,
            )
            .order_by("created_at")
        )

    def claim_for_refund(self, order_id: UUID, now: datetime, lease: timedelta) -> bool:
        """Take the order's refund claim unless another worker holds a live one."""
        updated = OrderORM.objects.filter(id=order_id).filter(
            Q(refund_claimed_at__isnull=True) | Q(refund_claimed_at__lt=now - lease)
        ).update(refund_claimed_at=now)
        return updated == 1

    def release_refund_claim(self, order_id: UUID) -> None:
        OrderORM.objects.filter(id=order_id).update(refund_claimed_at=None)

    def _to_domain(self, order_orm: OrderORM) -> Order:
        items = [
            OrderItem(
                id=item_orm.id,
                product_id=item_orm.product_id,
                vendor_id=item_orm.vendor_id,
                quantity=item_orm.quantity,
                unit_price=item_orm.unit_price,
                status=ItemStatus(item_orm.status),
            )
            for item_orm in order_orm.items.all()
        ]
        return Order(
            id=order_orm.id,
            customer_id=order_orm.customer_id,
            items=items,
            shipping_address=order_orm.shipping_address,
            billing_address=order_orm.billing_address,
            shipping_fee=order_orm.shipping_fee,
            status=ItemStatus(order_orm.status),
            fulfillment_status=order_orm.fulfillment_status,
            payment_status=PaymentStatus(order_orm.payment_status),
            created_at=order_orm.created_at,
        )


def _voided() -> Q:
    """Payouts whose order was refunded or whose item was cancelled since they were claimed."""
    return Q(order__payment_status=PaymentStatus.REFUNDED.value) | Q(order_item__status=ItemStatus.CANCELLED.value)


class PayoutRepository:
    """Repository for vendor payout rows."""

    def get_by_id(self, payout_id: UUID) -> VendorPayoutORM | None:
        return VendorPayoutORM.objects.filter(id=payout_id).first()

    def for_item(self, order_item_id: UUID, target_status: str) -> VendorPayoutORM | None:
        return VendorPayoutORM.objects.filter(order_item_id=order_item_id, target_status=target_status).first()

    def create_pending(
        self,
        vendor_id: UUID,
        order_id: UUID | None,
        order_item_id: UUID | None,
        target_status: str,
        amount: Decimal,
    ) -> VendorPayoutORM:
        """Insert the claim row; raises IntegrityError if the item already has one."""
        return VendorPayoutORM.objects.create(
            vendor_id=vendor_id,
            order_id=order_id,
            order_item_id=order_item_id,
            target_status=target_status,
            amount=amount,
            status=PayoutStatus.PENDING.value,
        )

    def mark_attempt(
        self,
        payout_id: UUID,
        reference: str,
        operator: str,
        phone_number: str,
        amount: Decimal | None = None,
    ) -> None:
        fields = {"reference": reference, "operator": operator, "phone_number": phone_number}
        if amount is not None:
            fields["amount"] = amount
        VendorPayoutORM.objects.filter(id=payout_id).update(**fields)

    def note(self, payout_id: UUID, notes: str) -> None:
        VendorPayoutORM.objects.filter(id=payout_id).update(notes=notes)

    def mark_failed(self, payout_id: UUID, notes: str) -> None:
        VendorPayoutORM.objects.filter(id=payout_id).update(
            status=PayoutStatus.FAILED.value,
            notes=notes,
            retry_count=F("retry_count") + 1,
        )

    def mark_completed(self, payout_id: UUID, amount: Decimal, reference: str, synthetic: bool) -> bool:
        """Move a pending row to completed; False if it was not pending."""
        updated = VendorPayoutORM.objects.filter(
            id=payout_id,
            status=PayoutStatus.PENDING.value,
        ).update(
            status=PayoutStatus.COMPLETED.value,
            amount=amount,
            reference=reference,
            synthetic=synthetic,
            notes="",
        )
        return updated == 1

    def reopen(self, payout_id: UUID) -> bool:
        """Move a failed row back to pending for another attempt."""
        updated = VendorPayoutORM.objects.filter(
            id=payout_id,
            status=PayoutStatus.FAILED.value,
        ).exclude(_voided()).update(status=PayoutStatus.PENDING.value)
        return updated == 1

    def failed(self, limit: int, max_retries: int | None = None) -> list[VendorPayoutORM]:
        qs = VendorPayoutORM.objects.filter(status=PayoutStatus.FAILED.value).exclude(_voided())
        if max_retries is not None:
            qs = qs.filter(retry_count__lt=max_retries)
        return list(qs.order_by("created_at")[:limit])

    def pending_with_reference(self, limit: int) -> list[VendorPayoutORM]:
        return list(
            VendorPayoutORM.objects
            .filter(status=PayoutStatus.PENDING.value)
            .exclude(reference="")
            .order_by("created_at")[:limit]
        )

    def totals_for_vendor(self, vendor_id: UUID) -> dict:
        rows = (
            VendorPayoutORM.objects
            .filter(vendor_id=vendor_id)
            .values("status")
            .annotate(total=Sum("amount"), count=Count("id"))
        )
        return {row["status"]: (row["total"] or Decimal("0.00"), row["count"]) for row in rows}


class RefundRepository:
    """Repository for refunds."""

    def exists_for_order(self, order_id: UUID) -> bool:
        return RefundORM.objects.filter(order_id=order_id).exists()

    def get_for_order(self, order_id: UUID) -> RefundORM | None:
        return RefundORM.objects.filter(order_id=order_id).first()

    def create(self, **fields) -> RefundORM:
        """Insert a refund; raises IntegrityError if the order already has one."""
        return RefundORM.objects.create(**fields)
