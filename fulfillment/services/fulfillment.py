"""
Order placement and the per-item fulfillment state machine.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from uuid import UUID, uuid4

from django.db import transaction
from django.utils import timezone

from fulfillment.domain.events import CustomerOrderStatusChanged, VendorOrderReceived
from fulfillment.domain.exceptions import Forbidden, NotFound, PayoutConfigMissing, ValidationError
from fulfillment.domain.order import (
    CUSTOMER_NOTIFIED_STATUSES,
    MIXED,
    SYSTEM_ACTOR,
    ItemStatus,
    Order,
    PaymentStatus,
    check_transition,
    derive_order_status,
    parse_item_status,
)
from fulfillment.domain.payout import PayoutResult, PayoutStatus
from fulfillment.infra.outbox import OutboxRepository, emit_notification
from fulfillment.infra.repositories import CustomerRepository, OrderRepository, ProductRepository
from fulfillment.services.payouts import VendorPayoutService
from fulfillment.services.stock import StockLedger


logger = logging.getLogger(__name__)


def _outcome(changed: bool, warnings: list[str]) -> str:
    if not changed:
        return "noop"
    return "warning" if warnings else "success"


@dataclass
class TransitionResult:
    item_id: UUID
    order_id: UUID
    previous_status: str
    status: str
    changed: bool
    order_status: str
    fulfillment_status: str
    payout: PayoutResult | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        return _outcome(self.changed, self.warnings)

    def to_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "orderId": self.order_id,
            "previousStatus": self.previous_status,
            "status": self.status,
            "changed": self.changed,
            "orderStatus": self.order_status,
            "fulfillmentStatus": self.fulfillment_status,
            "payout": self.payout.to_dict() if self.payout else None,
            "warnings": list(self.warnings),
            "outcome": self.outcome,
        }


@dataclass
class PlacementResult:
    order: Order
    stock_levels: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        return _outcome(True, self.warnings)


class OrderFulfillmentService:
    """Service for order placement and item status transitions."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        customer_repo: CustomerRepository | None = None,
        product_repo: ProductRepository | None = None,
        outbox_repo: OutboxRepository | None = None,
        stock_ledger: StockLedger | None = None,
        payout_service: VendorPayoutService | None = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.customer_repo = customer_repo or CustomerRepository()
        self.product_repo = product_repo or ProductRepository()
        self.outbox_repo = outbox_repo or OutboxRepository()
        self.stock_ledger = stock_ledger or StockLedger(outbox_repo=self.outbox_repo)
        self.payout_service = payout_service or VendorPayoutService(outbox_repo=self.outbox_repo)

    def place_order(
        self,
        customer_id: UUID,
        items: list[dict],
        shipping_address: dict | None,
        billing_address: dict | None = None,
        shipping_fee: Decimal | int | str = 0,
        payment_status: str = PaymentStatus.PENDING.value,
    ) -> PlacementResult:
        """
        Create an order with its items, then decrement stock and tell vendors.

        The order and items are written in one transaction. Stock and vendor
        notification failures after that only add warnings.
        """
        customer = self.customer_repo.get_by_id(customer_id)
        if customer is None:
            raise ValidationError(f"Customer {customer_id} not found")

        try:
            payment = PaymentStatus(payment_status)
        except ValueError:
            raise ValidationError(f"Invalid payment status: {payment_status}") from None

        order = Order(
            customer_id=customer.id,
            shipping_address=shipping_address,
            billing_address=billing_address,
            shipping_fee=self._to_decimal(shipping_fee, "shipping fee"),
            payment_status=payment,
        )
        for line in items or []:
            self._add_line(order, line)
        order.validate_for_placement()

        self.order_repo.create(order)
        logger.info(
            "order_placed",
            extra={
                "order_id": str(order.id),
                "customer_id": str(customer.id),
                "amount": str(order.total_amount),
                "count": len(order.items),
            },
        )

        result = PlacementResult(order=order)
        for item in order.items:
            try:
                result.stock_levels[str(item.product_id)] = self.stock_ledger.decrement(item.product_id, item.quantity)
            except Exception as e:
                logger.warning(
                    "stock_decrement_failed",
                    extra={"order_id": str(order.id), "product_id": str(item.product_id), "error": str(e)},
                )
                result.warnings.append(f"Stock update failed for product {item.product_id}: {e}")

        for vendor_id in order.vendor_ids:
            vendor_items = [item for item in order.items if item.vendor_id == vendor_id]
            event = VendorOrderReceived(
                event_id=uuid4(),
                aggregate_id=order.id,
                event_type="VendorOrderReceived",
                vendor_id=vendor_id,
                order_id=order.id,
                items_count=len(vendor_items),
                vendor_total=sum((item.line_total for item in vendor_items), Decimal("0.00")),
            )
            event.occurred_at = timezone.now().isoformat()
            if not emit_notification(self.outbox_repo, event, "Order"):
                result.warnings.append(f"Vendor notification failed for vendor {vendor_id}")

        return result

    def transition(self, item_id: UUID, new_status: str, actor_vendor_id: str | UUID) -> TransitionResult:
        """
        Move one order item to a new status.

        The status change and the order recomputation commit together. A
        payout triggered by entering processing runs after that commit, so
        its failure only adds a warning.
        """
        target = parse_item_status(new_status)

        order_id = self.order_repo.order_id_for_item(item_id)
        if order_id is None:
            raise NotFound(f"Order item {item_id} not found")

        warnings: list[str] = []
        with transaction.atomic():
            self.order_repo.lock_order(order_id)
            item = self.order_repo.lock_item(item_id)
            if item is None:
                raise NotFound(f"Order item {item_id} not found")

            owner_id = item.product.vendor_id
            if str(actor_vendor_id) != SYSTEM_ACTOR and str(actor_vendor_id) != str(owner_id):
                raise Forbidden("You can only update items for your own products")

            current = ItemStatus(item.status)
            if current == target:
                return TransitionResult(
                    item_id=item.id,
                    order_id=order_id,
                    previous_status=current.value,
                    status=current.value,
                    changed=False,
                    order_status=item.order.status,
                    fulfillment_status=item.order.fulfillment_status,
                )

            check_transition(current, target)
            item.status = target.value
            item.save(update_fields=["status", "updated_at"])
            fulfillment_status = self.recompute_order_status(order_id)

            if target in CUSTOMER_NOTIFIED_STATUSES:
                event = CustomerOrderStatusChanged(
                    event_id=uuid4(),
                    aggregate_id=order_id,
                    event_type="CustomerOrderStatusChanged",
                    customer_id=item.order.customer_id,
                    order_id=order_id,
                    status=target.value,
                    order_total=item.order.total_amount,
                )
                event.occurred_at = timezone.now().isoformat()
                if not emit_notification(self.outbox_repo, event, "Order"):
                    warnings.append("Customer notification failed")

        logger.info(
            "order_item_status_changed",
            extra={
                "item_id": str(item.id),
                "order_id": str(order_id),
                "user_id": str(actor_vendor_id),
                "status": target.value,
            },
        )

        payout = None
        if current == ItemStatus.PENDING and target == ItemStatus.PROCESSING:
            payout = self._pay_vendor(item, owner_id, warnings)

        order = self.order_repo.get_by_id(order_id)
        return TransitionResult(
            item_id=item.id,
            order_id=order_id,
            previous_status=current.value,
            status=target.value,
            changed=True,
            order_status=order.status.value,
            fulfillment_status=fulfillment_status,
            payout=payout,
            warnings=warnings,
        )

    def recompute_order_status(self, order_id: UUID) -> str:
        """
        Re-derive the order's status from its items.

        A uniform item status is written to both status and
        fulfillment_status; mixed items only set fulfillment_status to
        "mixed". Returns the new fulfillment_status.
        """
        with transaction.atomic():
            order = self.order_repo.lock_order(order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")

            statuses = self.order_repo.item_statuses(order_id)
            if not statuses:
                return order.fulfillment_status

            derived = derive_order_status(statuses)
            if derived is None:
                self.order_repo.set_status(order_id, None, MIXED)
                return MIXED

            self.order_repo.set_status(order_id, derived.value, derived.value)
            return derived.value

    def record_payment(self, order_id: UUID, payment_status: str) -> Order:
        """Record the payment outcome reported by the checkout flow."""
        try:
            status = PaymentStatus(payment_status)
        except ValueError:
            raise ValidationError(f"Invalid payment status: {payment_status}") from None
        if not self.order_repo.set_payment_status(order_id, status):
            raise NotFound(f"Order {order_id} not found")
        logger.info("order_payment_recorded", extra={"order_id": str(order_id), "status": status.value})
        return self.get_order(order_id)

    def get_order(self, order_id: UUID) -> Order:
        order = self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def orders_for_customer(self, customer_id: UUID, limit: int = 50, offset: int = 0) -> list[Order]:
        return self.order_repo.get_by_customer(customer_id, limit=limit, offset=offset)

    def _pay_vendor(self, item, vendor_id: UUID, warnings: list[str]) -> PayoutResult | None:
        # Vendors are paid on their base price, not the customer-facing sale price
        amount = item.product.price * item.quantity
        try:
            payout = self.payout_service.payout(
                order_id=item.order_id,
                vendor_id=vendor_id,
                amount=amount,
                order_item_id=item.id,
            )
        except PayoutConfigMissing as e:
            warnings.append(f"Payout failed: {e.message}")
            return None
        except Exception as e:
            logger.error(
                "payout_trigger_failed",
                extra={"item_id": str(item.id), "vendor_id": str(vendor_id), "error": str(e)},
                exc_info=True,
            )
            warnings.append(f"Payout failed: {e}")
            return None

        if payout.status == PayoutStatus.FAILED:
            warnings.append(f"Payout failed: {payout.error}")
        return payout

    def _add_line(self, order: Order, line: dict) -> None:
        product_id = line.get("productId") or line.get("product_id")
        vendor_id = line.get("vendorId") or line.get("vendor_id")
        if not product_id:
            raise ValidationError("All items must have a product_id")
        if not vendor_id:
            raise ValidationError("All items must have a vendor_id")

        product = self.product_repo.get_by_id(product_id)
        if product is None:
            raise ValidationError(f"Product {product_id} not found")
        if str(product.vendor_id) != str(vendor_id):
            raise ValidationError(f"Product {product_id} is not sold by vendor {vendor_id}")

        price = line.get("price", line.get("unit_price"))
        if price is None:
            price = product.sale_price if product.sale_price is not None else product.price

        try:
            quantity = int(line.get("quantity"))
        except (TypeError, ValueError):
            raise ValidationError("Quantity must be an integer") from None

        order.add_item(
            product_id=product.id,
            vendor_id=product.vendor_id,
            quantity=quantity,
            unit_price=self._to_decimal(price, "price"),
        )

    def _to_decimal(self, value, label: str) -> Decimal:
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid {label}: {value}") from None
