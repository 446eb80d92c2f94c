"""
Domain model for Order aggregate and the item fulfillment state machine.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from fulfillment.domain.exceptions import InvalidTransition, ValidationError


SYSTEM_ACTOR = "system"
MIXED = "mixed"


class ItemStatus(str, Enum):
    """Order item fulfillment status."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemStatus.DELIVERED, ItemStatus.CANCELLED)


# Order.status takes the same values as its items.
OrderStatus = ItemStatus


class PaymentStatus(str, Enum):
    """Customer payment status of an order."""
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.PROCESSING, ItemStatus.CANCELLED}),
    ItemStatus.PROCESSING: frozenset({ItemStatus.SHIPPED, ItemStatus.CANCELLED}),
    ItemStatus.SHIPPED: frozenset({ItemStatus.DELIVERED, ItemStatus.CANCELLED}),
    ItemStatus.DELIVERED: frozenset(),
    ItemStatus.CANCELLED: frozenset(),
}

# Moves that notify the customer.
CUSTOMER_NOTIFIED_STATUSES = frozenset({ItemStatus.PROCESSING, ItemStatus.DELIVERED})


def parse_item_status(value: str | ItemStatus) -> ItemStatus:
    """Parse a status string, raising ValidationError for unknown values."""
    try:
        return ItemStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}") from None


def check_transition(current: ItemStatus, target: ItemStatus) -> None:
    """Raise InvalidTransition unless current -> target is an allowed move."""
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move order item from {current.value} to {target.value}"
        )


def derive_order_status(statuses) -> ItemStatus | None:
    """
    Return the single status shared by all items, or None when mixed.

    An order without items has no derivable status.
    """
    unique = {ItemStatus(s) for s in statuses}
    if len(unique) == 1:
        return unique.pop()
    return None


class OrderItem:
    """Order line value object."""

    def __init__(
        self,
        product_id: UUID,
        vendor_id: UUID | None,
        quantity: int,
        unit_price: Decimal,
        id: UUID | None = None,
        status: ItemStatus = ItemStatus.PENDING,
    ):
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        if unit_price < 0:
            raise ValidationError("Price must be non-negative")

        self.id = id or uuid4()
        self.product_id = product_id
        self.vendor_id = vendor_id
        self.quantity = quantity
        self.unit_price = unit_price
        self.status = status

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Order:
    """Order aggregate root."""

    def __init__(
        self,
        id: UUID | None = None,
        customer_id: UUID | None = None,
        items: list[OrderItem] | None = None,
        shipping_address: dict | None = None,
        billing_address: dict | None = None,
        shipping_fee: Decimal = Decimal("0.00"),
        status: ItemStatus = ItemStatus.PENDING,
        fulfillment_status: str = ItemStatus.PENDING.value,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        created_at=None,
    ):
        self.id = id or uuid4()
        self.customer_id = customer_id
        self._items = items or []
        self.shipping_address = shipping_address
        self.billing_address = billing_address or shipping_address
        self.shipping_fee = shipping_fee
        self.status = status
        self.fulfillment_status = fulfillment_status
        self.payment_status = payment_status
        self.created_at = created_at

    @property
    def items(self) -> list[OrderItem]:
        """Get order items (immutable)."""
        return list(self._items)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self._items), Decimal("0.00"))

    @property
    def total_amount(self) -> Decimal:
        return self.subtotal + self.shipping_fee

    @property
    def vendor_ids(self) -> list[UUID]:
        """Distinct vendors in line order."""
        seen = []
        for item in self._items:
            if item.vendor_id not in seen:
                seen.append(item.vendor_id)
        return seen

    def add_item(self, product_id: UUID, vendor_id: UUID | None, quantity: int, unit_price: Decimal) -> OrderItem:
        item = OrderItem(product_id, vendor_id, quantity, unit_price)
        self._items.append(item)
        return item

    def validate_for_placement(self) -> None:
        """Checkout rules; raises ValidationError."""
        if not self._items:
            raise ValidationError("Order must contain at least one item")
        if not self.shipping_address:
            raise ValidationError("Shipping address is required")
        if self.shipping_fee < 0:
            raise ValidationError("Shipping fee must be non-negative")
        for item in self._items:
            if not item.vendor_id:
                raise ValidationError("All items must have a vendor_id")
        if self.customer_id is not None and str(self.customer_id) in {str(v) for v in self.vendor_ids}:
            raise ValidationError("Vendors cannot purchase their own products")
