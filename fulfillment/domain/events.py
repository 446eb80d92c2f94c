"""
Domain events queued through the outbox for notification delivery.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class EventVersion(str, Enum):
    """Event version for upcasting."""
    V1 = "1.0"


@dataclass
class DomainEvent:
    """Base domain event."""
    event_id: UUID
    aggregate_id: UUID
    event_type: str
    # version and occurred_at are set in subclasses to avoid dataclass field ordering issues


# Vendor events
@dataclass
class VendorOrderReceived(DomainEvent):
    """A new order contains lines sold by the vendor."""
    vendor_id: UUID
    order_id: UUID
    items_count: int
    vendor_total: Decimal
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class PayoutSucceeded(DomainEvent):
    vendor_id: UUID
    order_id: UUID | None
    payout_id: UUID
    amount: Decimal
    reference: str
    operator: str
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class PayoutFailed(DomainEvent):
    vendor_id: UUID
    order_id: UUID | None
    payout_id: UUID
    amount: Decimal
    error: str
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class ProductStockLevel(DomainEvent):
    """Stock reached the low or out-of-stock level (event_type tells which)."""
    vendor_id: UUID
    product_id: UUID
    product_name: str
    current_stock: int
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


# Customer events
@dataclass
class CustomerOrderStatusChanged(DomainEvent):
    customer_id: UUID
    order_id: UUID
    status: str
    order_total: Decimal
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class CustomerOrderRefunded(DomainEvent):
    customer_id: UUID
    order_id: UUID
    refund_id: UUID
    amount: Decimal
    reason: str
    delay_days: int | None = None
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


# event_type -> (recipient type, recipient field, template)
NOTIFICATION_ROUTES = {
    "VendorOrderReceived": ("vendor", "vendor_id", "vendor_new_order"),
    "PayoutSucceeded": ("vendor", "vendor_id", "vendor_payout_succeeded"),
    "PayoutFailed": ("vendor", "vendor_id", "vendor_payout_failed"),
    "ProductLowStock": ("vendor", "vendor_id", "vendor_low_stock"),
    "ProductOutOfStock": ("vendor", "vendor_id", "vendor_out_of_stock"),
    "CustomerOrderStatusChanged": ("customer", "customer_id", "customer_order_status"),
    "CustomerOrderRefunded": ("customer", "customer_id", "customer_order_refunded"),
}
