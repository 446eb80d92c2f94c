"""
Expose ORM models for Django's auto-discovery while keeping real definitions
under the infrastructure module.
"""

from fulfillment.infra.models import (  # noqa: F401
    CustomerORM,
    IdempotencyKey,
    OrderItemORM,
    OrderORM,
    ProductORM,
    RefundORM,
    VendorORM,
    VendorPayoutORM,
)
from fulfillment.infra.outbox import OutboxEvent  # noqa: F401
