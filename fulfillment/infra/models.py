from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from django.db import models


ITEM_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
    ("cancelled", "Cancelled"),
)

FULFILLMENT_STATUS_CHOICES = ITEM_STATUS_CHOICES + (
    ("mixed", "Mixed"),
)

PAYMENT_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("completed", "Completed"),
    ("refunded", "Refunded"),
    ("failed", "Failed"),
)

PAYOUT_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("completed", "Completed"),
    ("failed", "Failed"),
)

OPERATOR_CHOICES = (
    ("MTN", "MTN Mobile Money"),
    ("ORANGE", "Orange Money"),
)

REFUND_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("processed", "Processed"),
    ("failed", "Failed"),
)

REFUND_METHOD_CHOICES = (
    ("automatic", "Automatic"),
    ("manual", "Manual"),
)

OPERATION_TYPE = (
    ("PLACE_ORDER", "Place order"),
    ("UPDATE_ITEM_STATUS", "Update order item status"),
    ("REFUND_ORDER", "Manual refund"),
    ("RUN_REFUND_SWEEP", "Run refund sweep"),
)


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class CustomerORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default="")

    def __str__(self):
        return self.name


class VendorORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    store_name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default="")
    # Accumulators; only ever changed with F() increments
    balance = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_earnings = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    last_payout_date = models.DateTimeField(null=True, blank=True)
    last_payout_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    has_payment_setup = models.BooleanField(default=False)
    # {"mtn": {"phone": ..., "account_name": ...}, "orange": {...}}
    mobile_money_accounts = models.JSONField(default=dict, blank=True)
    preferred_payout_method = models.CharField(choices=OPERATOR_CHOICES, max_length=10, blank=True, default="")

    def __str__(self):
        return self.store_name


class ProductORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    vendor = models.ForeignKey(
        VendorORM,
        on_delete=models.PROTECT,
        related_name="products",
    )
    name = models.CharField(max_length=255)
    sku = models.CharField(max_length=64, blank=True, default="")
    # Vendor base price; payouts are computed from it
    price = models.DecimalField(max_digits=12, decimal_places=2)
    # Customer-facing price including platform commission
    sale_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    stock_quantity = models.PositiveIntegerField(default=0)
    last_stock_notification = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("vendor", "stock_quantity")),
        ]

    def __str__(self):
        return self.name


class OrderORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    customer = models.ForeignKey(
        CustomerORM,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    status = models.CharField(choices=ITEM_STATUS_CHOICES, max_length=20, default="pending")
    fulfillment_status = models.CharField(choices=FULFILLMENT_STATUS_CHOICES, max_length=20, default="pending")
    payment_status = models.CharField(choices=PAYMENT_STATUS_CHOICES, max_length=20, default="pending")
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_address = models.JSONField()
    billing_address = models.JSONField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    refund_claimed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("customer", "status")),
            models.Index(fields=("status", "payment_status", "created_at")),
        ]


class OrderItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.CASCADE,
        related_name="items",
    )
    vendor = models.ForeignKey(
        VendorORM,
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    product = models.ForeignKey(
        ProductORM,
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    line_total = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(choices=ITEM_STATUS_CHOICES, max_length=20, default="pending")

    class Meta:
        indexes = [
            models.Index(fields=("order",)),
            models.Index(fields=("vendor", "status")),
        ]


class VendorPayoutORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    vendor = models.ForeignKey(
        VendorORM,
        on_delete=models.PROTECT,
        related_name="payouts",
    )
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.PROTECT,
        related_name="payouts",
        null=True,
        blank=True,
    )
    order_item = models.ForeignKey(
        OrderItemORM,
        on_delete=models.PROTECT,
        related_name="payouts",
        null=True,
        blank=True,
    )
    # Item status whose entry triggered the payout
    target_status = models.CharField(max_length=20, default="processing")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(choices=PAYOUT_STATUS_CHOICES, max_length=20, default="pending")
    reference = models.CharField(max_length=255, blank=True, default="")
    operator = models.CharField(choices=OPERATOR_CHOICES, max_length=10, blank=True, default="")
    phone_number = models.CharField(max_length=32, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    retry_count = models.IntegerField(default=0)
    synthetic = models.BooleanField(default=False)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=("order_item", "target_status"),
                name="unique_payout_per_item_transition",
            ),
        ]
        indexes = [
            models.Index(fields=("vendor", "created_at")),
            models.Index(fields=("status", "created_at")),
        ]


class RefundORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.OneToOneField(
        OrderORM,
        on_delete=models.PROTECT,
        related_name="refund",
    )
    customer = models.ForeignKey(
        CustomerORM,
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.TextField()
    status = models.CharField(choices=REFUND_STATUS_CHOICES, max_length=20, default="pending")
    method = models.CharField(choices=REFUND_METHOD_CHOICES, max_length=20)
    processed_by = models.CharField(max_length=255, blank=True, default="")
    processed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")


class IdempotencyKey(TimeStampedModel):
    key = models.CharField(max_length=255)
    user_id = models.CharField(max_length=255, blank=True, default="")
    operation = models.CharField(choices=OPERATION_TYPE, max_length=40)
    request_hash = models.CharField(max_length=255)
    response_payload = models.JSONField()

    class Meta:
        unique_together = [("key", "user_id", "operation")]
        indexes = [
            models.Index(fields=("request_hash",)),
        ]
