from django.contrib import admin

from fulfillment.infra.models import (
    CustomerORM,
    IdempotencyKey,
    OrderItemORM,
    OrderORM,
    ProductORM,
    RefundORM,
    VendorORM,
    VendorPayoutORM,
)
from fulfillment.infra.outbox import OutboxEvent


@admin.register(CustomerORM)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "created_at")
    search_fields = ("name", "email")


@admin.register(VendorORM)
class VendorAdmin(admin.ModelAdmin):
    list_display = ("id", "store_name", "balance", "total_earnings", "has_payment_setup", "last_payout_date")
    list_filter = ("has_payment_setup", "preferred_payout_method")
    search_fields = ("store_name", "email")
    readonly_fields = ("balance", "total_earnings", "last_payout_date", "last_payout_amount")


@admin.register(ProductORM)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "vendor", "price", "sale_price", "stock_quantity", "last_stock_notification")
    list_filter = ("vendor",)
    search_fields = ("name", "sku")


class OrderItemInline(admin.TabularInline):
    model = OrderItemORM
    extra = 0
    readonly_fields = ("vendor", "product", "quantity", "unit_price", "line_total", "status")


@admin.register(OrderORM)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "status", "fulfillment_status", "payment_status", "total_amount", "created_at")
    list_filter = ("status", "fulfillment_status", "payment_status", "created_at")
    search_fields = ("id", "customer__name")
    inlines = (OrderItemInline,)


@admin.register(VendorPayoutORM)
class VendorPayoutAdmin(admin.ModelAdmin):
    list_display = ("id", "vendor", "order", "amount", "status", "operator", "reference", "synthetic", "created_at")
    list_filter = ("status", "operator", "synthetic", "created_at")
    search_fields = ("reference", "vendor__store_name")
    readonly_fields = (
        "vendor", "order", "order_item", "target_status", "amount", "status", "reference",
        "operator", "phone_number", "notes", "retry_count", "synthetic",
    )


@admin.register(RefundORM)
class RefundAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "customer", "amount", "status", "method", "processed_at")
    list_filter = ("status", "method", "processed_at")
    readonly_fields = ("order", "customer", "amount", "reason", "status", "method", "processed_by", "processed_at")


@admin.register(IdempotencyKey)
class IdempotencyAdmin(admin.ModelAdmin):
    list_display = ("key", "user_id", "operation", "created_at")
    list_filter = ("operation", "created_at")
    search_fields = ("key", "user_id")


@admin.register(OutboxEvent)
class OutboxEventAdmin(admin.ModelAdmin):
    list_display = ("id", "aggregate_id", "aggregate_type", "event_type", "processed", "retry_count", "created_at")
    list_filter = ("processed", "aggregate_type", "event_type", "created_at")
    readonly_fields = (
        "id", "aggregate_id", "aggregate_type", "event_type", "event_data",
        "processed", "processed_at", "retry_count", "last_error",
    )
