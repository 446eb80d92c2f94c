"""
GraphQL schema definition using Ariadne.
"""
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from ariadne import (
    MutationType,
    QueryType,
    ScalarType,
    format_error,
    load_schema_from_path,
    make_executable_schema,
    unwrap_graphql_error,
)

from fulfillment.api.ops import check_admin, check_ops_token
from fulfillment.domain.exceptions import Forbidden, FulfillmentError
from fulfillment.domain.order import Order
from fulfillment.services.fulfillment import OrderFulfillmentService
from fulfillment.services.payouts import VendorPayoutService
from fulfillment.services.refunds import RefundReconciliationJob, RefundService
from fulfillment.services.stock import StockLedger

# Load schema from .graphql files
SCHEMAS_DIR = Path(__file__).parent / "schemas"
type_defs = "\n".join([
    load_schema_from_path(SCHEMAS_DIR / "common"),
    load_schema_from_path(SCHEMAS_DIR / "query"),
    load_schema_from_path(SCHEMAS_DIR / "mutation"),
])

query = QueryType()
mutation = MutationType()


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "customerId": order.customer_id,
        "status": order.status.value,
        "fulfillmentStatus": order.fulfillment_status,
        "paymentStatus": order.payment_status.value,
        "subtotal": order.subtotal,
        "shippingFee": order.shipping_fee,
        "totalAmount": order.total_amount,
        "shippingAddress": order.shipping_address,
        "billingAddress": order.billing_address,
        "createdAt": order.created_at,
        "items": [
            {
                "id": item.id,
                "productId": item.product_id,
                "vendorId": item.vendor_id,
                "quantity": item.quantity,
                "unitPrice": item.unit_price,
                "lineTotal": item.line_total,
                "status": item.status.value,
            }
            for item in order.items
        ],
    }


def _actor(info) -> str:
    """Caller identity from the X-User-ID header."""
    user_id = info.context["request"].headers.get("X-User-ID")
    if not user_id:
        raise Forbidden("X-User-ID header is required")
    return user_id


@query.field("order")
def resolve_order(_, info, id):
    return order_to_dict(OrderFulfillmentService().get_order(id))


@query.field("ordersByCustomer")
def resolve_orders_by_customer(_, info, customerId, limit=20, offset=0):
    """Resolve orders by customer query with pagination."""
    orders = OrderFulfillmentService().orders_for_customer(customerId, limit=limit, offset=offset)
    return {
        "orders": [order_to_dict(order) for order in orders],
        "limit": limit,
        "offset": offset,
    }


@query.field("vendorEarnings")
def resolve_vendor_earnings(_, info, vendorId):
    return VendorPayoutService().vendor_earnings(vendorId)


@query.field("lowStockProducts")
def resolve_low_stock_products(_, info, vendorId, threshold=None):
    products = StockLedger().low_stock_products(vendorId, threshold)
    return [
        {
            "id": product.id,
            "vendorId": product.vendor_id,
            "name": product.name,
            "sku": product.sku,
            "price": product.price,
            "stockQuantity": product.stock_quantity,
        }
        for product in products
    ]


@mutation.field("placeOrder")
def resolve_place_order(_, info, input: dict):
    """Resolve place order mutation."""
    result = OrderFulfillmentService().place_order(
        customer_id=input["customerId"],
        items=input["items"],
        shipping_address=input.get("shippingAddress"),
        billing_address=input.get("billingAddress"),
        shipping_fee=input.get("shippingFee") or Decimal("0.00"),
        payment_status=input.get("paymentStatus") or "pending",
    )
    return {
        "order": order_to_dict(result.order),
        "warnings": result.warnings,
        "outcome": result.outcome,
    }


@mutation.field("updateOrderItemStatus")
def resolve_update_order_item_status(_, info, itemId, status):
    """Resolve item status change; the acting vendor comes from X-User-ID."""
    result = OrderFulfillmentService().transition(itemId, status, _actor(info))
    return result.to_dict()


@mutation.field("refundOrder")
def resolve_refund_order(_, info, orderId, reason, amount=None):
    admin_id = check_admin(info.context["request"])
    refund = RefundService().refund_order(orderId, reason, admin_id, amount=amount)
    return {
        "id": refund.id,
        "orderId": refund.order_id,
        "amount": refund.amount,
        "reason": refund.reason,
        "status": refund.status,
        "method": refund.method,
        "processedBy": refund.processed_by,
        "processedAt": refund.processed_at,
    }


@mutation.field("runRefundSweep")
def resolve_run_refund_sweep(_, info):
    check_ops_token(info.context["request"])
    return RefundReconciliationJob().sweep().to_dict()


def format_fulfillment_error(error, debug: bool = False) -> dict:
    """Default Ariadne formatting plus the domain error code under extensions.code."""
    formatted = format_error(error, debug)
    original = unwrap_graphql_error(error)
    if isinstance(original, FulfillmentError):
        formatted.setdefault("extensions", {})["code"] = original.code
    return formatted


# Define custom scalars
decimal_scalar = ScalarType("Decimal")
uuid_scalar = ScalarType("UUID")
datetime_scalar = ScalarType("DateTime")
json_scalar = ScalarType("JSON")


@decimal_scalar.serializer
def serialize_decimal(value):
    return str(value)


@decimal_scalar.value_parser
def parse_decimal_value(value):
    return Decimal(str(value))


@uuid_scalar.serializer
def serialize_uuid(value):
    return str(value)


@uuid_scalar.value_parser
def parse_uuid_value(value):
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


@datetime_scalar.serializer
def serialize_datetime(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@datetime_scalar.value_parser
def parse_datetime_value(value):
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# Create executable schema
schema = make_executable_schema(
    type_defs,
    query,
    mutation,
    datetime_scalar,
    decimal_scalar,
    uuid_scalar,
    json_scalar,
)
