"""
Integration tests for GraphQL API.
"""
import json
from decimal import Decimal

from django.test import TestCase, override_settings

from fulfillment.infra.models import IdempotencyKey, OrderORM, RefundORM, VendorPayoutORM
from fulfillment.test.factories import SHIPPING_ADDRESS, make_customer, make_order, make_product, make_vendor

TEST_FULFILLMENT = {"SWEEP_INTER_ORDER_DELAY": 0, "STOCK_CHECK_DELAY": 0}
TEST_CAMPAY = {"TOKEN": "", "SANDBOX": True}

PLACE_ORDER = """
    mutation PlaceOrder($input: PlaceOrderInput!) {
        placeOrder(input: $input) {
            outcome
            warnings
            order {
                id
                status
                paymentStatus
                totalAmount
                items {
                    id
                    quantity
                    unitPrice
                    status
                }
            }
        }
    }
"""

UPDATE_STATUS = """
    mutation UpdateStatus($itemId: UUID!, $status: String!) {
        updateOrderItemStatus(itemId: $itemId, status: $status) {
            changed
            status
            orderStatus
            outcome
            warnings
            payout {
                status
                amount
                synthetic
            }
        }
    }
"""


REFUND_ORDER = """
    mutation Refund($orderId: UUID!) {
        refundOrder(orderId: $orderId, reason: "Damaged") {
            amount
            method
            processedBy
        }
    }
"""


@override_settings(FULFILLMENT=TEST_FULFILLMENT, CAMPAY=TEST_CAMPAY)
class GraphQLAPITest(TestCase):
    """Integration tests for GraphQL API."""

    def setUp(self):
        self.customer = make_customer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, price="50.00", stock=10)

    def _post(self, query, variables=None, **headers):
        response = self.client.post(
            "/graphql/",
            data={"query": query, "variables": variables or {}},
            content_type="application/json",
            **headers,
        )
        return response, json.loads(response.content)

    def _place_order_variables(self, quantity=2):
        return {
            "input": {
                "customerId": str(self.customer.id),
                "items": [
                    {"productId": str(self.product.id), "vendorId": str(self.vendor.id), "quantity": quantity},
                ],
                "shippingAddress": SHIPPING_ADDRESS,
                "shippingFee": "10.00",
                "paymentStatus": "completed",
            }
        }

    def test_place_order_mutation(self):
        response, data = self._post(PLACE_ORDER, self._place_order_variables())

        self.assertEqual(response.status_code, 200)
        result = data["data"]["placeOrder"]
        self.assertEqual(result["outcome"], "success")
        self.assertEqual(result["order"]["status"], "pending")
        self.assertEqual(result["order"]["paymentStatus"], "completed")
        self.assertEqual(result["order"]["totalAmount"], "110.00")
        self.assertEqual(result["order"]["items"][0]["unitPrice"], "50.00")
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)

    def test_place_order_validation_error(self):
        variables = self._place_order_variables()
        variables["input"]["items"] = []

        response, data = self._post(PLACE_ORDER, variables)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(data["errors"][0]["extensions"]["code"], "VALIDATION_ERROR")
        self.assertFalse(OrderORM.objects.exists())

    def test_update_item_status_pays_vendor(self):
        order = make_order(self.customer, [(self.product, 2)])
        item = order.items.get()

        response, data = self._post(
            UPDATE_STATUS,
            {"itemId": str(item.id), "status": "processing"},
            HTTP_X_USER_ID=str(self.vendor.id),
        )

        self.assertEqual(response.status_code, 200)
        result = data["data"]["updateOrderItemStatus"]
        self.assertTrue(result["changed"])
        self.assertEqual(result["orderStatus"], "processing")
        self.assertEqual(result["payout"]["status"], "completed")
        self.assertEqual(result["payout"]["amount"], "100.00")
        self.assertTrue(result["payout"]["synthetic"])
        self.assertEqual(VendorPayoutORM.objects.count(), 1)

    def test_update_item_status_requires_user_header(self):
        order = make_order(self.customer, [(self.product, 1)])

        response, data = self._post(UPDATE_STATUS, {"itemId": str(order.items.get().id), "status": "processing"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(data["errors"][0]["extensions"]["code"], "FORBIDDEN")

    def test_update_item_status_by_other_vendor(self):
        order = make_order(self.customer, [(self.product, 1)])
        intruder = make_vendor(store_name="Intruder")

        _, data = self._post(
            UPDATE_STATUS,
            {"itemId": str(order.items.get().id), "status": "processing"},
            HTTP_X_USER_ID=str(intruder.id),
        )

        self.assertEqual(data["errors"][0]["extensions"]["code"], "FORBIDDEN")

    def test_invalid_transition_code(self):
        order = make_order(self.customer, [(self.product, 1)])

        _, data = self._post(
            UPDATE_STATUS,
            {"itemId": str(order.items.get().id), "status": "delivered"},
            HTTP_X_USER_ID=str(self.vendor.id),
        )

        self.assertEqual(data["errors"][0]["extensions"]["code"], "INVALID_STATE")

    def test_query_order(self):
        order = make_order(self.customer, [(self.product, 1)], shipping_fee="5.00")
        query = """
            query Order($id: UUID!) {
                order(id: $id) {
                    id
                    customerId
                    status
                    fulfillmentStatus
                    totalAmount
                    shippingAddress
                    items {
                        productId
                        quantity
                    }
                }
            }
        """

        response, data = self._post(query, {"id": str(order.id)})

        self.assertEqual(response.status_code, 200)
        result = data["data"]["order"]
        self.assertEqual(result["customerId"], str(self.customer.id))
        self.assertEqual(result["totalAmount"], "55.00")
        self.assertEqual(result["shippingAddress"], SHIPPING_ADDRESS)
        self.assertEqual(result["items"][0]["productId"], str(self.product.id))

    def test_orders_by_customer(self):
        make_order(self.customer, [(self.product, 1)])
        make_order(self.customer, [(self.product, 2)])
        query = """
            query Orders($customerId: UUID!) {
                ordersByCustomer(customerId: $customerId, limit: 1) {
                    orders { id }
                    limit
                    offset
                }
            }
        """

        _, data = self._post(query, {"customerId": str(self.customer.id)})

        result = data["data"]["ordersByCustomer"]
        self.assertEqual(len(result["orders"]), 1)
        self.assertEqual(result["limit"], 1)

    def test_vendor_earnings_query(self):
        query = """
            query Earnings($vendorId: UUID!) {
                vendorEarnings(vendorId: $vendorId) {
                    vendorId
                    balance
                    completedPayouts
                }
            }
        """

        _, data = self._post(query, {"vendorId": str(self.vendor.id)})

        result = data["data"]["vendorEarnings"]
        self.assertEqual(result["vendorId"], str(self.vendor.id))
        self.assertEqual(Decimal(result["balance"]), Decimal("0"))
        self.assertEqual(result["completedPayouts"], 0)

    def test_low_stock_products_query(self):
        make_product(self.vendor, name="Almost gone", stock=1)
        query = """
            query LowStock($vendorId: UUID!) {
                lowStockProducts(vendorId: $vendorId) {
                    name
                    stockQuantity
                }
            }
        """

        _, data = self._post(query, {"vendorId": str(self.vendor.id)})

        self.assertEqual(data["data"]["lowStockProducts"], [{"name": "Almost gone", "stockQuantity": 1}])

    @override_settings(FULFILLMENT={**TEST_FULFILLMENT, "ADMIN_USER_IDS": ("admin-1",)})
    def test_refund_order_mutation(self):
        order = make_order(self.customer, [(self.product, 1)])

        _, data = self._post(REFUND_ORDER, {"orderId": str(order.id)}, HTTP_X_USER_ID="admin-1")

        result = data["data"]["refundOrder"]
        self.assertEqual(result["amount"], "50.00")
        self.assertEqual(result["method"], "manual")
        self.assertEqual(result["processedBy"], "admin-1")

    @override_settings(FULFILLMENT={**TEST_FULFILLMENT, "ADMIN_USER_IDS": ("admin-1",)})
    def test_refund_order_by_vendor_forbidden(self):
        order = make_order(self.customer, [(self.product, 1)])

        response, data = self._post(REFUND_ORDER, {"orderId": str(order.id)}, HTTP_X_USER_ID=str(self.vendor.id))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(data["errors"][0]["extensions"]["code"], "FORBIDDEN")
        self.assertFalse(RefundORM.objects.filter(order=order).exists())
        order.refresh_from_db()
        self.assertEqual(order.payment_status, "completed")

    @override_settings(FULFILLMENT={**TEST_FULFILLMENT, "OPS_TOKEN": "s3cret"})
    def test_refund_order_with_ops_token(self):
        order = make_order(self.customer, [(self.product, 1)])

        _, data = self._post(
            REFUND_ORDER, {"orderId": str(order.id)}, HTTP_X_USER_ID="support-7", HTTP_X_OPS_TOKEN="s3cret"
        )

        self.assertEqual(data["data"]["refundOrder"]["processedBy"], "support-7")

    def test_refund_order_forbidden_without_admins_configured(self):
        order = make_order(self.customer, [(self.product, 1)])

        _, data = self._post(REFUND_ORDER, {"orderId": str(order.id)}, HTTP_X_USER_ID=str(self.customer.id))

        self.assertEqual(data["errors"][0]["extensions"]["code"], "FORBIDDEN")
        self.assertFalse(RefundORM.objects.exists())

    def test_run_refund_sweep_mutation(self):
        make_order(self.customer, [(self.product, 1)], days_ago=4)

        _, data = self._post("mutation { runRefundSweep { checked refunded skipped } }")

        self.assertEqual(data["data"]["runRefundSweep"], {"checked": 1, "refunded": 1, "skipped": False})

    def test_get_returns_usage_message(self):
        response = self.client.get("/graphql/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("message", json.loads(response.content))

    def test_invalid_json_body(self):
        response = self.client.post("/graphql/", data="not json", content_type="application/json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(json.loads(response.content)["error"]["code"], "VALIDATION_ERROR")


@override_settings(FULFILLMENT=TEST_FULFILLMENT, CAMPAY=TEST_CAMPAY)
class IdempotencyTest(TestCase):
    """Tests for Idempotency-Key handling on mutations."""

    def setUp(self):
        self.customer = make_customer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, price="50.00", stock=10)
        self.variables = {
            "input": {
                "customerId": str(self.customer.id),
                "items": [{"productId": str(self.product.id), "vendorId": str(self.vendor.id), "quantity": 1}],
                "shippingAddress": SHIPPING_ADDRESS,
            }
        }

    def _post(self, variables, key="key-123"):
        return self.client.post(
            "/graphql/",
            data={"query": PLACE_ORDER, "variables": variables},
            content_type="application/json",
            HTTP_IDEMPOTENCY_KEY=key,
            HTTP_X_USER_ID=str(self.customer.id),
        )

    def test_repeated_request_returns_cached_response(self):
        first = self._post(self.variables)
        second = self._post(self.variables)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(json.loads(first.content), json.loads(second.content))
        self.assertEqual(OrderORM.objects.count(), 1)
        self.assertEqual(IdempotencyKey.objects.get().operation, "PLACE_ORDER")

    def test_same_key_with_different_request_conflicts(self):
        self._post(self.variables)
        changed = json.loads(json.dumps(self.variables))
        changed["input"]["items"][0]["quantity"] = 3

        response = self._post(changed)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(json.loads(response.content)["error"]["code"], "DUPLICATE_REQUEST")
        self.assertEqual(OrderORM.objects.count(), 1)

    def test_failed_request_is_not_cached(self):
        bad = json.loads(json.dumps(self.variables))
        bad["input"]["items"] = []

        self.assertEqual(self._post(bad).status_code, 400)
        self.assertFalse(IdempotencyKey.objects.exists())


@override_settings(FULFILLMENT=TEST_FULFILLMENT)
class RefundSweepEndpointTest(TestCase):
    """Tests for the ops refund sweep endpoint."""

    def test_runs_sweep(self):
        customer = make_customer()
        product = make_product(make_vendor())
        order = make_order(customer, [(product, 1)], days_ago=5)

        response = self.client.post("/ops/refund-sweep/")

        self.assertEqual(response.status_code, 200)
        body = json.loads(response.content)
        self.assertTrue(body["success"])
        self.assertEqual(body["message"], "Refund check completed")
        self.assertEqual(body["data"]["refunded"], 1)
        self.assertTrue(RefundORM.objects.filter(order=order).exists())

    @override_settings(FULFILLMENT={**TEST_FULFILLMENT, "OPS_TOKEN": "s3cret"})
    def test_rejects_bad_token(self):
        response = self.client.post("/ops/refund-sweep/", HTTP_X_OPS_TOKEN="wrong")

        self.assertEqual(response.status_code, 403)
        self.assertFalse(json.loads(response.content)["success"])

    @override_settings(FULFILLMENT={**TEST_FULFILLMENT, "OPS_TOKEN": "s3cret"})
    def test_accepts_good_token(self):
        response = self.client.post("/ops/refund-sweep/", HTTP_X_OPS_TOKEN="s3cret")
        self.assertEqual(response.status_code, 200)

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get("/ops/refund-sweep/").status_code, 405)
