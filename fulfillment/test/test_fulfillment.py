"""
Tests for order placement and item status transitions.
"""
from decimal import Decimal
from unittest.mock import Mock
from uuid import uuid4

from django.test import TestCase

from fulfillment.domain.exceptions import Forbidden, GatewayError, InvalidTransition, NotFound, ValidationError
from fulfillment.domain.order import SYSTEM_ACTOR
from fulfillment.infra.models import OrderItemORM, OrderORM, ProductORM, VendorPayoutORM
from fulfillment.infra.outbox import OutboxEvent
from fulfillment.services.fulfillment import OrderFulfillmentService
from fulfillment.services.payouts import VendorPayoutService
from fulfillment.services.stock import StockLedger
from fulfillment.test.factories import (
    NO_DELAY,
    SHIPPING_ADDRESS,
    fake_gateway,
    make_customer,
    make_order,
    make_product,
    make_vendor,
)


def _service(gateway=None):
    gateway = gateway or fake_gateway()
    return OrderFulfillmentService(
        stock_ledger=StockLedger(config=NO_DELAY),
        payout_service=VendorPayoutService(gateway=gateway),
    )


class PlaceOrderTest(TestCase):
    """Tests for order placement."""

    def setUp(self):
        self.customer = make_customer()
        self.vendor_a = make_vendor(store_name="A")
        self.vendor_b = make_vendor(store_name="B")
        self.product_a = make_product(self.vendor_a, price="1000.00", sale_price="1200.00", stock=10)
        self.product_b = make_product(self.vendor_b, price="500.00", stock=3)
        self.service = _service()

    def _line(self, product, quantity=1, **extra):
        return {"productId": product.id, "vendorId": product.vendor_id, "quantity": quantity, **extra}

    def test_place_order_creates_order_and_items(self):
        result = self.service.place_order(
            self.customer.id,
            [self._line(self.product_a, 2), self._line(self.product_b, 1, price="450.00")],
            SHIPPING_ADDRESS,
            shipping_fee="1000.00",
        )

        order = OrderORM.objects.get(id=result.order.id)
        self.assertEqual(order.status, "pending")
        self.assertEqual(order.items.count(), 2)
        # Sale price when no price is given, explicit price otherwise
        self.assertEqual(order.subtotal, Decimal("2850.00"))
        self.assertEqual(order.total_amount, Decimal("3850.00"))
        self.assertEqual(order.billing_address, SHIPPING_ADDRESS)
        self.assertEqual(result.outcome, "success")

    def test_place_order_decrements_stock(self):
        result = self.service.place_order(
            self.customer.id,
            [self._line(self.product_a, 4), self._line(self.product_b, 2)],
            SHIPPING_ADDRESS,
        )

        self.assertEqual(ProductORM.objects.get(id=self.product_a.id).stock_quantity, 6)
        self.assertEqual(ProductORM.objects.get(id=self.product_b.id).stock_quantity, 1)
        self.assertEqual(result.stock_levels[str(self.product_b.id)], 1)
        self.assertTrue(OutboxEvent.objects.filter(event_type="ProductLowStock").exists())

    def test_one_vendor_notification_per_vendor(self):
        second_a = make_product(self.vendor_a, name="Mat", price="300.00")
        self.service.place_order(
            self.customer.id,
            [self._line(self.product_a), self._line(second_a), self._line(self.product_b)],
            SHIPPING_ADDRESS,
        )

        events = OutboxEvent.objects.filter(event_type="VendorOrderReceived")
        self.assertEqual(events.count(), 2)
        by_vendor = {e.event_data["vendor_id"]: e.event_data for e in events}
        self.assertEqual(by_vendor[str(self.vendor_a.id)]["items_count"], 2)

    def test_stock_failure_is_a_warning(self):
        ledger = Mock()
        ledger.decrement.side_effect = RuntimeError("database hiccup")
        service = OrderFulfillmentService(stock_ledger=ledger, payout_service=VendorPayoutService(gateway=fake_gateway()))

        result = service.place_order(self.customer.id, [self._line(self.product_a)], SHIPPING_ADDRESS)

        self.assertEqual(result.outcome, "warning")
        self.assertIn("Stock update failed", result.warnings[0])
        self.assertTrue(OrderORM.objects.filter(id=result.order.id).exists())

    def test_empty_cart_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.place_order(self.customer.id, [], SHIPPING_ADDRESS)
        self.assertFalse(OrderORM.objects.exists())

    def test_missing_shipping_address_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.place_order(self.customer.id, [self._line(self.product_a)], None)

    def test_missing_vendor_rejected(self):
        line = {"productId": self.product_a.id, "quantity": 1}
        with self.assertRaises(ValidationError) as context:
            self.service.place_order(self.customer.id, [line], SHIPPING_ADDRESS)
        self.assertIn("vendor_id", str(context.exception))

    def test_non_positive_quantity_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.place_order(self.customer.id, [self._line(self.product_a, 0)], SHIPPING_ADDRESS)

    def test_negative_price_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.place_order(
                self.customer.id, [self._line(self.product_a, price="-5")], SHIPPING_ADDRESS
            )

    def test_unknown_customer_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.place_order(uuid4(), [self._line(self.product_a)], SHIPPING_ADDRESS)

    def test_vendor_cannot_buy_own_product(self):
        vendor_customer = make_customer(name="Vendor As Customer", id=self.vendor_a.id)
        with self.assertRaises(ValidationError):
            self.service.place_order(vendor_customer.id, [self._line(self.product_a)], SHIPPING_ADDRESS)

    def test_product_vendor_mismatch_rejected(self):
        line = {"productId": self.product_a.id, "vendorId": self.vendor_b.id, "quantity": 1}
        with self.assertRaises(ValidationError):
            self.service.place_order(self.customer.id, [line], SHIPPING_ADDRESS)

    def test_record_payment(self):
        result = self.service.place_order(self.customer.id, [self._line(self.product_a)], SHIPPING_ADDRESS)

        order = self.service.record_payment(result.order.id, "completed")

        self.assertEqual(order.payment_status.value, "completed")
        with self.assertRaises(ValidationError):
            self.service.record_payment(result.order.id, "bogus")

    def test_orders_for_customer(self):
        self.service.place_order(self.customer.id, [self._line(self.product_a)], SHIPPING_ADDRESS)
        self.service.place_order(self.customer.id, [self._line(self.product_b)], SHIPPING_ADDRESS)

        orders = self.service.orders_for_customer(self.customer.id, limit=1)

        self.assertEqual(len(orders), 1)
        with self.assertRaises(NotFound):
            self.service.get_order(uuid4())


class TransitionTest(TestCase):
    """Tests for the item state machine service."""

    def setUp(self):
        self.customer = make_customer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, price="2000.00", sale_price="2400.00")
        self.order = make_order(self.customer, [(self.product, 2)])
        self.item = self.order.items.get()

    def test_processing_pays_base_price_times_quantity(self):
        gateway = fake_gateway()
        service = _service(gateway)

        result = service.transition(self.item.id, "processing", self.vendor.id)

        self.assertEqual(result.outcome, "success")
        self.assertEqual(result.payout.amount, Decimal("4000.00"))
        self.assertEqual(gateway.disburse.call_args.args[0], Decimal("4000.00"))
        self.vendor.refresh_from_db()
        self.assertEqual(self.vendor.balance, Decimal("4000.00"))
        self.assertEqual(result.order_status, "processing")

    def test_payout_failure_keeps_status_change(self):
        service = _service(fake_gateway(error=GatewayError("Carrier unavailable")))

        result = service.transition(self.item.id, "processing", self.vendor.id)

        self.assertTrue(result.changed)
        self.assertEqual(result.outcome, "warning")
        self.assertIn("Payout failed", result.warnings[0])
        self.assertEqual(OrderItemORM.objects.get(id=self.item.id).status, "processing")
        self.assertEqual(VendorPayoutORM.objects.get().status, "failed")

    def test_missing_payment_setup_is_a_warning(self):
        vendor = make_vendor(store_name="Unset", mtn_phone=None)
        product = make_product(vendor)
        order = make_order(self.customer, [(product, 1)])
        item = order.items.get()

        result = _service().transition(item.id, "processing", vendor.id)

        self.assertEqual(result.outcome, "warning")
        self.assertEqual(OrderItemORM.objects.get(id=item.id).status, "processing")

    def test_same_status_is_noop(self):
        gateway = fake_gateway()
        result = _service(gateway).transition(self.item.id, "pending", self.vendor.id)

        self.assertFalse(result.changed)
        self.assertEqual(result.outcome, "noop")
        gateway.disburse.assert_not_called()
        self.assertFalse(OutboxEvent.objects.exists())

    def test_repeated_processing_does_not_pay_twice(self):
        gateway = fake_gateway()
        service = _service(gateway)

        service.transition(self.item.id, "processing", self.vendor.id)
        second = service.transition(self.item.id, "processing", self.vendor.id)

        self.assertEqual(second.outcome, "noop")
        self.assertEqual(gateway.disburse.call_count, 1)

    def test_payout_claim_after_transition_is_duplicate(self):
        gateway = fake_gateway()
        service = _service(gateway)
        service.transition(self.item.id, "processing", self.vendor.id)

        # Same item and target status as the claim the transition already made
        duplicate = service.payout_service.payout(
            self.order.id, self.vendor.id, Decimal("4000.00"), order_item_id=self.item.id
        )

        self.assertTrue(duplicate.duplicate)
        self.assertEqual(gateway.disburse.call_count, 1)
        self.assertEqual(VendorPayoutORM.objects.count(), 1)

    def test_other_vendor_forbidden(self):
        intruder = make_vendor(store_name="Intruder")
        with self.assertRaises(Forbidden):
            _service().transition(self.item.id, "processing", intruder.id)
        self.assertEqual(OrderItemORM.objects.get(id=self.item.id).status, "pending")

    def test_system_actor_allowed(self):
        result = _service().transition(self.item.id, "cancelled", SYSTEM_ACTOR)
        self.assertEqual(result.status, "cancelled")
        self.assertEqual(OrderORM.objects.get(id=self.order.id).status, "cancelled")

    def test_invalid_transition(self):
        with self.assertRaises(InvalidTransition):
            _service().transition(self.item.id, "delivered", self.vendor.id)

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            _service().transition(self.item.id, "teleported", self.vendor.id)

    def test_unknown_item(self):
        with self.assertRaises(NotFound):
            _service().transition(uuid4(), "processing", self.vendor.id)

    def test_customer_notified_on_processing_and_delivered(self):
        service = _service()
        for status in ("processing", "shipped", "delivered"):
            service.transition(self.item.id, status, self.vendor.id)

        statuses = [
            e.event_data["status"]
            for e in OutboxEvent.objects.filter(event_type="CustomerOrderStatusChanged").order_by("created_at")
        ]
        self.assertEqual(sorted(statuses), ["delivered", "processing"])

    def test_full_lifecycle_keeps_order_in_step(self):
        service = _service()
        for status in ("processing", "shipped", "delivered"):
            result = service.transition(self.item.id, status, self.vendor.id)
            self.assertEqual(result.order_status, status)
        self.assertEqual(VendorPayoutORM.objects.count(), 1)


class OrderAggregateStatusTest(TestCase):
    """Tests for the order status derived from its items."""

    def setUp(self):
        self.customer = make_customer()
        self.vendor_a = make_vendor(store_name="A")
        self.vendor_b = make_vendor(store_name="B")
        self.product_a = make_product(self.vendor_a, price="1000.00")
        self.product_b = make_product(self.vendor_b, price="700.00")
        self.order = make_order(self.customer, [(self.product_a, 1), (self.product_b, 1)])
        self.item_a = self.order.items.get(vendor=self.vendor_a)
        self.item_b = self.order.items.get(vendor=self.vendor_b)

    def test_two_vendor_order(self):
        service = _service()

        first = service.transition(self.item_a.id, "processing", self.vendor_a.id)
        self.assertEqual(first.fulfillment_status, "mixed")
        self.assertEqual(first.order_status, "pending")

        second = service.transition(self.item_b.id, "processing", self.vendor_b.id)
        self.assertEqual(second.fulfillment_status, "processing")
        self.assertEqual(second.order_status, "processing")

        self.assertEqual(VendorPayoutORM.objects.filter(vendor=self.vendor_a).count(), 1)
        self.assertEqual(VendorPayoutORM.objects.filter(vendor=self.vendor_b).count(), 1)

    def test_mixed_keeps_last_converged_status(self):
        service = _service()
        service.transition(self.item_a.id, "processing", self.vendor_a.id)
        service.transition(self.item_b.id, "processing", self.vendor_b.id)
        service.transition(self.item_a.id, "shipped", self.vendor_a.id)

        order = OrderORM.objects.get(id=self.order.id)
        self.assertEqual(order.fulfillment_status, "mixed")
        self.assertEqual(order.status, "processing")

    def test_recompute_order_status(self):
        OrderItemORM.objects.filter(order=self.order).update(status="shipped")

        self.assertEqual(_service().recompute_order_status(self.order.id), "shipped")
        self.assertEqual(OrderORM.objects.get(id=self.order.id).status, "shipped")
