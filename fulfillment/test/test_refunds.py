"""
Tests for manual refunds and the automatic refund sweep.
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock, patch
from uuid import uuid4

from django.test import TestCase
from django.utils import timezone

from fulfillment.conf import FulfillmentSettings
from fulfillment.domain.exceptions import NotFound, ValidationError
from fulfillment.infra.models import OrderItemORM, OrderORM, RefundORM
from fulfillment.infra.outbox import OutboxEvent
from fulfillment.services.refunds import RefundReconciliationJob, RefundService
from fulfillment.test.factories import NO_DELAY, make_customer, make_order, make_product, make_vendor


class RefundSweepTest(TestCase):
    """Tests for the stalled order sweep."""

    def setUp(self):
        self.customer = make_customer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, price="2500.00")
        self.job = RefundReconciliationJob(config=NO_DELAY)

    def test_refunds_stalled_paid_order(self):
        order = make_order(self.customer, [(self.product, 2)], days_ago=4, shipping_fee="500.00")

        report = self.job.sweep()

        self.assertEqual(report.refunded, 1)
        refund = RefundORM.objects.get(order=order)
        self.assertEqual(refund.amount, Decimal("5500.00"))
        self.assertEqual(refund.reason, "Automatic refund - Order delayed for 4 days")
        self.assertEqual(refund.method, "automatic")
        self.assertEqual(refund.status, "processed")
        self.assertEqual(refund.processed_by, "system")

        order.refresh_from_db()
        self.assertEqual(order.status, "cancelled")
        self.assertEqual(order.payment_status, "refunded")
        self.assertIsNone(order.refund_claimed_at)
        self.assertEqual(set(OrderItemORM.objects.filter(order=order).values_list("status", flat=True)), {"cancelled"})

        event = OutboxEvent.objects.get(event_type="CustomerOrderRefunded")
        self.assertEqual(event.event_data["delay_days"], 4)
        self.assertEqual(event.event_data["customer_id"], str(self.customer.id))

    def test_recent_order_not_refunded(self):
        make_order(self.customer, [(self.product, 1)], days_ago=2)

        report = self.job.sweep()

        self.assertEqual(report.outcomes, [])
        self.assertFalse(RefundORM.objects.exists())

    def test_unpaid_order_not_refunded(self):
        make_order(self.customer, [(self.product, 1)], payment_status="pending", days_ago=5)
        self.assertEqual(self.job.sweep().refunded, 0)
        self.assertFalse(RefundORM.objects.exists())

    def test_order_in_progress_not_refunded(self):
        make_order(self.customer, [(self.product, 1)], status="processing", days_ago=5)
        self.assertEqual(self.job.sweep().refunded, 0)

    def test_second_sweep_refunds_nothing(self):
        make_order(self.customer, [(self.product, 1)], days_ago=4)

        self.assertEqual(self.job.sweep().refunded, 1)
        second = self.job.sweep()

        self.assertEqual(second.refunded, 0)
        self.assertEqual(RefundORM.objects.count(), 1)
        self.assertEqual(OutboxEvent.objects.filter(event_type="CustomerOrderRefunded").count(), 1)

    def test_existing_refund_is_skipped(self):
        order = make_order(self.customer, [(self.product, 1)], days_ago=4)
        RefundORM.objects.create(
            order=order, customer=self.customer, amount=order.total_amount, reason="Earlier", method="manual"
        )

        report = self.job.sweep()

        self.assertEqual(report.outcomes[0].status, "skipped")
        self.assertEqual(RefundORM.objects.count(), 1)
        order.refresh_from_db()
        self.assertIsNone(order.refund_claimed_at)

    def test_order_claimed_by_another_worker_is_skipped(self):
        order = make_order(self.customer, [(self.product, 1)], days_ago=4)
        OrderORM.objects.filter(id=order.id).update(refund_claimed_at=timezone.now() - timedelta(minutes=1))

        report = self.job.sweep()

        self.assertEqual(report.outcomes[0].status, "skipped")
        self.assertEqual(report.outcomes[0].detail, "Claimed by another worker")
        self.assertFalse(RefundORM.objects.exists())

    def test_expired_claim_is_taken_over(self):
        order = make_order(self.customer, [(self.product, 1)], days_ago=4)
        OrderORM.objects.filter(id=order.id).update(refund_claimed_at=timezone.now() - timedelta(hours=1))

        self.assertEqual(self.job.sweep().refunded, 1)

    def test_failure_does_not_stop_sweep(self):
        first = make_order(self.customer, [(self.product, 1)], days_ago=6)
        second = make_order(self.customer, [(self.product, 1)], days_ago=5)
        original = self.job.refund_service.record_refund

        def flaky(order_id, **kwargs):
            if order_id == first.id:
                raise RuntimeError("database hiccup")
            return original(order_id=order_id, **kwargs)

        with patch.object(self.job.refund_service, "record_refund", side_effect=flaky):
            report = self.job.sweep()

        self.assertEqual(report.failed, 1)
        self.assertEqual(report.refunded, 1)
        self.assertTrue(RefundORM.objects.filter(order=second).exists())
        first.refresh_from_db()
        self.assertIsNone(first.refund_claimed_at)
        self.assertEqual(first.status, "pending")

    def test_sleeps_between_orders(self):
        make_order(self.customer, [(self.product, 1)], days_ago=4)
        make_order(self.customer, [(self.product, 1)], days_ago=4)
        sleep = Mock()
        job = RefundReconciliationJob(config=FulfillmentSettings(sweep_inter_order_delay=0.5), sleep=sleep)

        job.sweep()

        sleep.assert_called_once_with(job.config.sweep_inter_order_delay)

    def test_no_sleep_after_single_order(self):
        make_order(self.customer, [(self.product, 1)], days_ago=4)
        sleep = Mock()
        job = RefundReconciliationJob(config=FulfillmentSettings(sweep_inter_order_delay=0.5), sleep=sleep)

        job.sweep()

        sleep.assert_not_called()

    def test_report_to_dict(self):
        make_order(self.customer, [(self.product, 1)], days_ago=4)

        data = self.job.sweep().to_dict()

        self.assertEqual(data["checked"], 1)
        self.assertEqual(data["refunded"], 1)
        self.assertFalse(data["skipped"])
        self.assertEqual(data["outcomes"][0]["delayDays"], 4)


class ManualRefundTest(TestCase):
    """Tests for administrator refunds."""

    def setUp(self):
        self.customer = make_customer()
        self.product = make_product(make_vendor(), price="1000.00")
        self.order = make_order(self.customer, [(self.product, 3)])
        self.service = RefundService()

    def test_refund_order(self):
        refund = self.service.refund_order(self.order.id, "Damaged in transit", admin_id="admin-1")

        self.assertEqual(refund.amount, Decimal("3000.00"))
        self.assertEqual(refund.method, "manual")
        self.assertEqual(refund.processed_by, "admin-1")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "refunded")
        self.assertEqual(self.order.status, "cancelled")

    def test_partial_amount(self):
        refund = self.service.refund_order(self.order.id, "Partial", admin_id="admin-1", amount="1200")
        self.assertEqual(refund.amount, Decimal("1200"))

    def test_second_refund_rejected(self):
        self.service.refund_order(self.order.id, "Damaged", admin_id="admin-1")

        with self.assertRaises(ValidationError):
            self.service.refund_order(self.order.id, "Again", admin_id="admin-1")
        self.assertEqual(RefundORM.objects.count(), 1)

    def test_unpaid_order_rejected(self):
        order = make_order(self.customer, [(self.product, 1)], payment_status="pending")
        with self.assertRaises(ValidationError):
            self.service.refund_order(order.id, "Changed mind", admin_id="admin-1")

    def test_amount_above_total_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.refund_order(self.order.id, "Too much", admin_id="admin-1", amount="5000")

    def test_reason_required(self):
        with self.assertRaises(ValidationError):
            self.service.refund_order(self.order.id, "", admin_id="admin-1")

    def test_unknown_order(self):
        with self.assertRaises(NotFound):
            self.service.refund_order(uuid4(), "Missing", admin_id="admin-1")
