"""
Notification delivery boundary.

Services never call a dispatcher directly: they queue events in the outbox
and the relay worker hands each one to the configured dispatcher.
"""
from __future__ import annotations

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.utils.module_loading import import_string

from fulfillment.conf import FulfillmentSettings
from fulfillment.domain.exceptions import NotFound
from fulfillment.infra.models import CustomerORM, VendorORM
from fulfillment.infra.pii_masker import mask_email, mask_identifier


logger = logging.getLogger(__name__)


SUBJECTS = {
    "vendor_new_order": "New order received",
    "vendor_payout_succeeded": "Payout sent",
    "vendor_payout_failed": "Payout failed",
    "vendor_low_stock": "Low stock: {product_name}",
    "vendor_out_of_stock": "Out of stock: {product_name}",
    "customer_order_status": "Your order is {status}",
    "customer_order_refunded": "Your order has been refunded",
}

BODIES = {
    "vendor_new_order": "Order {order_id} contains {items_count} of your items (total {vendor_total} XAF).",
    "vendor_payout_succeeded": "A payout of {amount} XAF for order {order_id} was sent via {operator} (ref {reference}).",
    "vendor_payout_failed": "A payout of {amount} XAF for order {order_id} failed: {error}. Please check your payment settings.",
    "vendor_low_stock": "Only {current_stock} unit(s) of {product_name} left in stock.",
    "vendor_out_of_stock": "{product_name} is out of stock.",
    "customer_order_status": "Order {order_id} ({order_total} XAF) is now {status}.",
    "customer_order_refunded": "Order {order_id} was refunded ({amount} XAF). Reason: {reason}.",
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def render(template: str, data: dict) -> tuple[str, str]:
    """Subject and plain-text body for a template."""
    values = _Defaults(data)
    subject = SUBJECTS.get(template, template).format_map(values)
    body = BODIES.get(template, "").format_map(values)
    return subject, body


class NotificationDispatcher:
    """Deliver one rendered notification to a vendor or customer."""

    def send(self, recipient_type: str, recipient_id: str, template: str, data: dict) -> None:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Writes notifications to the log only."""

    def send(self, recipient_type, recipient_id, template, data):
        logger.info(
            "notification_sent",
            extra={
                "operation": template,
                "user_id": f"{recipient_type}:{mask_identifier(str(recipient_id))}",
                "order_id": data.get("order_id"),
            },
        )


class EmailNotificationDispatcher(NotificationDispatcher):
    """Sends notifications by email to the recipient's address on file."""

    def send(self, recipient_type, recipient_id, template, data):
        email = self._resolve_email(recipient_type, recipient_id)
        subject, body = render(template, data)
        send_mail(
            subject,
            body,
            settings.DEFAULT_FROM_EMAIL,
            [email],
            fail_silently=False,
        )
        logger.info(
            "notification_emailed",
            extra={"operation": template, "user_id": mask_email(email)},
        )

    def _resolve_email(self, recipient_type: str, recipient_id: str) -> str:
        if recipient_type == "vendor":
            model = VendorORM
        elif recipient_type == "customer":
            model = CustomerORM
        else:
            raise ValueError(f"Unknown recipient type: {recipient_type}")

        email = model.objects.filter(id=recipient_id).values_list("email", flat=True).first()
        if not email:
            raise NotFound(f"No email address for {recipient_type} {recipient_id}")
        return email


def get_dispatcher(path: str | None = None) -> NotificationDispatcher:
    """Instantiate the dispatcher named in settings (or the given dotted path)."""
    path = path or FulfillmentSettings.load().notification_dispatcher
    return import_string(path)()
