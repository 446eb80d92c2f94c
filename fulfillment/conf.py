"""
Typed access to the FULFILLMENT and CAMPAY settings.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings


@dataclass(frozen=True)
class FulfillmentSettings:
    """Tunables for the fulfillment core."""

    refund_after_days: int = 3
    sweep_inter_order_delay: float = 1.0
    sweep_interval: int = 2 * 60 * 60
    refund_claim_lease: int = 15 * 60
    stock_notification_window: int = 60 * 60
    low_stock_levels: tuple = (0, 1)
    low_stock_threshold: int = 5
    stock_check_interval: int = 6 * 60 * 60
    stock_check_delay: float = 1.0
    outbox_max_retries: int = 5
    notification_dispatcher: str = "fulfillment.infra.notifications.LoggingNotificationDispatcher"
    ops_token: str = ""
    admin_user_ids: tuple = ()

    @classmethod
    def load(cls) -> "FulfillmentSettings":
        """Build from settings.FULFILLMENT, falling back to defaults."""
        raw = getattr(settings, "FULFILLMENT", {}) or {}
        defaults = cls()
        return cls(
            refund_after_days=int(raw.get("REFUND_AFTER_DAYS", defaults.refund_after_days)),
            sweep_inter_order_delay=float(raw.get("SWEEP_INTER_ORDER_DELAY", defaults.sweep_inter_order_delay)),
            sweep_interval=int(raw.get("SWEEP_INTERVAL", defaults.sweep_interval)),
            refund_claim_lease=int(raw.get("REFUND_CLAIM_LEASE", defaults.refund_claim_lease)),
            stock_notification_window=int(raw.get("STOCK_NOTIFICATION_WINDOW", defaults.stock_notification_window)),
            low_stock_levels=tuple(raw.get("LOW_STOCK_LEVELS", defaults.low_stock_levels)),
            low_stock_threshold=int(raw.get("LOW_STOCK_THRESHOLD", defaults.low_stock_threshold)),
            stock_check_interval=int(raw.get("STOCK_CHECK_INTERVAL", defaults.stock_check_interval)),
            stock_check_delay=float(raw.get("STOCK_CHECK_DELAY", defaults.stock_check_delay)),
            outbox_max_retries=int(raw.get("OUTBOX_MAX_RETRIES", defaults.outbox_max_retries)),
            notification_dispatcher=raw.get("NOTIFICATION_DISPATCHER", defaults.notification_dispatcher),
            ops_token=raw.get("OPS_TOKEN", defaults.ops_token) or "",
            admin_user_ids=tuple(raw.get("ADMIN_USER_IDS", defaults.admin_user_ids)),
        )


@dataclass(frozen=True)
class GatewayConfig:
    """Campay disbursement settings. Sandbox mode is explicit, never guessed from the URL."""

    base_url: str = "https://demo.campay.net"
    token: str = ""
    sandbox: bool = True
    sandbox_max_amount: Decimal = Decimal("100")
    country_code: str = "237"
    timeout: float = 15.0
    max_retries: int = 2
    retry_delay: float = 1.0

    @classmethod
    def from_settings(cls) -> "GatewayConfig":
        raw = getattr(settings, "CAMPAY", {}) or {}
        defaults = cls()
        return cls(
            base_url=str(raw.get("BASE_URL", defaults.base_url)).rstrip("/"),
            token=raw.get("TOKEN", defaults.token) or "",
            sandbox=bool(raw.get("SANDBOX", defaults.sandbox)),
            sandbox_max_amount=Decimal(str(raw.get("SANDBOX_MAX_AMOUNT", defaults.sandbox_max_amount))),
            country_code=str(raw.get("COUNTRY_CODE", defaults.country_code)),
            timeout=float(raw.get("TIMEOUT", defaults.timeout)),
            max_retries=int(raw.get("MAX_RETRIES", defaults.max_retries)),
            retry_delay=float(raw.get("RETRY_DELAY", defaults.retry_delay)),
        )
