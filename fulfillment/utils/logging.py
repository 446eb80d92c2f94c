"""
JSON formatter for structured logging.
"""
import json
import logging
from datetime import datetime, timezone

# extra= keys copied into the JSON record
EXTRA_FIELDS = (
    "request_id",
    "user_id",
    "operation",
    "status",
    "idempotency_key",
    "order_id",
    "item_id",
    "vendor_id",
    "customer_id",
    "product_id",
    "payout_id",
    "refund_id",
    "event_id",
    "reference",
    "phone_number",
    "amount",
    "requested",
    "current_stock",
    "attempt",
    "count",
    "failed",
    "error",
)


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)
