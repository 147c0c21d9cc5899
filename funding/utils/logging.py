"""
JSON log formatter for the funding app.
"""
import json
import logging
from datetime import datetime, timezone

# Structured fields callers pass through ``extra=``
EXTRA_FIELDS = (
    "request_id",
    "order_id",
    "collective_id",
    "host_id",
    "transaction_id",
    "transaction_group",
    "subscription_id",
    "expense_id",
    "payment_method",
    "payment_method_type",
    "service",
    "amount",
    "currency",
    "status",
    "template",
    "recipient",
    "event_id",
    "event_type",
    "activity_id",
    "webhook_id",
    "count",
    "error",
)


class JsonFormatter(logging.Formatter):
    """One JSON document per record."""

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

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)
