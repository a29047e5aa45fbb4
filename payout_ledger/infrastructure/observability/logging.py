"""Structured JSON logging for ledger and payout audit trails"""

import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from payout_ledger.config import settings

logger = logging.getLogger("payout_ledger")

# Set by the HTTP middleware for the lifetime of one request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name
        # "request_id" in extras is a payout id; the HTTP one travels as correlation_id
        correlation_id = request_id_var.get()
        if correlation_id and "correlation_id" not in log_record:
            log_record["correlation_id"] = correlation_id


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    root.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)


def log_ledger_operation(
    operation: str,
    vendor_id: str,
    amount_cents: int,
    outcome: str,
    version: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    attempts: int = 1,
) -> None:
    """Log one ledger mutation (applied, duplicate or rejected)"""
    logger.info(
        "Ledger operation",
        extra={
            "step": "ledger_operation",
            "operation": operation,
            "vendor_id": vendor_id,
            "amount_cents": amount_cents,
            "outcome": outcome,
            "version": version,
            "idempotency_key": idempotency_key,
            "attempts": attempts,
        },
    )


def log_payout_transition(
    request_id: str,
    vendor_id: str,
    action: str,
    from_status: Optional[str],
    to_status: str,
    amount_cents: int,
    actor_id: Optional[str] = None,
) -> None:
    """Log a payout request state change for the admin audit trail"""
    logger.info(
        "Payout transition",
        extra={
            "step": "payout_transition",
            "request_id": request_id,
            "vendor_id": vendor_id,
            "action": action,
            "from_status": from_status,
            "to_status": to_status,
            "amount_cents": amount_cents,
            "actor_id": actor_id,
        },
    )
