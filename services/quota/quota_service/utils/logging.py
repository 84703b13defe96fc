"""
ABOUTME: Structured logging configuration for the quota service
ABOUTME: JSON logging to stdout that identifies users by id only
"""

import hashlib
import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from quota_service.config import settings


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter with contextual fields

    - One JSON object per line for log aggregation tools
    - Host/process/thread context
    - Exception type, message and stack trace when present
    - Anything passed via ``extra`` is merged into the object
    """

    STANDARD_ATTRS = {
        "name", "msg", "args", "created", "filename", "funcName", "levelname",
        "levelno", "lineno", "module", "msecs", "pathname", "process",
        "processName", "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "getMessage", "message", "taskName",
    }

    def __init__(self):
        super().__init__()
        self.hostname = os.uname().nodename
        self.pid = os.getpid()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON"""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "hostname": self.hostname,
            "pid": self.pid,
            "thread_name": record.threadName,
            "environment": settings.environment,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": "".join(traceback.format_exception(*record.exc_info)),
            }

        for attr_name, attr_value in record.__dict__.items():
            if attr_name.startswith("_") or attr_name in self.STANDARD_ATTRS:
                continue
            if isinstance(attr_value, (str, int, float, bool, type(None), dict, list)):
                log_data[attr_name] = attr_value

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging() -> logging.Logger:
    """Configure structured JSON logging on stdout"""
    logger = logging.getLogger("quota_service")
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # Clear existing handlers to avoid duplicates on reload
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredJSONFormatter())
    logger.addHandler(console_handler)

    logger.propagate = False

    return logger


# Global logger instance
logger = setup_logging()


# ============================================================================
# Utility Functions for Common Logging Patterns
# ============================================================================


def log_request(
    request_id: str,
    action: str,
    user_id: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
):
    """
    Log an API request with standard context

    Example:
        log_request(request_id="abc123", action="deduct_gems", user_id="u1",
                    extra={"gems_to_deduct": 2})
    """
    context = {"request_id": request_id, "action": action, **(extra or {})}

    if user_id:
        context["user_id"] = user_id

    logger.info(f"Request: {action}", extra=context)


def log_error(
    error: Exception,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
):
    """Log an error with full context and stack trace"""
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **(context or {}),
    }

    if request_id:
        error_context["request_id"] = request_id
    if user_id:
        error_context["user_id"] = user_id

    logger.error(
        f"Error: {type(error).__name__}: {str(error)}",
        extra=error_context,
        exc_info=True,
    )


def log_quota_event(
    event_type: str,
    user_id: str,
    kind: str = "gem",
    extra: Optional[Dict[str, Any]] = None,
):
    """
    Log a quota state change (deduct, reject, reset, timeout)

    Args:
        event_type: "deducted", "rejected", "reset", "timeout_triggered", ...
        user_id: User the record belongs to
        kind: "gem" or "token"
        extra: Amounts and timestamps relevant to the event
    """
    quota_context = {
        "quota_event": event_type,
        "quota_kind": kind,
        "user_id": user_id,
        **(extra or {}),
    }

    logger.info(f"Quota {kind} {event_type}", extra=quota_context)


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    severity: str = "INFO",
    extra: Optional[Dict[str, Any]] = None,
):
    """
    Log security-related events (auth failures, tier switch rejections)

    Email addresses are hashed before they are written.
    """
    security_context = {"security_event": event_type, "severity": severity, **(extra or {})}

    if user_id:
        security_context["user_id"] = user_id
    if email:
        security_context["email_hash"] = hashlib.sha256(email.lower().encode()).hexdigest()[:16]

    log_level = getattr(logging, severity.upper(), logging.INFO)
    logger.log(log_level, f"Security: {event_type}", extra=security_context)
