"""
Structured JSON logging for the Prep API.
Provides request tracing, store timing and sync-score audit lines.
"""

import os
import time
import logging
import uuid
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with request context."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.request_context: Dict[str, Any] = {}

    def set_request_context(self, request_id: str, username: Optional[str] = None,
                            endpoint: Optional[str] = None, method: Optional[str] = None):
        """Set request context for tracing.

        Args:
            request_id: Unique request identifier
            username: Authenticated username (if applicable)
            endpoint: API endpoint being called
            method: HTTP method
        """
        self.request_context = {
            "request_id": request_id,
            "username": username,
            "endpoint": endpoint,
            "method": method,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def clear_context(self):
        self.request_context = {}

    def log(self, level: str, message: str, **kwargs):
        """Log message with the current request context as JSON fields.

        Args:
            level: Log level ('debug', 'info', 'warning', 'error', 'critical')
            message: Log message
            **kwargs: Additional fields to include in JSON
        """
        fields = {**self.request_context, **kwargs}
        getattr(self.logger, level)(message, extra={"context": fields})

    def debug(self, message: str, **kwargs):
        self.log("debug", message, **kwargs)

    def info(self, message: str, **kwargs):
        self.log("info", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.log("warning", message, **kwargs)

    def error(self, message: str, exc_info: Optional[str] = None, **kwargs):
        self.log("error", message, exc_info=exc_info, **kwargs)

    def critical(self, message: str, **kwargs):
        self.log("critical", message, **kwargs)

    def log_request(self, method: str, endpoint: str, username: Optional[str] = None) -> str:
        """Log incoming request and return its id."""
        request_id = str(uuid.uuid4())
        self.set_request_context(request_id, username, endpoint, method)
        self.info(f"{method} {endpoint} received")
        return request_id

    def log_response(self, status_code: int, response_time_ms: float, error: Optional[str] = None):
        log_data = {
            "status_code": status_code,
            "response_time_ms": round(response_time_ms, 2),
        }

        if error:
            log_data["error"] = error
            self.error(f"Request failed with status {status_code}", **log_data)
        else:
            self.info(f"Request completed with status {status_code}", **log_data)

    def log_database_query(self, table: str, operation: str, rows_affected: int,
                           query_time_ms: float, error: Optional[str] = None):
        log_data = {
            "table": table,
            "operation": operation,
            "rows_affected": rows_affected,
            "query_time_ms": round(query_time_ms, 2),
        }

        if error:
            log_data["error"] = error
            self.error(f"Store error: {operation} on {table}", **log_data)
        else:
            self.debug(f"Store {operation} on {table}", **log_data)

    def log_auth_attempt(self, username: str, success: bool, ip_address: Optional[str] = None):
        self.info(
            f"Auth attempt for {username}: {'success' if success else 'failed'}",
            username=username,
            success=success,
            ip_address=ip_address,
        )

    def log_rate_limit_exceeded(self, endpoint: str, username: Optional[str] = None):
        self.warning(
            f"Rate limit exceeded on {endpoint}",
            endpoint=endpoint,
            username=username,
        )

    def log_sync_computed(self, user_id: str, sync_score: int, chronotype: str,
                          reliability: float, sessions: int):
        """Audit line written every time a sync score is recomputed."""
        self.info(
            f"Sync score computed: {sync_score}",
            user_id=user_id,
            sync_score=sync_score,
            chronotype=chronotype,
            reliability=round(reliability, 3),
            sessions=sessions,
        )


class _ContextJsonFormatter(jsonlogger.JsonFormatter):
    """Flattens the `context` extra into top-level JSON keys."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        context = log_record.pop("context", None)
        if isinstance(context, dict):
            for key, value in context.items():
                if value is not None:
                    log_record.setdefault(key, value)
        log_record.setdefault("level", record.levelname)


def setup_json_logging(log_file: Optional[str] = None, level: str = "INFO"):
    """Setup JSON logging to console and, optionally, a file.

    Args:
        log_file: Optional file path for JSON logs
        level: Root log level name
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    json_formatter = _ContextJsonFormatter("%(asctime)s %(name)s %(message)s")

    # Avoid stacking handlers when the app module is reloaded
    for handler in list(root_logger.handlers):
        if getattr(handler, "_prep_handler", False):
            root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(json_formatter)
    console_handler._prep_handler = True
    root_logger.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(json_formatter)
        file_handler._prep_handler = True
        root_logger.addHandler(file_handler)

        root_logger.info(f"JSON logging initialized to {log_file}")


class Timer:
    """Context manager measuring elapsed milliseconds."""

    def __enter__(self):
        self.start = time.perf_counter()
        self.elapsed_ms = 0.0
        return self

    def __exit__(self, *exc):
        self.elapsed_ms = (time.perf_counter() - self.start) * 1000
        return False


# Global structured logger instance
logger = StructuredLogger("prep")
