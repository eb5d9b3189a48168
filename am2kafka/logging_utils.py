#!/usr/bin/env python3
"""
alertmanager2kafka - Logging Utilities

Text or NDJSON logging for the bridge, with the request correlation ID
attached to every record.

Usage:
    from am2kafka.logging_utils import setup_json_logging

    logger = setup_json_logging(service_name="am2kafka", version="1.0.0")
    logger.info("Published alert group", extra={"group_key": "{}:{}"})

Environment Variables:
    LOG_JSON_ENABLED: Enable JSON logging (default: false)
    LOG_LEVEL: Logging level (default: INFO)
    POD_NAME: Kubernetes pod name for metadata
"""

import os
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import g, has_request_context

TEXT_FORMAT = "%(asctime)s - %(levelname)s - [%(correlation_id)s] - %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "correlation_id", "taskName"}


class CorrelationIdFilter(logging.Filter):
    """Automatically adds the Flask request correlation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None):
            return True
        if has_request_context():
            record.correlation_id = g.get("correlation_id", "system")
        else:
            # startup, shutdown, kafka client threads
            record.correlation_id = "system"
        return True


class NDJSONFormatter(logging.Formatter):
    """
    Formats each record as a single-line JSON object.

    Fields: timestamp, level, message, logger, module, function, line,
    thread, service, version, pod_name, correlation_id, error (when an
    exception is attached) and any `extra=` fields.
    """

    def __init__(self, service_name: str, version: str):
        super().__init__()
        self.service_name = service_name
        self.version = version
        self.pod_name = os.getenv("POD_NAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": threading.get_ident(),
            "service": self.service_name,
            "version": self.version,
            "pod_name": self.pod_name,
            "correlation_id": getattr(record, "correlation_id", None) or "system",
        }

        if record.exc_info:
            log_entry["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


def setup_json_logging(
    service_name: str,
    version: str,
    level: Optional[str] = None,
    json_enabled: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure root logging for the bridge.

    Idempotent: existing root handlers are replaced.

    Args:
        service_name: Name reported in JSON records
        version: Service version reported in JSON records
        level: Logging level; None reads LOG_LEVEL (default INFO)
        json_enabled: Force JSON on or off; None reads LOG_JSON_ENABLED

    Returns:
        The configured root logger
    """
    if json_enabled is None:
        json_enabled = os.getenv("LOG_JSON_ENABLED", "false").lower() in ("true", "1", "yes", "on")
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    logger = logging.getLogger()
    logger.handlers.clear()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    handler.setLevel(logger.level)
    # On the handler so third-party records (kafka, werkzeug) get an ID too
    handler.addFilter(CorrelationIdFilter())

    if json_enabled:
        handler.setFormatter(NDJSONFormatter(service_name=service_name, version=version))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.info(
        f"{'JSON' if json_enabled else 'Standard'} logging enabled for "
        f"service={service_name} version={version} level={logging.getLevelName(logger.level)}"
    )
    return logger
