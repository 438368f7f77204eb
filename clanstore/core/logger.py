"""
Global Logger - Centralized JSON structured logging for all clanstore components.

Provides unified logging functionality with features including:
- Standardized JSON output format with correlation ID support
- Player identifier masking for production compliance
- Component-specific logging with version tracking
- Root logger setup with optional file output
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional
from contextvars import ContextVar

correlation_id_context: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)

PLAYER_FIELDS = (
    "player",
    "username",
    "user",
    "player_ids",
    "founder",
    "leader",
)

def log_json(component: str, level: str, event: str, **fields) -> None:
    """
    Log structured JSON message with correlation ID and player masking.

    Args:
        component: Component name (e.g., "cache", "database")
        level: Log level ("debug", "info", "warning", "error", "critical")
        event: Event identifier
        **fields: Additional fields to log
    """
    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "level": level.upper(),
        "event": event,
        "component": component,
        "version": "1.0",
    }

    correlation_id = correlation_id_context.get(None)
    if correlation_id:
        log_entry["correlation_id"] = (
            str(correlation_id)[:8] if len(str(correlation_id)) > 8 else correlation_id
        )

    is_production = os.environ.get("PRODUCTION", "False").lower() == "true"
    for key, value in fields.items():
        if (
            "password" in key.lower()
            or "token" in key.lower()
            or "secret" in key.lower()
        ):
            log_entry[key] = "REDACTED"
        elif is_production and key in PLAYER_FIELDS:
            log_entry[key] = "REDACTED"
        elif key == "exc_info":
            exc_info = sys.exc_info() if value is True else value
            if isinstance(exc_info, tuple) and len(exc_info) >= 2 and exc_info[0]:
                log_entry["exception_type"] = exc_info[0].__name__
                log_entry["exception_message"] = str(exc_info[1])
        else:
            log_entry[key] = value

    json_str = json.dumps(log_entry, separators=(",", ":"), default=str)
    logging.getLogger("clanstore").log(
        getattr(logging, level.upper(), logging.INFO), json_str
    )

class ComponentLogger:
    """
    Component-specific logger wrapper for consistent logging.

    Automatically includes component name in all log calls.
    """

    def __init__(self, component_name: str):
        self.component_name = component_name

    def debug(self, event: str, **fields) -> None:
        """Log debug message."""
        log_json(self.component_name, "debug", event, **fields)

    def info(self, event: str, **fields) -> None:
        """Log info message."""
        log_json(self.component_name, "info", event, **fields)

    def warning(self, event: str, **fields) -> None:
        """Log warning message."""
        log_json(self.component_name, "warning", event, **fields)

    def error(self, event: str, **fields) -> None:
        """Log error message."""
        log_json(self.component_name, "error", event, **fields)

    def critical(self, event: str, **fields) -> None:
        """Log critical message."""
        log_json(self.component_name, "critical", event, **fields)

def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the root logger for JSON lines output.

    Args:
        level: Minimum level name
        log_file: Optional path of a file receiving the same records
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )
