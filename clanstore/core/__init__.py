"""
Core Utilities Module - Shared functionality for the clan store.

Provides centralized access to structured JSON logging.
"""

from .logger import ComponentLogger, correlation_id_context, log_json, setup_logging

__all__ = [
    "ComponentLogger",
    "correlation_id_context",
    "log_json",
    "setup_logging",
]
