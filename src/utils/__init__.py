"""
ZK-PRET Composed Proofs Utilities.

Provides shared utilities across the application:
- Structured logging configuration and log context
"""

from src.utils.logging_config import (
    # Formatters
    ConsoleFormatter,
    ContextFilter,
    JSONFormatter,
    # Configuration
    LoggingConfig,
    configure_logging,
    get_logging_config,
    reset_logging_config,
    # Log context
    LOG_CONTEXT_VARS,
    bind_log_context,
    clear_log_context,
    component_id_var,
    current_log_context,
    record_log_context,
    execution_id_var,
    request_id_var,
    # Timing
    OperationTiming,
    timed_operation,
)

__all__ = [
    "configure_logging",
    "get_logging_config",
    "reset_logging_config",
    "LoggingConfig",
    "LOG_CONTEXT_VARS",
    "bind_log_context",
    "clear_log_context",
    "current_log_context",
    "record_log_context",
    "request_id_var",
    "execution_id_var",
    "component_id_var",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextFilter",
    "OperationTiming",
    "timed_operation",
]
