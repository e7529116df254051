"""
Structured logging for the composed proof engine.

Every record emitted while a composed proof runs carries the identifiers of
the HTTP request, the execution and the proof component in flight. They are
held in context variables so concurrent executions on one event loop keep
their own values.

Output is JSON lines when LOG_FORMAT=json (log shippers) and a compact
single-line layout otherwise (terminals).

Version: 1.0.0
"""

import json
import logging
import os
import socket
import sys
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

# =============================================================================
# Log Context
# =============================================================================

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
execution_id_var: ContextVar[Optional[str]] = ContextVar("execution_id", default=None)
component_id_var: ContextVar[Optional[str]] = ContextVar("component_id", default=None)

LOG_CONTEXT_VARS: Dict[str, ContextVar[Optional[str]]] = {
    "request_id": request_id_var,
    "execution_id": execution_id_var,
    "component_id": component_id_var,
}

# Short tags used by the console layout
_CONSOLE_TAGS = {"request_id": "req", "execution_id": "exec", "component_id": "comp"}


def current_log_context() -> Dict[str, str]:
    """Identifiers bound in the current context, unset ones omitted."""
    return {name: var.get() for name, var in LOG_CONTEXT_VARS.items() if var.get()}


_UNSET = "-"


def record_log_context(record: logging.LogRecord) -> Dict[str, str]:
    """Ids for one record: values passed via extra= win over the bound context."""
    context = {}
    for name, var in LOG_CONTEXT_VARS.items():
        value = getattr(record, name, None)
        if not value or value == _UNSET:
            value = var.get()
        if value:
            context[name] = value
    return context


@contextmanager
def bind_log_context(**ids: Optional[str]) -> Iterator[Dict[str, str]]:
    """Bind identifiers for the duration of a block, restoring the previous values.

    Args:
        **ids: any of request_id, execution_id, component_id. None leaves the
            current value untouched.

    Raises:
        KeyError: for a name that is not a log context field.
    """
    tokens = []
    for name, value in ids.items():
        if value is not None:
            tokens.append((LOG_CONTEXT_VARS[name], LOG_CONTEXT_VARS[name].set(value)))
    try:
        yield current_log_context()
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_log_context() -> None:
    for var in LOG_CONTEXT_VARS.values():
        var.set(None)


# =============================================================================
# Formatters
# =============================================================================

# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"} | frozenset(LOG_CONTEXT_VARS)


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: timestamp, level, logger, message, any bound context ids, hostname,
    the static fields given at construction, ``location`` for WARNING and
    above, ``error`` when exception info is attached and ``extra`` for
    anything passed through ``extra=``.
    """

    def __init__(
        self,
        static_fields: Optional[Dict[str, Any]] = None,
        include_hostname: bool = True,
    ):
        super().__init__()
        self.static_fields = dict(static_fields or {})
        self.hostname = socket.gethostname() if include_hostname else None

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_log_context(record),
        }
        if self.hostname:
            entry["hostname"] = self.hostname
        entry.update(self.static_fields)

        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["error"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info),
            }

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Single-line layout for terminals.

    12:00:00.123 INFO  src.composed_proofs.scheduler | Layer 1/2 done  req=1a2b3c4d exec=5e6f7a8b comp=gleif
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True, stream=None):
        super().__init__()
        stream = stream if stream is not None else sys.stdout
        self.use_colors = use_colors and hasattr(stream, "isatty") and stream.isatty()

    def _paint(self, text: str, code: str) -> str:
        return f"{code}{text}{self.RESET}" if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created)
        stamp = created.strftime("%H:%M:%S") + f".{int(record.msecs):03d}"
        level = self._paint(f"{record.levelname:<5}", self.LEVEL_COLORS.get(record.levelno, ""))

        tags = []
        for name, value in record_log_context(record).items():
            # uuids are shortened, component ids are already short
            shown = value if name == "component_id" else value[:8]
            tags.append(f"{_CONSOLE_TAGS[name]}={shown}")

        line = f"{stamp} {level} {record.name} | {record.getMessage()}"
        if tags:
            line += "  " + self._paint(" ".join(tags), self.DIM)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextFilter(logging.Filter):
    """Copies the log context onto each record for %-style format strings.

    Ids already on the record (passed via ``extra=``) are kept. Anything
    still unset becomes "-", so ``%(execution_id)s`` is always resolvable.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in LOG_CONTEXT_VARS.items():
            if not getattr(record, name, None):
                setattr(record, name, var.get() or _UNSET)
        return True


# =============================================================================
# Configuration
# =============================================================================

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access")


def _parse_module_levels(raw: str) -> Dict[str, str]:
    """Parse ``LOG_LEVELS=src.composed_proofs.scheduler=debug,httpx=error``."""
    levels: Dict[str, str] = {}
    for pair in raw.split(","):
        module, sep, level = pair.partition("=")
        if sep and module.strip():
            levels[module.strip()] = level.strip().upper()
    return levels


@dataclass
class LoggingConfig:
    """Logging settings, normally read from the environment."""

    level: str = "INFO"
    format: str = "text"
    service_name: str = "zk-pret-composed-proofs"
    environment: str = "development"
    use_colors: bool = True
    module_levels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        env = os.environ
        return cls(
            level=env.get("LOG_LEVEL", "INFO").upper(),
            format=env.get("LOG_FORMAT", "text").lower(),
            service_name=env.get("SERVICE_NAME", "zk-pret-composed-proofs"),
            environment=env.get("ENVIRONMENT", "development"),
            use_colors=env.get("NO_COLOR", "").lower() not in ("1", "true", "yes"),
            module_levels=_parse_module_levels(env.get("LOG_LEVELS", "")),
        )

    def build_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        if self.format == "json":
            handler.setFormatter(
                JSONFormatter(
                    static_fields={
                        "service": self.service_name,
                        "environment": self.environment,
                    }
                )
            )
        else:
            handler.setFormatter(ConsoleFormatter(use_colors=self.use_colors))
        handler.setLevel(getattr(logging, self.level, logging.INFO))
        handler.addFilter(ContextFilter())
        return handler

    def apply(self) -> None:
        """Replace the root handlers with one handler built from these settings."""
        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        root.handlers.clear()
        root.addHandler(self.build_handler())

        for module, level in self.module_levels.items():
            logging.getLogger(module).setLevel(getattr(logging, level, logging.INFO))
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        logging.getLogger(__name__).info(
            f"Logging configured for {self.service_name} ({self.environment}): "
            f"format={self.format}, level={self.level}"
        )


_logging_config: Optional[LoggingConfig] = None
_logging_lock = threading.Lock()


def get_logging_config() -> LoggingConfig:
    """Get the process-wide logging settings, reading the environment once."""
    global _logging_config
    if _logging_config is None:
        with _logging_lock:
            if _logging_config is None:
                _logging_config = LoggingConfig.from_env()
    return _logging_config


def reset_logging_config() -> None:
    """Forget cached settings (testing)."""
    global _logging_config
    with _logging_lock:
        _logging_config = None


def configure_logging(config: Optional[LoggingConfig] = None) -> LoggingConfig:
    """Install the application handler. Call once at startup."""
    config = config or get_logging_config()
    config.apply()
    return config


# =============================================================================
# Timing
# =============================================================================


@dataclass
class OperationTiming:
    operation: str
    duration_ms: Optional[float] = None


@contextmanager
def timed_operation(
    operation: str,
    logger: Optional[logging.Logger] = None,
    level: int = logging.DEBUG,
    warn_threshold_ms: Optional[float] = None,
) -> Iterator[OperationTiming]:
    """Log how long a block took, escalating to WARNING above a threshold.

    The duration is logged whether or not the block raises, and the
    exception propagates.

    Usage:
        with timed_operation("template_resolution", logger):
            graph = resolver.resolve(components)
    """
    logger = logger or logging.getLogger(__name__)
    timing = OperationTiming(operation=operation)
    started = time.perf_counter()
    try:
        yield timing
    finally:
        timing.duration_ms = (time.perf_counter() - started) * 1000
        if warn_threshold_ms is not None and timing.duration_ms > warn_threshold_ms:
            level = logging.WARNING
        logger.log(
            level,
            f"{operation} took {timing.duration_ms:.2f}ms",
            extra={"operation": operation, "duration_ms": timing.duration_ms},
        )
