"""
ZK-PRET Composed Proofs - Audit Recorder
Version: 1.0
Purpose: Append-only, thread-safe audit trail for one execution
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from .models import AuditEntry, AuditLevel

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    AuditLevel.INFO: logging.INFO,
    AuditLevel.WARN: logging.WARNING,
    AuditLevel.ERROR: logging.ERROR,
}


class AuditActions:
    """Action names written to the audit trail"""

    EXECUTION_STARTED = "EXECUTION_STARTED"
    LAYER_STARTED = "LAYER_STARTED"
    COMPONENT_EXECUTION_STARTED = "COMPONENT_EXECUTION_STARTED"
    COMPONENT_EXECUTION_COMPLETED = "COMPONENT_EXECUTION_COMPLETED"
    COMPONENT_EXECUTION_ERROR = "COMPONENT_EXECUTION_ERROR"
    COMPONENT_RETRY = "COMPONENT_RETRY"
    COMPONENT_TIMEOUT = "COMPONENT_TIMEOUT"
    COMPONENT_SKIPPED = "COMPONENT_SKIPPED"
    CACHE_HIT = "CACHE_HIT"
    CACHE_MISS = "CACHE_MISS"
    CACHE_STORED = "CACHE_STORED"
    CANCELLATION_REQUESTED = "CANCELLATION_REQUESTED"
    AGGREGATION_COMPLETED = "AGGREGATION_COMPLETED"
    AGGREGATION_FAILED = "AGGREGATION_FAILED"
    EXECUTION_COMPLETED = "EXECUTION_COMPLETED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    EXECUTION_CANCELLED = "EXECUTION_CANCELLED"


class AuditRecorder:
    """
    Sole writer of an execution's audit trail.

    Entries are frozen models appended under a lock, so concurrent
    component tasks can record safely. Readers get a snapshot copy.
    Every entry is mirrored to the module logger at the matching level.
    """

    def __init__(self, execution_id: Optional[str] = None, mirror_to_log: bool = True):
        self.execution_id = execution_id
        self.mirror_to_log = mirror_to_log
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    def record(
        self,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        component_id: Optional[str] = None,
        level: AuditLevel = AuditLevel.INFO,
    ) -> AuditEntry:
        entry = AuditEntry(
            action=action, component_id=component_id, details=dict(details or {}), level=level
        )
        with self._lock:
            self._entries.append(entry)

        if self.mirror_to_log:
            logger.log(
                _LOG_LEVELS[level],
                f"[audit] {action}" + (f" component={component_id}" if component_id else ""),
                extra={
                    "audit_action": action,
                    "execution_id": self.execution_id,
                    "audit_details": entry.details,
                },
            )
        return entry

    def info(self, action: str, details: Optional[Dict[str, Any]] = None, **kwargs) -> AuditEntry:
        return self.record(action, details, level=AuditLevel.INFO, **kwargs)

    def warn(self, action: str, details: Optional[Dict[str, Any]] = None, **kwargs) -> AuditEntry:
        return self.record(action, details, level=AuditLevel.WARN, **kwargs)

    def error(self, action: str, details: Optional[Dict[str, Any]] = None, **kwargs) -> AuditEntry:
        return self.record(action, details, level=AuditLevel.ERROR, **kwargs)

    @property
    def entries(self) -> Tuple[AuditEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def for_component(self, component_id: str) -> List[AuditEntry]:
        return [e for e in self.entries if e.component_id == component_id]

    def actions(self) -> List[str]:
        return [e.action for e in self.entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
