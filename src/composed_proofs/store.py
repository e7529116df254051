"""
ZK-PRET Composed Proofs - Execution Store
Version: 1.0
Purpose: Registry of run records and their final results

Lifecycle: a record is added when a request is accepted, transitioned only
by the scheduler, and purged once terminal and older than the retention
window (or when the store exceeds max_executions, oldest terminal first).
Running executions are never purged.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ExecutionNotFoundError
from .models import ComposedProofExecution, ComposedProofResult

logger = logging.getLogger(__name__)


@dataclass
class StoredExecution:
    execution: ComposedProofExecution
    result: Optional[ComposedProofResult] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.execution.status.is_terminal


class ExecutionStore:
    """Thread-safe in-memory execution registry with retention"""

    def __init__(
        self,
        retention_seconds: float = 3600.0,
        max_executions: int = 1000,
        clock=time.time,
    ):
        self.retention_seconds = retention_seconds
        self.max_executions = max_executions
        self._clock = clock
        self._items: "OrderedDict[str, StoredExecution]" = OrderedDict()
        self._lock = threading.RLock()

    def add(self, execution: ComposedProofExecution) -> None:
        with self._lock:
            self._items[execution.id] = StoredExecution(execution=execution, created_at=self._clock())
            self._purge_locked()

    def get(self, execution_id: str) -> Optional[ComposedProofExecution]:
        with self._lock:
            item = self._items.get(execution_id)
            return item.execution if item else None

    def require(self, execution_id: str) -> ComposedProofExecution:
        execution = self.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def set_result(self, execution_id: str, result: ComposedProofResult) -> None:
        with self._lock:
            item = self._items.get(execution_id)
            if item is None:
                raise ExecutionNotFoundError(execution_id)
            item.result = result
            item.finished_at = self._clock()

    def get_result(self, execution_id: str) -> Optional[ComposedProofResult]:
        with self._lock:
            item = self._items.get(execution_id)
            if item is None:
                raise ExecutionNotFoundError(execution_id)
            return item.result

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._items)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            terminal = sum(1 for i in self._items.values() if i.is_terminal)
            return {"total": len(self._items), "terminal": terminal, "active": len(self._items) - terminal}

    def purge(self) -> int:
        """Apply the retention policy now. Returns the number of records removed."""
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        # Runs that ended without a stored result age from the first purge that sees them
        for item in self._items.values():
            if item.is_terminal and item.finished_at is None:
                item.finished_at = now

        expired = [
            eid
            for eid, item in self._items.items()
            if item.is_terminal
            and item.finished_at is not None
            and now - item.finished_at >= self.retention_seconds
        ]
        for eid in expired:
            del self._items[eid]

        overflow = len(self._items) - self.max_executions
        if overflow > 0:
            for eid in [eid for eid, item in self._items.items() if item.is_terminal][:overflow]:
                del self._items[eid]
                expired.append(eid)

        if expired:
            logger.info(f"Purged {len(expired)} composed proof executions")
        return len(expired)
