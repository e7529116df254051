"""Tests for the Audit Recorder."""

import io
import json
import logging
import threading

from src.composed_proofs.audit import AuditActions, AuditRecorder
from src.composed_proofs.models import AuditLevel
from src.utils.logging_config import LoggingConfig, bind_log_context, configure_logging


class TestAuditRecorder:
    """Test AuditRecorder."""

    def test_record_appends_in_order(self):
        audit = AuditRecorder(execution_id="exec-1", mirror_to_log=False)
        audit.info(AuditActions.EXECUTION_STARTED, {"components": 3})
        audit.warn(AuditActions.COMPONENT_SKIPPED, {"reason": "cancelled"}, component_id="exim")
        audit.error(AuditActions.COMPONENT_TIMEOUT, component_id="corp")

        assert audit.actions() == [
            AuditActions.EXECUTION_STARTED,
            AuditActions.COMPONENT_SKIPPED,
            AuditActions.COMPONENT_TIMEOUT,
        ]
        assert [e.level for e in audit.entries] == [AuditLevel.INFO, AuditLevel.WARN, AuditLevel.ERROR]
        assert len(audit) == 3

    def test_entries_are_snapshots(self):
        audit = AuditRecorder(mirror_to_log=False)
        audit.info(AuditActions.EXECUTION_STARTED)
        snapshot = audit.entries
        audit.info(AuditActions.EXECUTION_COMPLETED)

        assert len(snapshot) == 1
        assert len(audit.entries) == 2

    def test_details_copied(self):
        audit = AuditRecorder(mirror_to_log=False)
        details = {"cache_key": "gleif-ACME"}
        entry = audit.info(AuditActions.CACHE_HIT, details, component_id="gleif")
        details["cache_key"] = "changed"

        assert entry.details == {"cache_key": "gleif-ACME"}

    def test_for_component(self):
        audit = AuditRecorder(mirror_to_log=False)
        audit.info(AuditActions.COMPONENT_EXECUTION_STARTED, component_id="a")
        audit.info(AuditActions.COMPONENT_EXECUTION_STARTED, component_id="b")
        audit.info(AuditActions.COMPONENT_EXECUTION_COMPLETED, component_id="a")

        assert [e.action for e in audit.for_component("a")] == [
            AuditActions.COMPONENT_EXECUTION_STARTED,
            AuditActions.COMPONENT_EXECUTION_COMPLETED,
        ]

    def test_mirrors_to_logger(self, caplog):
        audit = AuditRecorder(execution_id="exec-1")
        with caplog.at_level(logging.DEBUG, logger="src.composed_proofs.audit"):
            audit.warn(AuditActions.COMPONENT_RETRY, {"attempt": 1}, component_id="gleif")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.audit_action == AuditActions.COMPONENT_RETRY
        assert record.execution_id == "exec-1"
        assert "component=gleif" in record.getMessage()

    def test_application_handler_keeps_audit_execution_id(self):
        """Entries logged outside the execution's context still name it."""
        root = logging.getLogger()
        saved = root.handlers[:]
        captured = []
        stream = io.StringIO()
        try:
            configure_logging(LoggingConfig(format="json"))
            handler = root.handlers[0]
            handler.setStream(stream)
            handler.addFilter(lambda record: captured.append(record) or True)

            with bind_log_context(request_id="req-9"):
                AuditRecorder(execution_id="exec-1").warn(AuditActions.CANCELLATION_REQUESTED)
        finally:
            root.handlers[:] = saved

        assert captured[-1].execution_id == "exec-1"
        assert captured[-1].request_id == "req-9"
        data = json.loads(stream.getvalue().splitlines()[-1])
        assert data["execution_id"] == "exec-1"
        assert data["request_id"] == "req-9"
        assert data["extra"]["audit_action"] == AuditActions.CANCELLATION_REQUESTED

    def test_concurrent_writers(self):
        audit = AuditRecorder(mirror_to_log=False)

        def worker(n: int):
            for i in range(100):
                audit.info(AuditActions.CACHE_MISS, {"n": n, "i": i})

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(audit) == 800
