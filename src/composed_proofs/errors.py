"""
ZK-PRET Composed Proofs - Error Types
=====================================

Typed error hierarchy for composed proof execution.

Structural errors (ValidationError, DependencyError) reject a request before
any execution record exists. ComponentExecutionError describes a single
component that failed after exhausting its retries; the scheduler records it
as a terminal result and never lets it abort the run. AggregationError turns
into an ERROR verdict.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4


class ComposedProofError(Exception):
    """
    Base exception for composed proof errors.

    Carries a machine-readable code, the component involved (if any), a
    detail payload and the HTTP status the API layer should answer with.
    """

    status_code: int = 500
    code: str = "COMPOSED_PROOF_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        component_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.component_id = component_id
        self.details = details or {}
        self.error_id = str(uuid4())[:8]
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON API response."""
        result: Dict[str, Any] = {
            "error": self.__class__.__name__,
            "error_id": self.error_id,
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.component_id:
            result["component_id"] = self.component_id
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# STRUCTURAL ERRORS (rejected before execution)
# =============================================================================


class ValidationError(ComposedProofError):
    """Malformed template or request."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)


class TemplateNotFoundError(ValidationError):
    status_code = 404
    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str, version: Optional[str] = None):
        label = f"{template_id}@{version}" if version else template_id
        super().__init__(
            f"Template not found: {label}",
            details={"template_id": template_id, "version": version},
        )


class DependencyError(ComposedProofError):
    """Dangling or cyclic component dependencies."""

    status_code = 400
    code = "DEPENDENCY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        component_id: Optional[str] = None,
        missing_dependencies: Optional[List[str]] = None,
        cycle: Optional[List[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        self.missing_dependencies = missing_dependencies or []
        self.cycle = cycle or []
        if self.missing_dependencies:
            details["missing_dependencies"] = self.missing_dependencies
        if self.cycle:
            details["cycle"] = self.cycle
        super().__init__(message, component_id=component_id, details=details, **kwargs)


# =============================================================================
# RUNTIME ERRORS
# =============================================================================


class ComponentExecutionError(ComposedProofError):
    """A component's invocation failed after exhausting retries."""

    code = "COMPONENT_EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        component_id: str,
        original_error: Optional[BaseException] = None,
        **kwargs,
    ):
        super().__init__(message, component_id=component_id, **kwargs)
        self.original_error = original_error


class AggregationError(ComposedProofError):
    """The reduction step itself failed."""

    code = "AGGREGATION_ERROR"


class ExecutionNotFoundError(ComposedProofError):
    status_code = 404
    code = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str):
        super().__init__(
            f"Execution not found: {execution_id}", details={"execution_id": execution_id}
        )


class ExecutionStateError(ComposedProofError):
    """Attempt to change a run record that has reached a terminal status."""

    status_code = 409
    code = "EXECUTION_STATE_ERROR"
