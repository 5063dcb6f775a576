"""
Custom exceptions for the outreach engine.

GraphError is fatal for the affected lead only. DispatchError subclasses
drive the fallback strategy and never escape a channel dispatcher.
"""
from typing import Optional


class OutreachException(Exception):
    """Base exception for every error raised by the system."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Workflow graph
# =============================================================================


class GraphError(OutreachException):
    """Malformed or missing step/edge in a workflow graph."""

    code: str = "graph_error"


class MissingStepError(GraphError):
    """Lead points at a step that no longer exists in the workflow."""

    code = "missing_step"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Step {step_id} not found in workflow", {"step_id": step_id})


class NoOutgoingEdgeError(GraphError):
    """No edge leaves a step (or none matches the evaluated branch)."""

    code = "NoOutgoingEdge"

    def __init__(self, step_id: str, branch_key: Optional[str] = None):
        self.step_id = step_id
        self.branch_key = branch_key
        details = {"step_id": step_id}
        if branch_key:
            details["branch"] = branch_key
        super().__init__(f"No outgoing edge from step {step_id}", details)


class MissingStartStepError(GraphError):
    """Workflow has no usable start step."""

    code = "missing_start_step"

    def __init__(self):
        super().__init__("No start step found in workflow")


class StepConfigError(OutreachException):
    """Step configuration is invalid or incomplete."""

    def __init__(self, message: str, step_id: Optional[str] = None, missing: Optional[list] = None):
        details = {}
        if step_id:
            details["step_id"] = step_id
        if missing:
            details["missing"] = missing
        super().__init__(message, details)


# =============================================================================
# Dispatch
# =============================================================================


class DispatchError(OutreachException):
    """Failure reported by a channel provider."""

    failure_class: str = "other"
    retriable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.error_code = error_code
        self.status_code = status_code
        details = {}
        if error_code:
            details["error_code"] = error_code
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details, original_error)


class RateLimitedError(DispatchError):
    """Provider signaled a quota or frequency limit."""

    failure_class = "rate_limited"
    retriable = True


class CredentialError(DispatchError):
    """Account credentials expired, invalid or blocked by a checkpoint."""

    failure_class = "credential_error"


class OtherDispatchError(DispatchError):
    """Any unclassified provider failure, including timeouts."""

    failure_class = "other"


# =============================================================================
# Conditions
# =============================================================================


class ConditionEvaluationGap(OutreachException):
    """
    Field referenced by a rule does not exist.

    Never escapes the evaluator: the rule resolves to False.
    """

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field {field} not found", {"field": field})


# =============================================================================
# Infrastructure
# =============================================================================


class NotFoundError(OutreachException):
    """Resource not found."""

    def __init__(
        self,
        resource: str,
        identifier: Optional[str] = None
    ):
        message = f"{resource} not found"
        details = {}
        if identifier:
            details["id"] = identifier
        super().__init__(message, details)


class ConfigurationError(OutreachException):
    """System configuration error."""
    pass


class LockNotAcquiredError(OutreachException):
    """Lock is held by another worker."""
    pass
