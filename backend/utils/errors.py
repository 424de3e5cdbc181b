"""
Integrity Layer Error Taxonomy

Typed failures shared by every component:

- NotFound: entity or identity absent (raised before any write)
- Conflict: email uniqueness violated, project owned by another client
- ValidationFailed: malformed role, missing/invalid field
- PartialFailure: a multi-step operation stopped partway; carries the failed
  step and the resulting state so callers and the reconciler can act on it

None of these terminate the process; routers map them to HTTP statuses and
the maintenance CLI maps them to exit codes.
"""

from typing import Any, Dict, List, Optional


class IntegrityLayerError(Exception):
    """Base class for all typed failures of the integrity layer."""

    code = "integrity_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFound(IntegrityLayerError):
    code = "not_found"

    def __init__(self, entity: str, key: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{entity} not found: {key}", details)
        self.entity = entity
        self.key = key


class AuthenticationFailed(NotFound):
    """Unknown email and wrong password share one message."""

    code = "authentication_failed"

    def __init__(self):
        super().__init__("identity", "invalid email or password")
        self.message = "Invalid email or password"


class Conflict(IntegrityLayerError):
    code = "conflict"


class AlreadyLinked(Conflict):
    code = "already_linked"

    def __init__(self, client_id: str, project_id: str):
        super().__init__(
            f"Project {project_id} already linked to client {client_id}",
            {"client_id": client_id, "project_id": project_id},
        )


class ValidationFailed(IntegrityLayerError):
    code = "validation_failed"

    def __init__(self, field: str, message: str, value: Any = None):
        details = {"field": field}
        if value is not None:
            details["received_value"] = str(value)[:100]
        super().__init__(message, details)
        self.field = field


class PartialFailure(IntegrityLayerError):
    """
    A multi-step operation succeeded partway.

    ``state`` names the resulting shape of the data (``duplicate``,
    ``half_link``, ``orphaned_milestones``...), ``completed_steps`` lists what
    already happened, ``step`` is the step that failed.
    """

    code = "partial_failure"

    def __init__(
        self,
        operation: str,
        step: str,
        state: str,
        completed_steps: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            f"{operation} failed at step '{step}' leaving state '{state}'",
            details,
        )
        self.operation = operation
        self.step = step
        self.state = state
        self.completed_steps = list(completed_steps or [])
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "operation": self.operation,
            "step": self.step,
            "state": self.state,
            "completed_steps": self.completed_steps,
            "cause": str(self.cause) if self.cause else None,
        })
        return data
