"""
Service-layer exception hierarchy.

Every error the workflow engine raises is one of these types.  Each carries
a machine-readable ``code`` (see ``app.utils.errors.E``) and a ``details``
dict, so a blueprint can render the specific missing criterion or
out-of-range field without re-deriving it.

    NotFoundError ─── ProjectNotFound
    ValidationError ─ InvalidFieldRange
    WorkflowError ─┬─ PhaseMismatch
                   ├─ GateNotSatisfied
                   ├─ ProjectCompleted
                   └─ ConcurrentTransition
    RepositoryUnavailable

Usage:
    from app.core.exceptions import ProjectNotFound, GateNotSatisfied

    raise ProjectNotFound(project_id)
    raise GateNotSatisfied("DEFINE", missing=[...], recommendations=[...])
"""

from app.utils.errors import E


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "DmaicProject").
        resource_id: The PK that was looked up.
    """

    code = E.NOT_FOUND

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.details = {"resource": resource, "resource_id": resource_id}
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ProjectNotFound(NotFoundError):
    code = E.PROJECT_NOT_FOUND

    def __init__(self, project_id: str) -> None:
        super().__init__("DmaicProject", project_id)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown; artifact validation puts
                 the per-field list under ``details["errors"]``.
    """

    code = E.VALIDATION_INVALID

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    @property
    def errors(self) -> list[dict]:
        return self.details.get("errors", [])


class InvalidFieldRange(ValidationError):
    """A numeric field is outside its declared domain (e.g. severity 0)."""

    code = E.INVALID_FIELD_RANGE


class WorkflowError(Exception):
    """A request that is valid in itself but not in the project's current state."""

    code = E.CONFLICT_STATE

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PhaseMismatch(WorkflowError):
    """Artifacts submitted for a phase the project is not currently in."""

    code = E.PHASE_MISMATCH

    def __init__(self, project_id: str, current_phase: str, submitted_phase: str,
                 artifact_kind: str | None = None) -> None:
        self.current_phase = current_phase
        self.submitted_phase = submitted_phase
        if artifact_kind:
            msg = (f"{artifact_kind} belong to {submitted_phase}; "
                   f"project {project_id} is in {current_phase}")
        else:
            msg = (f"Cannot submit {submitted_phase} artifacts; "
                   f"project {project_id} is in {current_phase}")
        super().__init__(msg, details={
            "project_id": project_id,
            "current_phase": current_phase,
            "submitted_phase": submitted_phase,
            "artifact_kind": artifact_kind,
        })


class GateNotSatisfied(WorkflowError):
    """Phase advance attempted while gate criteria are unmet."""

    code = E.GATE_NOT_SATISFIED

    def __init__(self, phase: str, missing: list[str], recommendations: list[str],
                 criteria: dict | None = None) -> None:
        self.phase = phase
        self.missing = list(missing)
        self.recommendations = list(recommendations)
        super().__init__(
            f"{phase} gate not satisfied: missing {', '.join(missing) or 'threshold'}",
            details={
                "phase": phase,
                "missing": self.missing,
                "recommendations": self.recommendations,
                "criteria": criteria or {},
            },
        )


class ProjectCompleted(WorkflowError):
    """Mutating call on a project that already reached COMPLETED."""

    code = E.PROJECT_COMPLETED

    def __init__(self, project_id: str) -> None:
        super().__init__(
            f"Project {project_id} is completed; no further changes allowed",
            details={"project_id": project_id},
        )


class ConcurrentTransition(WorkflowError):
    """The stored phase changed between gate evaluation and the phase write."""

    code = E.CONCURRENT_TRANSITION

    def __init__(self, project_id: str, expected_phase: str) -> None:
        super().__init__(
            f"Project {project_id} is no longer in {expected_phase}; retry with fresh status",
            details={"project_id": project_id, "expected_phase": expected_phase},
        )


class RepositoryUnavailable(Exception):
    """Artifact repository I/O failed (connection loss, timeout, ...).

    Propagated verbatim; the engine performs no retries.
    """

    code = E.REPOSITORY_UNAVAILABLE

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        self.details = {"operation": operation}
        msg = f"Artifact repository unavailable during {operation}"
        if cause is not None:
            msg += f": {type(cause).__name__}"
        super().__init__(msg)
