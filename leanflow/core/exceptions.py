"""
Pipeline-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. None of them is
process-fatal: every one is recoverable by a caller retry or a user
correction.

Usage:
    from leanflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="FutureState", resource_id=fs_id)
    raise ValidationError("Self-loop edges are not allowed", details={"target_node_id": "..."})
    raise StaleRevisionError("FutureStateNode", node_id, expected=3, current=4)
"""


class NotFoundError(Exception):
    """Raised when a referenced session, future state, node or edge does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "FutureState").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input violates a business rule, before any mutation happens.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write collides with existing state (duplicate or concurrent edit).

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field that collides.
        value: The conflicting value.
        message: Optional override of the default "already exists" message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class StaleRevisionError(ConflictError):
    """Optimistic-concurrency failure: another writer updated the row first.

    The caller must refetch and retry; the stored row is left untouched.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str,
        expected: int | None = None,
        current: int | None = None,
    ) -> None:
        self.resource_id = resource_id
        self.expected = expected
        self.current = current
        super().__init__(
            resource, "revision", str(expected),
            message=f"Conflict: {resource} {resource_id} was modified by another user "
                    f"(expected revision {expected}, current {current})",
        )


class LockedError(ConflictError):
    """Raised when mutating a future state whose status is ``locked``."""

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(
            resource, "status", "locked",
            message=f"{resource} {resource_id} is locked and cannot be modified",
        )


class UpstreamError(Exception):
    """The external generation capability failed or returned invalid output.

    The failed AgentRun is already recorded when this is raised.

    Args:
        agent_type: Which agent failed.
        message: Error reported by the orchestrator.
        run_id: The failed AgentRun id.
    """

    def __init__(self, agent_type: str, message: str, run_id: str | None = None) -> None:
        self.agent_type = agent_type
        self.run_id = run_id
        super().__init__(f"{agent_type} agent failed: {message}")

