"""
Domain Exceptions for the Cost-Control Engine.

Custom exceptions enforcing the engine's contracts:
- Lookup failures
- Input validation before any write
- Per-project mutual exclusion
- All-or-nothing persistence
- Caller cancellation
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


# =============================================================================
# Lookup Exceptions
# =============================================================================

class NotFoundError(DomainError):
    """Raised when a referenced entity does not exist."""


class ProjectNotFoundError(NotFoundError):
    """Raised when a project cannot be found."""

    def __init__(self, project_id: str):
        message = f"Project with id '{project_id}' not found"
        super().__init__(message, code="PROJECT_NOT_FOUND")
        self.project_id = project_id


class CostNodeNotFoundError(NotFoundError):
    """Raised when a cost-control node cannot be found."""

    def __init__(self, node_id: str):
        message = f"Cost control item with id '{node_id}' not found"
        super().__init__(message, code="COST_NODE_NOT_FOUND")
        self.node_id = node_id


# =============================================================================
# Validation Exceptions
# =============================================================================

class ValidationError(DomainError):
    """Raised when data validation fails."""

    def __init__(self, field: str, message: str):
        super().__init__(f"Validation failed for '{field}': {message}", code="VALIDATION_ERROR")
        self.field = field


class InvariantViolationError(DomainError):
    """Raised when a tree invariant is violated."""

    def __init__(self, invariant_name: str, expected: str, actual: str):
        message = (
            f"Invariant '{invariant_name}' violated. "
            f"Expected: {expected}, Actual: {actual}"
        )
        super().__init__(message, code="INVARIANT_VIOLATION")
        self.invariant_name = invariant_name
        self.expected = expected
        self.actual = actual


# =============================================================================
# Concurrency and Persistence Exceptions
# =============================================================================

class ConcurrentSyncInProgressError(DomainError):
    """Raised when another run holds the project lock."""

    def __init__(self, project_id: str):
        message = (
            f"A cost control synchronization or recompute is already running "
            f"for project '{project_id}'. Retry later."
        )
        super().__init__(message, code="CONCURRENT_SYNC_IN_PROGRESS")
        self.project_id = project_id


class PartialStoreFailureError(DomainError):
    """Raised when a write inside the unit of work fails; nothing was committed."""

    def __init__(self, operation: str, reason: str):
        message = f"Store write failed during {operation}; all changes rolled back. Reason: {reason}"
        super().__init__(message, code="PARTIAL_STORE_FAILURE")
        self.operation = operation
        self.reason = reason


class SyncCancelledError(DomainError):
    """Raised when the caller's deadline expires before commit."""

    def __init__(self, operation: str, step: str):
        message = f"{operation} cancelled before commit (at step '{step}'); all changes rolled back"
        super().__init__(message, code="SYNC_CANCELLED")
        self.operation = operation
        self.step = step


class SourceFetchError(DomainError):
    """Raised when the estimate tables cannot be read. Transient; the caller owns retries."""

    def __init__(self, project_id: str, reason: str):
        message = f"Could not read estimate hierarchy for project '{project_id}': {reason}"
        super().__init__(message, code="SOURCE_FETCH_ERROR")
        self.project_id = project_id
        self.reason = reason
