class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Raised when input is malformed or infeasible by construction, before any search starts."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)


class InfeasibleError(AppError):
    """Raised when allocation or reconciliation exhausts its search without a full valid assignment."""
    def __init__(
        self,
        message: str,
        *,
        unplaced: list[str] | None = None,
        limiting_resource: str | None = None,
        details: dict = None,
    ):
        self.unplaced = list(unplaced or [])
        self.limiting_resource = limiting_resource
        merged = {"unplaced": self.unplaced, "limiting_resource": limiting_resource}
        merged.update(details or {})
        super().__init__(message, status_code=409, details=merged)


class ConflictError(AppError):
    """Raised when a reconciliation would introduce a blocking conflict."""
    def __init__(self, message: str, *, colliding_sessions: list[str], details: dict = None):
        self.colliding_sessions = list(colliding_sessions)
        merged = {"colliding_sessions": self.colliding_sessions}
        merged.update(details or {})
        super().__init__(message, status_code=409, details=merged)


class ResourceBusyError(AppError):
    """Raised when another run holds the scheduling key past the bounded wait."""
    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"Scheduling key {key} is busy; retry later",
            status_code=423,
            details={"key": key},
        )


class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)
