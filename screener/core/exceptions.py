from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class ValidationError(AppException):
    """Rejected input: empty/oversized batch, empty shortlist, bad filter."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=details
        )

class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            details=details
        )

class DependencyError(AppException):
    """
    A collaborator (parser, analyzer, cache or store) failed.
    The underlying cause is logged server-side only; the message stays generic.
    """
    def __init__(self, message: str = "A dependent service failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=503,
            error_code="DEPENDENCY_ERROR",
            details=details
        )

class AIKillSwitchError(DependencyError):
    def __init__(self):
        super().__init__(message="AI services are currently offline for maintenance.")
        self.error_code = "AI_KILL_SWITCH_ACTIVE"
