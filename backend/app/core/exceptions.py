"""
Custom Exceptions for SparkBuild
================================

Use these instead of generic Exception so the API layer can map errors
to status codes and the logs carry a stable error code.

Usage:
    from app.core.exceptions import PreviewNotFoundError

    session = registry.get(project_id)
    if session is None:
        raise PreviewNotFoundError(project_id)
"""

from typing import Optional, Any, Dict


class SparkBuildError(Exception):
    """Base exception for all SparkBuild errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Authentication Errors
# ============================================

class AuthenticationError(SparkBuildError):
    """Caller identity missing or invalid"""

    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, code="AUTH_REQUIRED")


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(SparkBuildError):
    """Base class for not found errors"""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class PreviewNotFoundError(ResourceNotFoundError):
    """Preview session not registered"""

    def __init__(self, preview_id: str):
        super().__init__("Preview", preview_id)


# ============================================
# Ghost Fix Errors
# ============================================

class FixAttemptError(SparkBuildError):
    """A single ghost-fix attempt failed"""

    def __init__(self, message: str, attempt: Optional[int] = None):
        super().__init__(message, code="FIX_ATTEMPT_FAILED")
        if attempt is not None:
            self.details = {"attempt": attempt}


class NoFileChangesError(FixAttemptError):
    """Fix response contained no file actions"""

    def __init__(self, attempt: Optional[int] = None):
        super().__init__("AI returned no file changes", attempt=attempt)
        self.code = "NO_FILE_CHANGES"


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: SparkBuildError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
