"""
Unit Tests for the SparkBuild exception hierarchy
"""
from app.core.exceptions import (
    AuthenticationError,
    FixAttemptError,
    NoFileChangesError,
    PreviewNotFoundError,
    SparkBuildError,
    error_response,
)


class TestExceptions:

    def test_base_defaults(self):
        error = SparkBuildError("boom")

        assert error.status_code == 500
        assert error.to_dict() == {"code": "INTERNAL_ERROR", "message": "boom", "details": {}}

    def test_authentication_error(self):
        error = AuthenticationError()

        assert error.status_code == 401
        assert error.code == "AUTH_REQUIRED"

    def test_preview_not_found(self):
        error = PreviewNotFoundError("p1")

        assert error.status_code == 404
        assert error.code == "PREVIEW_NOT_FOUND"
        assert error.details == {"resource_type": "Preview", "resource_id": "p1"}

    def test_no_file_changes(self):
        error = NoFileChangesError(attempt=2)

        assert isinstance(error, FixAttemptError)
        assert error.code == "NO_FILE_CHANGES"
        assert error.details == {"attempt": 2}
        assert str(error) == "AI returned no file changes"

    def test_error_response(self):
        assert error_response(PreviewNotFoundError("p1")) == {
            "success": False,
            "error": {
                "code": "PREVIEW_NOT_FOUND",
                "message": "Preview with ID 'p1' not found",
                "details": {"resource_type": "Preview", "resource_id": "p1"},
            },
        }
