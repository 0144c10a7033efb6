"""
Unit Tests for generation and preview schemas
"""
from app.schemas.generation import FixAttemptSchema, GhostFixStateResponse, PreviewErrorIn


class TestFixAttemptSchema:

    def test_accepts_either_name(self):
        assert FixAttemptSchema(error="x", attempt_number=1) == FixAttemptSchema(error="x", attemptNumber=1)

    def test_state_dump_uses_wire_names(self):
        state = GhostFixStateResponse(
            project_id="p1",
            status="idle",
            attempts=1,
            max_attempts=3,
            history=[FixAttemptSchema(error="boom", attempt_number=1)],
        )

        dumped = state.model_dump(by_alias=True)

        assert dumped["history"] == [{"error": "boom", "attemptNumber": 1}]
        assert dumped["project_id"] == "p1"


class TestPreviewErrorIn:

    def test_build_error_alias(self):
        error = PreviewErrorIn(message="boom", isBuildError=True)

        assert error.is_build_error is True
        assert error.line is None
