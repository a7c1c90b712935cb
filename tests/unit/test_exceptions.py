"""Unit tests for the domain and infrastructure exception hierarchies."""

from questline.core.exceptions import ConfigurationError, ErrorSeverity
from questline.modules.shared.exceptions import (
    ExternalDependencyError,
    InvalidOperationError,
    InvariantViolationError,
    NotFoundError,
    PermissionDeniedError,
    QuestlineDomainException,
    StateConflictError,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)


class TestErrorCodes:
    def test_not_found(self):
        exc = NotFoundError("GroupChallenge", 3)
        assert exc.error_code == "GROUPCHALLENGE_NOT_FOUND"
        assert exc.details == {"resource_type": "GroupChallenge", "identifier": 3}
        assert "GroupChallenge not found: 3" in str(exc)

    def test_not_found_without_identifier(self):
        assert NotFoundError("Habit").message == "Habit not found"

    def test_validation_field_fragment(self):
        exc = ValidationError("proof_image_url", "required")
        assert exc.error_code == "VALIDATION_PROOF_IMAGE_URL"
        assert exc.field == "proof_image_url"

    def test_state_conflict_carries_rule(self):
        exc = StateConflictError(
            "complete_habit", "already_completed", "already done today", details={"habit_id": 4}
        )
        assert isinstance(exc, InvalidOperationError)
        assert exc.rule == "already_completed"
        assert exc.error_code == "CONFLICT_ALREADY_COMPLETED"
        assert exc.details["habit_id"] == 4
        assert exc.details["action"] == "complete_habit"

    def test_dotted_config_key_fragment(self):
        exc = InvariantViolationError("scoring.task.subtask_bonus", -1, "negative")
        assert exc.error_code == "INVARIANT_SCORING_TASK_SUBTASK_BONUS"
        assert exc.details["value"] == "-1"

    def test_permission_denied(self):
        exc = PermissionDeniedError("verify_challenge_task", "not the creator")
        assert exc.error_code == "FORBIDDEN_VERIFY_CHALLENGE_TASK"


class TestSeverityAndRetry:
    def test_defaults(self):
        assert NotFoundError("Task").severity is ErrorSeverity.INFO
        assert PermissionDeniedError("x", "y").severity is ErrorSeverity.WARNING
        assert InvariantViolationError("xp", -1, "negative").severity is ErrorSeverity.CRITICAL

    def test_external_dependency_is_retryable(self):
        exc = ExternalDependencyError("proof_judge", "timed out")
        assert exc.error_code == "EXTERNAL_PROOF_JUDGE"
        assert is_transient_error(exc)
        assert not should_alert(exc)

    def test_domain_errors_are_not_transient(self):
        assert not is_transient_error(StateConflictError("a", "b", "c"))
        assert not is_transient_error(ValueError("plain"))

    def test_alerting(self):
        assert should_alert(InvariantViolationError("xp", -1, "negative"))
        assert not should_alert(ValidationError("f", "bad"))
        assert should_alert(RuntimeError("unexpected"))
        assert get_error_severity(RuntimeError("unexpected")) is ErrorSeverity.ERROR

    def test_configuration_error(self):
        config_error = ConfigurationError("DATABASE_URL", "missing")

        assert config_error.error_code == "CONFIG_ERROR"
        assert config_error.to_dict()["details"]["config_key"] == "DATABASE_URL"
        assert should_alert(config_error)
        assert not is_transient_error(config_error)


class TestSerialization:
    def test_to_dict(self):
        exc = StateConflictError("join_challenge", "challenge_full", "full")
        data = exc.to_dict()

        assert data["error_type"] == "StateConflictError"
        assert data["error_code"] == "CONFLICT_CHALLENGE_FULL"
        assert data["severity"] == "info"
        assert data["is_retryable"] is False
        assert data["details"]["rule"] == "challenge_full"

    def test_base_exception_defaults(self):
        exc = QuestlineDomainException("boom")
        assert exc.error_code == "QuestlineDomainException"
        assert exc.details == {}
        assert str(exc) == "[QuestlineDomainException] boom"
