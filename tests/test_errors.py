"""Tests for routinekit error classes.

Tests cover:
- Error hierarchy
- Message formats that callers rely on
- Context attributes carried by failure errors
"""

import pytest
from routinekit.errors import (
    RoutinekitError,
    ConfigurationError,
    TransientError,
    PermanentError,
    SubroutineTimeoutError,
    EvaluationRejected,
    SubroutineFailedError,
    RetryExhaustedError,
    BusyError,
)


class TestHierarchy:
    """Every routinekit error is a RoutinekitError."""

    @pytest.mark.parametrize("cls", [
        ConfigurationError,
        TransientError,
        PermanentError,
        SubroutineTimeoutError,
        EvaluationRejected,
        SubroutineFailedError,
        RetryExhaustedError,
        BusyError,
    ])
    def test_is_routinekit_error(self, cls):
        assert issubclass(cls, RoutinekitError)
        assert issubclass(cls, Exception)

    def test_timeout_is_builtin_timeout(self):
        """SubroutineTimeoutError can be caught as TimeoutError."""
        with pytest.raises(TimeoutError):
            raise SubroutineTimeoutError("fetch", 50)

    def test_retry_exhausted_is_subroutine_failed(self):
        assert issubclass(RetryExhaustedError, SubroutineFailedError)


class TestMessages:
    """Error messages carry enough context to diagnose a failure."""

    def test_base_has_message(self):
        error = RoutinekitError("my message")
        assert str(error) == "my message"

    def test_timeout_message(self):
        error = SubroutineTimeoutError("fetch", 50)
        assert str(error) == "Subroutine fetch timed out after 50ms"
        assert error.subroutine == "fetch"
        assert error.timeout_ms == 50

    def test_evaluation_rejected_message(self):
        error = EvaluationRejected("check")
        assert str(error) == "Evaluation failed for subroutine check"
        assert error.subroutine == "check"

    def test_retry_exhausted_message(self):
        cause = ValueError("boom")
        error = RetryExhaustedError("fetch", 3, cause)
        assert str(error) == "Subroutine fetch failed after 3 attempts: boom"
        assert error.subroutine == "fetch"
        assert error.attempts == 3
        assert error.cause is cause
