"""
Error classes for routinekit execution.

Taxonomy used at the execution boundaries:
- ConfigurationError: Malformed construction arguments. Raised at
  registration time, never retried.
- SubroutineTimeoutError: A single attempt did not settle in time. Retried.
- TransientError: Optional marker for action failures that are safe to retry.
- PermanentError: Raised by an action to stop retrying its subroutine.
- EvaluationRejected: The evaluator gate returned a falsy verdict. Retried.
- SubroutineFailedError / RetryExhaustedError: Surfaced to the execute()
  caller once a subroutine has given up. Aborts the rest of the run.
- BusyError: execute() called while the routine is already running.

Plain exceptions raised by an action are retried exactly like TransientError.
"""


class RoutinekitError(Exception):
    """Base exception for routinekit."""
    pass


class ConfigurationError(RoutinekitError):
    """
    Configuration error - fatal, raised synchronously.

    Examples:
    - Non-callable action or evaluator
    - Duplicate subroutine name
    - Evaluator attached to an unknown subroutine
    - Invalid retry/timeout values
    """
    pass


class TransientError(RoutinekitError):
    """
    Transient error - safe to retry.

    Examples:
    - Rate limit exceeded
    - Service temporarily unavailable
    - Connection reset
    """
    pass


class PermanentError(RoutinekitError):
    """
    Permanent error - do not retry.

    An action raises PermanentError when another attempt cannot succeed
    (invalid input, missing resource). The retry controller gives up on
    the subroutine immediately.
    """
    pass


class SubroutineTimeoutError(RoutinekitError, TimeoutError):
    """A single attempt did not settle within the configured timeout."""

    def __init__(self, subroutine: str, timeout_ms: int):
        self.subroutine = subroutine
        self.timeout_ms = timeout_ms
        super().__init__(f"Subroutine {subroutine} timed out after {timeout_ms}ms")


class EvaluationRejected(RoutinekitError):
    """The evaluator gate returned a falsy verdict for a produced value."""

    def __init__(self, subroutine: str):
        self.subroutine = subroutine
        super().__init__(f"Evaluation failed for subroutine {subroutine}")


class SubroutineFailedError(RoutinekitError):
    """
    A subroutine gave up.

    Attributes:
        subroutine: Name of the failing subroutine
        attempts: Number of attempts made
        cause: The last underlying error
    """

    def __init__(self, subroutine: str, attempts: int, cause: BaseException):
        self.subroutine = subroutine
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Subroutine {subroutine} failed after {attempts} attempts: {cause}")


class RetryExhaustedError(SubroutineFailedError):
    """Every attempt in the retry budget of a subroutine failed."""
    pass


class BusyError(RoutinekitError):
    """Raised when a routine (or worker) is asked to run while already running."""
    pass
