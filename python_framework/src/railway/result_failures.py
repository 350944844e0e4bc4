"""
Shorthand for the failures workflows return by hand.

Adapter failures (ENGINE_ERROR, PERSISTENCE_ERROR) come from
Result.from_computation at the point where an exception is caught; the
factories here cover the precondition checks that never raise:

    ResultFailures.state_error("AlreadyInitialized", "CA already initialized")
"""

from __future__ import annotations

from railway.failure import ErrorCode
from railway.result import Result


class ResultFailures:
    """One factory per precondition failure kind."""

    @staticmethod
    def validation_error(message: str) -> Result:
        """Malformed argument: bad subject name, bad serial text."""
        return Result.failure(ErrorCode.VALIDATION_ERROR, message)

    @staticmethod
    def configuration_error(reason: str, message: str) -> Result:
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, message, reason=reason)

    @staticmethod
    def state_error(reason: str, message: str) -> Result:
        """Operation illegal in the current state."""
        return Result.failure(ErrorCode.STATE_ERROR, message, reason=reason)

    @staticmethod
    def not_found(resource_type: str, identifier: str, reason: str | None = None) -> Result:
        return Result.failure(
            ErrorCode.NOT_FOUND,
            f"{resource_type} not found: {identifier}",
            reason=reason,
        )
