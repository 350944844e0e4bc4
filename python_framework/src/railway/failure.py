"""
Failure description — structured error information for the failure track.

An ErrorCode names the category of a failure (which kind of precondition or
collaborator broke), while the optional `reason` names the precise condition
(e.g. "AlreadyInitialized", "MissingCSR"). Callers branch on the code and
report the reason.

Enum + frozen dataclass give us __eq__, __hash__ and __repr__ for free, and
Enum members are singleton-comparable with `is`.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Optional


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    Operator errors (the command was illegal or referenced something missing):
      VALIDATION, CONFIGURATION, STATE, NOT_FOUND
    Collaborator errors (the command was legal but something underneath failed):
      ENGINE, PERSISTENCE, TECHNICAL, UNKNOWN
    """

    # --- Operator errors ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Malformed argument or value."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """Missing or malformed configuration, missing validity period."""

    STATE_ERROR = "STATE_ERROR"
    """Operation illegal in the current state (already initialized, already revoked...)."""

    NOT_FOUND = "NOT_FOUND"
    """No matching record, missing parent, missing request."""

    # --- Collaborator errors ---
    ENGINE_ERROR = "ENGINE_ERROR"
    """The underlying cryptographic operation failed."""

    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    """A ledger, counter or artifact write failed."""

    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected infrastructure issue."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unclassified failure."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor: error code, message, optional exception,
    optional machine-readable reason, and timestamp.

    >>> desc = FailureDescription(ErrorCode.STATE_ERROR, "CA already initialized")
    >>> desc.code
    <ErrorCode.STATE_ERROR: 'STATE_ERROR'>
    >>> desc.message
    'CA already initialized'
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def create(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
        reason: Optional[str] = None,
    ) -> FailureDescription:
        """Factory mirroring the constructor, keyword-friendly."""
        return FailureDescription(code=code, message=message, exception=exception, reason=reason)

    def at(self, stage: str) -> FailureDescription:
        """
        Return a copy whose message is prefixed with the stage that failed.

            failure.at("issue[web1]")  # message: "issue[web1]: CA not initialized"

        Use with Result.map_failure to attach diagnostic context as the
        failure travels back up through a workflow.
        """
        return replace(self, message=f"{stage}: {self.message}")

    def full_stack_trace(self) -> str:
        """Full stack trace string including the message and exception chain."""
        if self.exception is None:
            return self.message
        tb = "".join(traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__))
        return f"{self.message}\n{tb}"

    def __str__(self) -> str:
        label = f"{self.code.value}({self.reason})" if self.reason else self.code.value
        return f"{label}: {self.message}"
