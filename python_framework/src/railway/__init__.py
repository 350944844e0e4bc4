"""
Railway-Oriented Programming (ROP) Framework for Python.

Explicit, composable, functional error handling — no exceptions in business logic.

    from railway import Result, ErrorCode

    def require_positive(days: int) -> Result[int]:
        if days < 1:
            return Result.failure(ErrorCode.CONFIGURATION_ERROR, "validity must be positive")
        return Result.success(days)

    result = (
        Result.success({"common_name": "web1", "validity_days": 365})
        .flat_map(lambda c: require_positive(c["validity_days"]))
        .map(lambda days: f"valid for {days} days")
    )
"""

from railway.result import Result, Success, Failure
from railway.failure import ErrorCode, FailureDescription
from railway.execution import (
    ExecutionContext,
    NoOpExecutionContext,
    LoggingExecutionContext,
)
from railway.result_failures import ResultFailures
from railway.assertions import ResultAssertions

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultFailures",
    "ResultAssertions",
]

__version__ = "1.1.0"
