"""
Execution contexts — the HOW around a Result-returning computation.

Workflows return Result[T] and never time or log themselves; an execution
context wraps one call with that. The command line runs every command in a
LoggingExecutionContext, so each invocation leaves an `execution.started`
and an `execution.completed` (or `execution.failed`) event on the
structlog pipeline.

    ctx = LoggingExecutionContext(operation="revoke")
    result = ctx.execute(lambda: workflow.revoke_certificate(store, "web1"))
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, TypeVar, runtime_checkable

import structlog

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger()


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything with execute(computation) -> Result."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        ...


class NoOpExecutionContext:
    """Runs the computation as is."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Log start, outcome and elapsed time of one operation.

    An exception escaping the computation is logged and converted to a
    TECHNICAL_ERROR failure, so the caller always receives a Result.
    `log_level` is a stdlib level number, as used by the filtering bound
    logger configured in the application.
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
        log_level: int = logging.INFO,
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation
        self._log_level = log_level

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        log.log(self._log_level, "execution.started", operation=self._operation)
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except Exception as e:
            log.error(
                "execution.failed",
                operation=self._operation,
                elapsed_s=round(time.monotonic() - start, 3),
                error=str(e),
                error_type=type(e).__name__,
            )
            return Failure(FailureDescription(ErrorCode.TECHNICAL_ERROR, f"Execution failed: {e}", e))

        log.log(
            self._log_level,
            "execution.completed",
            operation=self._operation,
            elapsed_s=round(time.monotonic() - start, 3),
            outcome="success" if result.is_success() else "failure",
        )
        return result
