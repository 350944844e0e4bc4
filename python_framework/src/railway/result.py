"""
Result type for the ca-manager workflows.

Every fallible step returns Result[T]: Success(value) or Failure(description).
Steps are chained with flat_map; the first Failure skips the remaining
steps and becomes the outcome of the whole chain.

    store.require_active()
        .flat_map(lambda _: ledger.find_valid_serial("web1"))
        .flat_map(ledger.revoke)                 # skipped if no VALID serial

Success never holds None. Operations with nothing meaningful to return
hand back the object they acted on (a path, a store, an entry).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")
A = TypeVar("A")
B = TypeVar("B")
R = TypeVar("R")


class Result(Generic[T]):
    """
    Success(value) or Failure(FailureDescription).

        >>> Result.success(1).map(lambda serial: serial + 1).value()
        2
        >>> Result.failure(ErrorCode.NOT_FOUND, "no such serial").is_failure()
        True
    """

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def value(self) -> T:
        """The wrapped value; raises ValueError on a Failure."""
        match self:
            case Success(v):
                return v
            case Failure(err):
                raise ValueError(f"Cannot get value from a Failure: {err.message}")
        raise TypeError("unreachable")  # pragma: no cover

    def error(self) -> FailureDescription:
        """The failure description; raises ValueError on a Success."""
        match self:
            case Failure(err):
                return err
            case Success(v):
                raise ValueError(f"Cannot get error from a Success: {v}")
        raise TypeError("unreachable")  # pragma: no cover

    # ── Chaining ──

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        """Fold both tracks into one value, e.g. a process exit code."""
        match self:
            case Success(v):
                return on_success(v)
            case Failure(err):
                return on_failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        match self:
            case Success(v):
                return Success(mapper(v))
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map_failure(
        self, mapper: Callable[[FailureDescription], FailureDescription]
    ) -> Result[T]:
        """Rewrite the failure, typically to prefix a stage: err.at("revoke[web1]")."""
        match self:
            case Success(_):
                return self
            case Failure(err):
                return Failure(mapper(err))
        raise TypeError("unreachable")  # pragma: no cover

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """Run the next fallible step on the value; a Failure passes through untouched."""
        match self:
            case Success(v):
                return mapper(v)
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    # ── Side effects ──

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Run `action` on the value (logging, mostly) and return self."""
        match self:
            case Success(v):
                action(v)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        match self:
            case Failure(err):
                action(err)
        return self

    def get_or_else(self, default: T) -> T:
        match self:
            case Success(v):
                return v
            case _:
                return default

    # ── Construction ──

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[T]:
        return Failure(error)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
        *,
        reason: Optional[str] = None,
    ) -> Result[T]:
        """
        A Failure built from its parts.

            Result.failure(ErrorCode.NOT_FOUND, "No valid certificate for web1",
                           reason="NoValidCertificate")
        """
        return Failure(
            FailureDescription(code=code, message=message, exception=exception, reason=reason)
        )

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
        *,
        reason: Optional[str] = None,
    ) -> Result[T]:
        """
        Run a computation that may raise and capture its outcome.

        Adapters wrap filesystem and cryptography calls with this; the
        exception text, when there is any, is appended to `error_message`
        and the exception itself is kept on the failure.

            Result.from_computation(
                lambda: path.read_bytes(),
                ErrorCode.PERSISTENCE_ERROR,
                f"Could not read {path}",
            )
        """
        try:
            return Result.success(computation())
        except Exception as e:
            detail = f"{error_message}: {e}" if str(e) else error_message
            return Result.failure(error_code, detail, e, reason=reason)

    @staticmethod
    def from_optional(
        value: Optional[T],
        error_message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        *,
        reason: Optional[str] = None,
    ) -> Result[T]:
        """Success for a present value, the described Failure for None."""
        if value is not None:
            return Result.success(value)
        return Result.failure(error_code, error_message, reason=reason)

    @staticmethod
    def combine(
        ra: Result[A],
        rb: Result[B],
        combiner: Callable[[A, B], R],
    ) -> Result[R]:
        """Join two independent results; the first Failure wins."""
        return ra.flat_map(lambda a: rb.map(lambda b: combiner(a, b)))

    def __bool__(self) -> bool:
        return self.is_success()

    def __repr__(self) -> str:
        match self:
            case Success(v):
                return f"Success({v!r})"
            case Failure(err):
                return f"Failure({err.code.value}: {err.message!r})"
        raise TypeError("unreachable")  # pragma: no cover

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        match (self, other):
            case (Success(a), Success(b)):
                return a == b
            case (Failure(a), Failure(b)):
                return a.code == b.code and a.message == b.message
            case _:
                return False


@dataclass(frozen=True, slots=True)
class Success(Result[T]):
    _value: T

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        object.__setattr__(self, "_value", value)

    def __repr__(self) -> str:
        return f"Success({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Success):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("Success", self._value))


Success.__match_args__ = ("_value",)


@dataclass(frozen=True, slots=True)
class Failure(Result[T]):
    _error: FailureDescription

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        object.__setattr__(self, "_error", error)

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Failure):
            return self._error.code == other._error.code and self._error.message == other._error.message
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("Failure", self._error.code, self._error.message))


Failure.__match_args__ = ("_error",)
