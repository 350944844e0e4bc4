"""
Secret provider adapter — per-process cache of CA key passphrases.

Implements the SecretProvider port. A passphrase is acquired at most once per
CA identity for the lifetime of the process and lives only in this object's
memory; nothing is written to disk and nothing is logged.
"""

from __future__ import annotations

import getpass
from collections.abc import Callable
from pathlib import Path

import structlog
from railway import ErrorCode, ResultFailures
from railway.result import Result

log = structlog.get_logger()


def prompt_passphrase(identity: Path) -> str:
    """Interactive acquisition: ask the operator on the controlling terminal."""
    return getpass.getpass(f"Passphrase for CA at {identity}: ")


class CachedSecretProvider:
    """
    Cache the result of `acquire` per resolved CA directory.

    `acquire` is any callable mapping a CA identity to its passphrase:
    an interactive prompt, a fixed value from settings, a test stub.
    """

    def __init__(self, acquire: Callable[[Path], str] = prompt_passphrase) -> None:
        self._acquire = acquire
        self._cache: dict[Path, str] = {}

    @classmethod
    def fixed(cls, passphrase: str) -> CachedSecretProvider:
        """A provider that answers every CA with the same passphrase."""
        return cls(lambda _identity: passphrase)

    def secret_for(self, identity: Path) -> Result[str]:
        key = identity.resolve()
        if key in self._cache:
            return Result.success(self._cache[key])

        return (
            Result.from_computation(
                lambda: self._acquire(key),
                ErrorCode.CONFIGURATION_ERROR,
                f"Could not acquire passphrase for CA at {key}",
                reason="SecretUnavailable",
            )
            .flat_map(
                lambda secret: Result.success(secret)
                if secret
                else ResultFailures.validation_error(f"Empty passphrase for CA at {key}")
            )
            .peek(lambda secret: self._remember(key, secret))
        )

    def forget(self) -> None:
        """Drop every cached secret."""
        self._cache.clear()

    def _remember(self, key: Path, secret: str) -> None:
        self._cache[key] = secret
        log.debug("secrets.cached", ca=str(key))
