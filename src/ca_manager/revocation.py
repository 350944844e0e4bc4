"""
Revocation workflow — resolve a target to a ledger serial, revoke, refresh CRL.

  require ACTIVE
    → resolve target to a subject
      → ledger.find_valid_serial(subject)
        → ledger.revoke(serial)
          → revocation list regenerated

A target is either a subject name or an intermediate CA (a CaStore handle, or
a path to a directory holding a CA configuration). For a CA, the subject is
the common name it declares in its own configuration, which is the name it
was recorded under in this CA's ledger when it was signed.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import structlog
from railway.result import Result

from ca_manager.adapters.ca_store import CaStore
from ca_manager.adapters.ledger import IndexLedger, format_serial, open_ledger
from ca_manager.domain.models import LedgerEntry
from ca_manager.revocation_list import RevocationListManager

log = structlog.get_logger()

RevocationTarget = str | Path | CaStore


class RevocationWorkflow:
    """Revoke certificates issued by a CA and keep its CRL current."""

    def __init__(
        self,
        crl_manager: RevocationListManager,
        ledger_factory: Callable[[CaStore], IndexLedger] = open_ledger,
    ) -> None:
        self._crl_manager = crl_manager
        self._ledger_factory = ledger_factory

    def revoke_certificate(self, store: CaStore, target: RevocationTarget) -> Result[LedgerEntry]:
        """Revoke the valid certificate for `target`; returns the revoked entry."""
        ledger = self._ledger_factory(store)
        return (
            store.require_active()
            .flat_map(lambda _: resolve_subject(target))
            .flat_map(
                lambda subject: ledger.find_valid_serial(subject)
                .flat_map(ledger.revoke)
                .map_failure(lambda err: err.at(f"revoke[{subject}]"))
            )
            .flat_map(lambda entry: self._crl_manager.regenerate(store).map(lambda _: entry))
            .peek(
                lambda entry: log.info(
                    "revocation.completed",
                    ca=str(store.identity),
                    subject=entry.subject,
                    serial=format_serial(entry.serial),
                )
            )
        )


def resolve_subject(target: RevocationTarget) -> Result[str]:
    """
    Map a revocation target to the subject recorded in the ledger.

    A CaStore, or a path to a directory that holds a CA configuration,
    resolves to that CA's declared common name. A string is read as a path
    only when it has a directory separator in it, so a bare name such as
    "web1" is always a subject even if a CA directory of that name sits in
    the working directory. Anything else is taken verbatim as the subject.
    """
    match target:
        case CaStore():
            return target.load_config().map(lambda config: config.common_name)
        case Path() if CaStore(target).has_config():
            return resolve_subject(CaStore(target))
        case str() if _has_separator(target) and CaStore(target).has_config():
            return resolve_subject(CaStore(target))
        case Path():
            return Result.success(target.name)
        case _:
            return Result.success(str(target))


def _has_separator(text: str) -> bool:
    return any(sep in text for sep in (os.sep, os.altsep, "/") if sep)
