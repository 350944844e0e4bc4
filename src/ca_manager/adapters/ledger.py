"""
Ledger adapter — the CA's issued-certificate index and its counters.

IndexLedger is an append-mostly flat-file database (`index.txt`) keyed by
serial, with a non-unique secondary lookup by subject. SerialCounter is the
persisted hexadecimal counter behind both serial allocation (`serial`) and
CRL numbering (`crlnumber`).

index.txt line format (tab separated, in the spirit of OpenSSL's index):

  status  expiry  revocation-date  serial-hex  issued  distinguished-name
  V       360101120000Z            0A          260101120000Z  CN=web1,O=Example

Timestamps use UTCTime (YYMMDDHHMMSSZ) before 2050 and GeneralizedTime
(YYYYMMDDHHMMSSZ) from 2050 on.

Single-writer discipline: nothing here locks. One operator runs one command
against one CA store at a time.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import structlog
from cryptography import x509
from cryptography.x509.oid import NameOID
from railway import ErrorCode, ResultFailures
from railway.result import Result

from ca_manager.adapters.ca_store import CaStore, write_atomically
from ca_manager.domain.models import EntryStatus, LedgerEntry

log = structlog.get_logger()

INITIAL_SERIAL = 1

_UTC_TIME = "%y%m%d%H%M%SZ"
_GENERALIZED_TIME = "%Y%m%d%H%M%SZ"


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def format_serial(value: int) -> str:
    """Upper-case hex, zero-padded to an even number of digits (at least two)."""
    text = f"{value:02X}"
    return text if len(text) % 2 == 0 else f"0{text}"


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(_UTC_TIME if moment.year < 2050 else _GENERALIZED_TIME)


def parse_timestamp(text: str) -> datetime:
    fmt = _UTC_TIME if len(text) == 13 else _GENERALIZED_TIME
    return datetime.strptime(text, fmt).replace(tzinfo=UTC)


def common_name_of(distinguished_name: str) -> str:
    """The CN of an RFC 4514 name, or the whole name when it has no CN."""
    try:
        name = x509.Name.from_rfc4514_string(distinguished_name)
    except ValueError:
        return distinguished_name
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attributes[0].value) if attributes else distinguished_name


def open_ledger(store: CaStore, clock: Callable[[], datetime] = _utcnow) -> IndexLedger:
    """The ledger of `store`, wired to the store's serial counter."""
    return IndexLedger(store.index_path, serial_counter(store), clock)


def serial_counter(store: CaStore) -> SerialCounter:
    return SerialCounter(store.serial_path, "serial")


def crl_counter(store: CaStore) -> SerialCounter:
    return SerialCounter(store.crlnumber_path, "crlnumber")


# ─────────────────────── Serial Allocator ───────────────────────


class SerialCounter:
    """
    Persisted, strictly increasing counter.

    next() uses reserve-before-use: the incremented value is durable on disk
    before the reserved value is returned, so a crash after reading can never
    hand the same number out twice.
    """

    def __init__(self, path: Path, name: str = "serial") -> None:
        self._path = path
        self._name = name

    def initialize(self) -> Result[int]:
        """Write the initial value unless the counter already exists."""
        if self._path.is_file():
            return self.peek()
        return self._store(INITIAL_SERIAL)

    def peek(self) -> Result[int]:
        return Result.from_computation(
            lambda: int(self._path.read_text(encoding="ascii").strip(), 16),
            ErrorCode.PERSISTENCE_ERROR,
            f"Could not read {self._name} counter at {self._path}",
        )

    def next(self) -> Result[int]:
        return self.peek().flat_map(
            lambda current: self._store(current + 1).map(lambda _: current)
        ).peek(lambda reserved: log.debug("counter.reserved", counter=self._name, value=reserved))

    def _store(self, value: int) -> Result[int]:
        return Result.from_computation(
            lambda: write_atomically(self._path, f"{format_serial(value)}\n".encode("ascii")),
            ErrorCode.PERSISTENCE_ERROR,
            f"Could not persist {self._name} counter at {self._path}",
        ).map(lambda _: value)


# ─────────────────────── Ledger ───────────────────────


class IndexLedger:
    """Every certificate a CA has signed, keyed by serial."""

    def __init__(
        self,
        path: Path,
        serials: SerialCounter,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._path = path
        self._serials = serials
        self._clock = clock

    def initialize(self) -> Result[Path]:
        if self._path.is_file():
            return Result.success(self._path)
        return Result.from_computation(
            lambda: write_atomically(self._path, b""),
            ErrorCode.PERSISTENCE_ERROR,
            f"Could not create ledger at {self._path}",
        )

    def append(self, distinguished_name: str, validity_days: int) -> Result[LedgerEntry]:
        """Reserve the next serial and record a VALID entry for it."""
        return self._serials.next().flat_map(
            lambda serial: self._append_entry(self._new_entry(serial, distinguished_name, validity_days))
        )

    def entries(self) -> Result[list[LedgerEntry]]:
        if not self._path.is_file():
            return ResultFailures.not_found("Ledger", str(self._path), reason="MissingLedger")
        return Result.from_computation(
            self._read_entries,
            ErrorCode.PERSISTENCE_ERROR,
            f"Could not read ledger at {self._path}",
            reason="LedgerCorrupt",
        )

    def revoked(self) -> Result[list[LedgerEntry]]:
        return self.entries().map(
            lambda entries: [e for e in entries if e.status is EntryStatus.REVOKED]
        )

    def find_valid_serial(self, subject: str) -> Result[int]:
        """
        Serial of the VALID entry whose common name equals `subject`.

        Several VALID matches should not occur in normal use; when they do,
        the lowest serial is selected and a warning is logged.
        """
        return self.entries().flat_map(lambda entries: self._select_valid(entries, subject))

    def revoke(self, serial: int) -> Result[LedgerEntry]:
        """Mark `serial` REVOKED. Revoking twice is a STATE_ERROR, not a no-op."""
        return self.entries().flat_map(lambda entries: self._revoke_in(entries, serial))

    # ──────────────────────── Internals ────────────────────────

    def _new_entry(self, serial: int, distinguished_name: str, validity_days: int) -> LedgerEntry:
        issued_at = self._clock()
        return LedgerEntry(
            serial=serial,
            subject=common_name_of(distinguished_name),
            distinguished_name=distinguished_name,
            status=EntryStatus.VALID,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(days=validity_days),
        )

    def _append_entry(self, entry: LedgerEntry) -> Result[LedgerEntry]:
        def _write() -> LedgerEntry:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(_format_line(entry))
            return entry

        return Result.from_computation(
            _write,
            ErrorCode.PERSISTENCE_ERROR,
            f"Could not append serial {format_serial(entry.serial)} to ledger {self._path}",
            reason="LedgerWriteError",
        ).peek(
            lambda e: log.info(
                "ledger.appended",
                ledger=str(self._path),
                serial=format_serial(e.serial),
                subject=e.subject,
                expires_at=e.expires_at.isoformat(),
            )
        )

    def _read_entries(self) -> list[LedgerEntry]:
        lines = self._path.read_text(encoding="utf-8").splitlines()
        return sorted((_parse_line(line) for line in lines if line.strip()), key=lambda e: e.serial)

    def _select_valid(self, entries: list[LedgerEntry], subject: str) -> Result[int]:
        matches = [e.serial for e in entries if e.is_valid and e.subject == subject]
        if not matches:
            return ResultFailures.not_found(
                "Valid certificate for subject", subject, reason="NoValidCertificate"
            )
        if len(matches) > 1:
            log.warning(
                "ledger.ambiguous_subject",
                subject=subject,
                serials=[format_serial(s) for s in matches],
                selected=format_serial(matches[0]),
            )
        return Result.success(matches[0])

    def _revoke_in(self, entries: list[LedgerEntry], serial: int) -> Result[LedgerEntry]:
        target = next((e for e in entries if e.serial == serial), None)
        if target is None:
            return ResultFailures.not_found("Ledger serial", format_serial(serial), reason="SerialNotFound")
        if target.status is EntryStatus.REVOKED:
            return ResultFailures.state_error(
                "AlreadyRevoked", f"Serial {format_serial(serial)} ({target.subject}) is already revoked"
            )

        revoked = LedgerEntry(
            serial=target.serial,
            subject=target.subject,
            distinguished_name=target.distinguished_name,
            status=EntryStatus.REVOKED,
            issued_at=target.issued_at,
            expires_at=target.expires_at,
            revoked_at=self._clock(),
        )
        updated = [revoked if e.serial == serial else e for e in entries]
        payload = "".join(_format_line(e) for e in updated).encode("utf-8")

        return Result.from_computation(
            lambda: write_atomically(self._path, payload),
            ErrorCode.PERSISTENCE_ERROR,
            f"Could not rewrite ledger {self._path}",
            reason="LedgerWriteError",
        ).map(lambda _: revoked).peek(
            lambda e: log.info(
                "ledger.revoked", ledger=str(self._path), serial=format_serial(e.serial), subject=e.subject
            )
        )


def _format_line(entry: LedgerEntry) -> str:
    revoked = format_timestamp(entry.revoked_at) if entry.revoked_at else ""
    return "\t".join(
        [
            entry.status.value,
            format_timestamp(entry.expires_at),
            revoked,
            format_serial(entry.serial),
            format_timestamp(entry.issued_at),
            entry.distinguished_name,
        ]
    ) + "\n"


def _parse_line(line: str) -> LedgerEntry:
    status, expiry, revoked, serial, issued, distinguished_name = line.rstrip("\n").split("\t", 5)
    return LedgerEntry(
        serial=int(serial, 16),
        subject=common_name_of(distinguished_name),
        distinguished_name=distinguished_name,
        status=EntryStatus(status),
        issued_at=parse_timestamp(issued),
        expires_at=parse_timestamp(expiry),
        revoked_at=parse_timestamp(revoked) if revoked else None,
    )
