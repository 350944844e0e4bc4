"""
Domain models — immutable value objects for CA state, ledger rows and artifacts.

Two kinds of model live here:
  - frozen dataclasses for values the core produces (ledger entries,
    artifact sets, status snapshots, engine requests)
  - pydantic models for the rendered configuration the core reads from and
    writes to a CA store (it arrives as JSON text and must be validated)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class CaState(StrEnum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"


class CaKind(StrEnum):
    ROOT = "root"
    INTERMEDIATE = "intermediate"


class EntryStatus(StrEnum):
    """Ledger status flags, written as the first column of index.txt."""

    VALID = "V"
    REVOKED = "R"


class ExtensionProfile(StrEnum):
    """
    Extension set applied when signing.

    CA grants certificate and CRL signing; HOST and CLIENT are end-entity
    profiles differing in their extended key usage.
    """

    CA = "ca"
    HOST = "host"
    CLIENT = "client"


# ─────────────────────── Rendered configuration ───────────────────────


class SubjectConfig(BaseModel):
    """
    Rendered configuration for one subject (a host, a client, or a CA itself).

    `validity_days` is optional at the schema level: a missing validity period
    is reported by the workflow that needs it, not at parse time.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    common_name: str = Field(min_length=1, description="Subject common name (CN)")
    country: str | None = Field(default=None, min_length=2, max_length=2)
    state: str | None = None
    locality: str | None = None
    organization: str | None = None
    organizational_unit: str | None = None
    email: str | None = None
    alt_names: list[str] = Field(default_factory=list, description="DNS names or IP addresses")
    validity_days: int | None = Field(default=None, ge=1)
    key_bits: int = Field(default=2048, ge=1024)


class CaConfig(SubjectConfig):
    """Rendered configuration for a CA store (`ca.json`)."""

    key_bits: int = Field(default=4096, ge=1024)
    crl_days: int = Field(default=30, ge=1, description="CRL next-update horizon")
    encrypt_key: bool = Field(default=True, description="Protect the signing key with a passphrase")


# ─────────────────────── Ledger ───────────────────────


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    One row of a CA's ledger (index.txt).

    Keyed by serial. `subject` is the common name extracted from the
    distinguished name and is what revocation lookups match against.
    """

    serial: int
    subject: str
    distinguished_name: str
    status: EntryStatus
    issued_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None

    @property
    def is_valid(self) -> bool:
        return self.status is EntryStatus.VALID


# ─────────────────────── Artifacts ───────────────────────


@dataclass(frozen=True, slots=True)
class AssembledCertificate:
    """Output of the chain builder: plain and (optionally) chain-prefixed PEM forms."""

    cert: bytes = field(repr=False)
    keycert: bytes = field(repr=False)
    chained_cert: bytes | None = field(default=None, repr=False)
    chained_keycert: bytes | None = field(default=None, repr=False)

    @property
    def has_chain(self) -> bool:
        return self.chained_cert is not None


@dataclass(frozen=True, slots=True)
class InstanceId:
    """The `(subject, date, instance)` triple naming one issuance attempt."""

    subject: str
    date: str
    instance: int

    def __str__(self) -> str:
        return f"{self.subject}/{self.date}/{self.instance}"


@dataclass(frozen=True, slots=True)
class IssuedArtifactSet:
    """Files produced by one issuance, all under `directory`."""

    instance: InstanceId
    directory: Path
    serial: int
    profile: ExtensionProfile
    key: Path
    csr: Path
    cert: Path
    keycert: Path
    chained_cert: Path | None = None
    chained_keycert: Path | None = None

    @property
    def paths(self) -> list[Path]:
        found = [self.key, self.csr, self.cert, self.keycert, self.chained_cert, self.chained_keycert]
        return [p for p in found if p is not None]


@dataclass(frozen=True, slots=True)
class CaStatus:
    """Snapshot of a CA store's state, as reported by `status` and `initialize`."""

    identity: Path
    state: CaState
    kind: CaKind | None = None
    common_name: str | None = None
    chain_length: int = 0
    next_serial: int | None = None
    valid_certificates: int = 0
    revoked_certificates: int = 0


# ─────────────────────── Engine requests ───────────────────────


@dataclass(frozen=True, slots=True)
class SigningRequest:
    """Everything the Certificate Engine needs to sign a CSR under a CA."""

    ca_key: bytes = field(repr=False)
    ca_secret: str | None = field(repr=False)
    ca_cert: bytes = field(repr=False)
    csr: bytes = field(repr=False)
    serial: int
    validity_days: int
    profile: ExtensionProfile


@dataclass(frozen=True, slots=True)
class CrlRequest:
    """Everything the Certificate Engine needs to produce a signed CRL."""

    ca_key: bytes = field(repr=False)
    ca_secret: str | None = field(repr=False)
    ca_cert: bytes = field(repr=False)
    revoked: list[LedgerEntry]
    crl_number: int
    next_update_days: int
