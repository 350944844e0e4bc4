"""
CA store adapter — filesystem layout and I/O for one certificate authority.

A CaStore is the explicit handle through which every component reaches a CA's
persisted state. Nothing is kept in module globals: a workflow that touches two
CAs (a parent signing a child) holds two CaStore handles.

Layout:
  <ca>/ca.json              rendered CA configuration
  <ca>/private/ca.key.pem   signing key
  <ca>/ca.csr.pem           pending CSR (intermediates, before signing)
  <ca>/ca.cert.pem          own certificate — its presence means ACTIVE
  <ca>/chain.pem            trust chain — its presence means INTERMEDIATE
  <ca>/serial, crlnumber    counters
  <ca>/index.txt            ledger
  <ca>/crl.pem              revocation list
  <ca>/hosts/<subject>/subject.json
  <ca>/hosts/<subject>/<YYYYMMDD>/<n>/...

All I/O errors are converted to Result failures at this boundary.
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

import structlog
from pydantic import ValidationError
from railway import ErrorCode, ResultFailures
from railway.result import Result

from ca_manager.domain.models import CaConfig, CaKind, CaState, InstanceId, SubjectConfig
from ca_manager.domain.ports import SecretProvider

log = structlog.get_logger()

_PEM_CERT_MARKER = b"-----END CERTIFICATE-----"
_SUBJECT_PATTERN = re.compile(r"^[A-Za-z0-9*][A-Za-z0-9._@*-]*$")


def write_atomically(path: Path, data: bytes, mode: int = 0o644) -> Path:
    """
    Replace `path` with `data` via a temp file in the same directory.

    Readers see either the old or the new content, never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


def split_pem_certificates(data: bytes) -> list[bytes]:
    """Split a concatenated PEM bundle into individual certificates."""
    certs: list[bytes] = []
    for block in data.split(_PEM_CERT_MARKER):
        start = block.find(b"-----BEGIN CERTIFICATE-----")
        if start != -1:
            certs.append(block[start:] + _PEM_CERT_MARKER + b"\n")
    return certs


@dataclass(frozen=True, slots=True)
class SigningMaterial:
    """A CA's unlocked signing inputs. `secret` is empty for an unencrypted key."""

    key: bytes = field(repr=False)
    secret: str = field(repr=False)
    cert: bytes = field(repr=False)


class CaStore:
    """Handle on one CA store directory."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    def __repr__(self) -> str:
        return f"CaStore({str(self._root)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CaStore):
            return NotImplemented
        return self._root.resolve() == other._root.resolve()

    def __hash__(self) -> int:
        return hash(self._root.resolve())

    # ──────────────────────── Paths ────────────────────────

    @property
    def identity(self) -> Path:
        return self._root

    @property
    def config_path(self) -> Path:
        return self._root / "ca.json"

    @property
    def key_path(self) -> Path:
        return self._root / "private" / "ca.key.pem"

    @property
    def csr_path(self) -> Path:
        return self._root / "ca.csr.pem"

    @property
    def cert_path(self) -> Path:
        return self._root / "ca.cert.pem"

    @property
    def chain_path(self) -> Path:
        return self._root / "chain.pem"

    @property
    def serial_path(self) -> Path:
        return self._root / "serial"

    @property
    def crlnumber_path(self) -> Path:
        return self._root / "crlnumber"

    @property
    def index_path(self) -> Path:
        return self._root / "index.txt"

    @property
    def crl_path(self) -> Path:
        return self._root / "crl.pem"

    @property
    def hosts_dir(self) -> Path:
        return self._root / "hosts"

    # ──────────────────────── State ────────────────────────

    @property
    def state(self) -> CaState:
        return CaState.ACTIVE if self.cert_path.is_file() else CaState.UNINITIALIZED

    @property
    def kind(self) -> CaKind | None:
        if self.state is not CaState.ACTIVE:
            return None
        return CaKind.INTERMEDIATE if self.chain_path.is_file() else CaKind.ROOT

    def has_config(self) -> bool:
        return self.config_path.is_file()

    def require_active(self) -> Result[CaStore]:
        if self.state is CaState.ACTIVE:
            return Result.success(self)
        return ResultFailures.state_error(
            "NotInitialized", f"CA at {self._root} is not initialized"
        )

    def prepare(self) -> Result[CaStore]:
        """Create the store's directory skeleton."""

        def _mkdirs() -> CaStore:
            self._root.mkdir(parents=True, exist_ok=True)
            self.key_path.parent.mkdir(mode=0o700, exist_ok=True)
            self.hosts_dir.mkdir(exist_ok=True)
            return self

        return Result.from_computation(
            _mkdirs, ErrorCode.PERSISTENCE_ERROR, f"Could not create CA store at {self._root}"
        )

    # ──────────────────────── Raw I/O ────────────────────────

    def read(self, path: Path, what: str) -> Result[bytes]:
        """Read an artifact; a missing file is NOT_FOUND, other errors PERSISTENCE_ERROR."""
        if not path.is_file():
            return ResultFailures.not_found(what, str(path))
        return Result.from_computation(
            path.read_bytes, ErrorCode.PERSISTENCE_ERROR, f"Could not read {what} at {path}"
        )

    def write(self, path: Path, data: bytes, what: str, private: bool = False) -> Result[Path]:
        return Result.from_computation(
            lambda: write_atomically(path, data, 0o600 if private else 0o644),
            ErrorCode.PERSISTENCE_ERROR,
            f"Could not write {what} at {path}",
        ).peek(lambda p: log.debug("store.written", what=what, path=str(p)))

    def read_chain(self) -> Result[list[bytes]]:
        """The CA's trust chain, leaf-ward first; empty for a root CA."""
        if not self.chain_path.is_file():
            return Result.success([])
        return self.read(self.chain_path, "trust chain").map(split_pem_certificates)

    # ──────────────────────── Configuration ────────────────────────

    def load_config(self) -> Result[CaConfig]:
        if not self.config_path.is_file():
            return ResultFailures.configuration_error(
                "MissingConfig", f"No CA configuration at {self.config_path}"
            )
        return self.read(self.config_path, "CA configuration").flat_map(
            lambda raw: _parse_config(CaConfig, raw, self.config_path)
        )

    def save_config(self, config: CaConfig) -> Result[CaConfig]:
        return self.write(
            self.config_path, config.model_dump_json(indent=2).encode(), "CA configuration"
        ).map(lambda _: config)

    def signing_material(self, secrets: SecretProvider) -> Result[SigningMaterial]:
        """Load key, unlock secret and certificate needed to sign under this CA."""
        return self.require_active().flat_map(
            lambda _: Result.combine(
                self.read(self.key_path, "CA signing key"),
                self.read(self.cert_path, "CA certificate"),
                lambda key, cert: (key, cert),
            )
        ).flat_map(
            lambda key_cert: self.key_secret(secrets).map(
                lambda secret: SigningMaterial(key=key_cert[0], secret=secret, cert=key_cert[1])
            )
        )

    def key_secret(self, secrets: SecretProvider) -> Result[str]:
        """The passphrase for this CA's key, or "" when the key is unencrypted."""
        return self.load_config().flat_map(
            lambda config: secrets.secret_for(self._root) if config.encrypt_key else Result.success("")
        )

    # ──────────────────────── Subjects ────────────────────────

    def subject_dir(self, subject: str) -> Path:
        return self.hosts_dir / subject

    def subject_config_path(self, subject: str) -> Path:
        return self.subject_dir(subject) / "subject.json"

    def load_subject_config(self, subject: str) -> Result[SubjectConfig]:
        path = self.subject_config_path(subject)
        return validate_subject_name(subject).flat_map(
            lambda _: self.read(path, "subject configuration")
            if path.is_file()
            else ResultFailures.configuration_error(
                "MissingConfig", f"Subject {subject!r} is not registered ({path} missing)"
            )
        ).flat_map(lambda raw: _parse_config(SubjectConfig, raw, path))

    def save_subject_config(self, subject: str, config: SubjectConfig) -> Result[SubjectConfig]:
        return validate_subject_name(subject).flat_map(
            lambda _: self.write(
                self.subject_config_path(subject),
                config.model_dump_json(indent=2).encode(),
                "subject configuration",
            )
        ).map(lambda _: config)

    def allocate_instance(self, subject: str, date: str) -> Result[tuple[InstanceId, Path]]:
        """
        Claim the first unused instance directory for `(subject, date)`.

        The directory is created with an exclusive mkdir, so an instance
        number is never handed out twice and prior artifacts are never
        overwritten.
        """

        def _claim() -> tuple[InstanceId, Path]:
            day_dir = self.subject_dir(subject) / date
            day_dir.mkdir(parents=True, exist_ok=True)
            instance = 1
            while True:
                candidate = day_dir / str(instance)
                try:
                    candidate.mkdir()
                except FileExistsError:
                    instance += 1
                    continue
                return InstanceId(subject=subject, date=date, instance=instance), candidate

        return validate_subject_name(subject).flat_map(
            lambda _: Result.from_computation(
                _claim,
                ErrorCode.PERSISTENCE_ERROR,
                f"Could not allocate an artifact directory for {subject!r}",
            )
        )


def require_validity_days(config: SubjectConfig, source: Path) -> Result[int]:
    """The configured validity period, or CONFIGURATION_ERROR/MissingValidityPeriod."""
    return Result.from_optional(
        config.validity_days,
        f"No validity period (validity_days) configured in {source}",
        ErrorCode.CONFIGURATION_ERROR,
        reason="MissingValidityPeriod",
    )


def validate_subject_name(subject: str) -> Result[str]:
    """Subjects become directory names; reject anything that could escape hosts/."""
    if _SUBJECT_PATTERN.match(subject) and subject not in {".", ".."}:
        return Result.success(subject)
    return ResultFailures.validation_error(f"Invalid subject name: {subject!r}")


C = TypeVar("C", bound=SubjectConfig)


def _parse_config(model: type[C], raw: bytes, path: Path) -> Result[C]:
    try:
        return Result.success(model.model_validate_json(raw))
    except ValidationError as e:
        return Result.failure(
            ErrorCode.CONFIGURATION_ERROR,
            f"Malformed configuration at {path}: {e.error_count()} error(s)",
            e,
            reason="MalformedConfig",
        )
