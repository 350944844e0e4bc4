"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the workflows need (contracts) without specifying
HOW it's done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy
the contract simply by implementing the methods — no inheritance.

The Certificate Engine is treated as a black box: given key parameters,
a rendered configuration or a CSR, it produces key, CSR, certificate
or CRL material as PEM bytes. All operations are synchronous and fail
with ErrorCode.ENGINE_ERROR.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from railway.result import Result

from ca_manager.domain.models import CrlRequest, SigningRequest, SubjectConfig


@runtime_checkable
class CertificateEngine(Protocol):
    """Port: key generation, CSR creation, signing, self-signing and CRL signing."""

    def generate_key(self, bits: int, secret: str | None = None) -> Result[bytes]:
        """Generate a private key, encrypted with `secret` when one is given."""
        ...

    def self_sign(
        self,
        key: bytes,
        secret: str | None,
        config: SubjectConfig,
        validity_days: int,
    ) -> Result[bytes]:
        """Produce a self-signed CA certificate for `config`'s subject."""
        ...

    def create_csr(self, key: bytes, secret: str | None, config: SubjectConfig) -> Result[bytes]:
        """Produce a CSR for `config`'s subject, alt names embedded."""
        ...

    def sign(self, request: SigningRequest) -> Result[bytes]:
        """Sign a CSR under a CA with the requested extension profile."""
        ...

    def generate_crl(self, request: CrlRequest) -> Result[bytes]:
        """Produce a signed revocation list from a ledger snapshot."""
        ...

    def subject_of(self, pem: bytes) -> Result[str]:
        """Return the RFC 4514 subject of a PEM certificate or CSR."""
        ...


@runtime_checkable
class SecretProvider(Protocol):
    """
    Port: supply the passphrase that unlocks a CA's signing key.

    Implementations acquire the secret at most once per process for a
    given CA identity and keep it in memory only.
    """

    def secret_for(self, identity: Path) -> Result[str]: ...
