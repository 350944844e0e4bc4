"""
Issuance workflow — register subjects, issue and renew end-entity certificates.

issue_certificate runs as a fail-fast railway:

  require ACTIVE
    → subject configuration + validity period
      → claim (subject, date, instance) directory
        → key + CSR                       (engine)
          → ledger append                 (serial reserved here)
            → sign                        (engine, HOST or CLIENT profile)
              → assemble + write plain and chained artifacts

A failure after the ledger append leaves a VALID ledger row with no usable
certificate. That is the documented inconsistency window; the ledger is
never rolled back.

Renewal is revoke followed by issue, with no atomicity between the two: if
issuance fails after the revocation committed, the subject is left without
a valid certificate until the operator retries.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import structlog
from railway import ResultFailures
from railway.result import Result

from ca_manager.adapters.ca_store import CaStore, SigningMaterial, require_validity_days
from ca_manager.adapters.ledger import IndexLedger, format_serial, open_ledger
from ca_manager.chain import assemble_for_certificate, issuing_chain
from ca_manager.domain.models import (
    AssembledCertificate,
    ExtensionProfile,
    InstanceId,
    IssuedArtifactSet,
    LedgerEntry,
    SigningRequest,
    SubjectConfig,
)
from ca_manager.domain.ports import CertificateEngine, SecretProvider
from ca_manager.revocation import RevocationWorkflow

log = structlog.get_logger()

END_ENTITY_PROFILES = frozenset({ExtensionProfile.HOST, ExtensionProfile.CLIENT})


def _today() -> datetime:
    return datetime.now(UTC)


class IssuanceWorkflow:
    """Issue host and client certificates under a CA."""

    def __init__(
        self,
        engine: CertificateEngine,
        secrets: SecretProvider,
        revocation: RevocationWorkflow,
        default_validity_days: int = 365,
        default_key_bits: int = 2048,
        clock: Callable[[], datetime] = _today,
        ledger_factory: Callable[[CaStore], IndexLedger] = open_ledger,
    ) -> None:
        self._engine = engine
        self._secrets = secrets
        self._revocation = revocation
        self._default_validity_days = default_validity_days
        self._default_key_bits = default_key_bits
        self._clock = clock
        self._ledger_factory = ledger_factory

    # ──────────────────────── Registration ────────────────────────

    def register_subject(
        self,
        store: CaStore,
        subject: str,
        alt_names: list[str] | None = None,
    ) -> Result[SubjectConfig]:
        """
        Render and store a subject's configuration.

        Distinguished-name defaults (country, organization, ...) are taken
        from the CA's own configuration; the validity period and key size
        from the workflow defaults.
        """
        path = store.subject_config_path(subject)
        if path.is_file():
            return ResultFailures.state_error("AlreadyRegistered", f"Subject {subject!r} is already registered")

        return (
            store.load_config()
            .map(
                lambda ca: SubjectConfig(
                    common_name=subject,
                    country=ca.country,
                    state=ca.state,
                    locality=ca.locality,
                    organization=ca.organization,
                    organizational_unit=ca.organizational_unit,
                    alt_names=list(alt_names or []),
                    validity_days=self._default_validity_days,
                    key_bits=self._default_key_bits,
                )
            )
            .flat_map(lambda config: store.save_subject_config(subject, config))
            .peek(
                lambda config: log.info(
                    "issuance.subject_registered", subject=subject, alt_names=config.alt_names
                )
            )
            .map_failure(lambda err: err.at(f"register[{subject}]"))
        )

    # ──────────────────────── Issuance ────────────────────────

    def issue_certificate(
        self,
        store: CaStore,
        subject: str,
        profile: ExtensionProfile = ExtensionProfile.HOST,
    ) -> Result[IssuedArtifactSet]:
        """Issue a HOST or CLIENT certificate for a registered subject."""
        if profile not in END_ENTITY_PROFILES:
            return ResultFailures.validation_error(f"Cannot issue an end-entity certificate with profile {profile}")

        return (
            store.require_active()
            .flat_map(lambda _: store.load_subject_config(subject))
            .flat_map(
                lambda config: require_validity_days(config, store.subject_config_path(subject)).map(
                    lambda days: (config, days)
                )
            )
            .flat_map(
                lambda cfg: Result.combine(
                    store.signing_material(self._secrets),
                    store.read_chain(),
                    lambda material, chain: (*cfg, material, chain),
                )
            )
            .flat_map(
                lambda inputs: store.allocate_instance(subject, self._clock().strftime("%Y%m%d")).flat_map(
                    lambda claimed: self._issue_into(store, profile, *claimed, *inputs)
                )
            )
            .peek(
                lambda issued: log.info(
                    "issuance.completed",
                    ca=str(store.identity),
                    subject=subject,
                    profile=profile.value,
                    serial=format_serial(issued.serial),
                    instance=str(issued.instance),
                    chained=issued.chained_cert is not None,
                )
            )
            .map_failure(lambda err: err.at(f"issue[{subject}]"))
        )

    def _issue_into(
        self,
        store: CaStore,
        profile: ExtensionProfile,
        instance: InstanceId,
        directory: Path,
        config: SubjectConfig,
        validity_days: int,
        material: SigningMaterial,
        chain: list[bytes],
    ) -> Result[IssuedArtifactSet]:
        key_path = directory / "key.pem"
        csr_path = directory / "csr.pem"

        return (
            self._engine.generate_key(config.key_bits)
            .flat_map(lambda key: store.write(key_path, key, "private key", private=True).map(lambda _: key))
            .flat_map(
                lambda key: self._engine.create_csr(key, None, config)
                .flat_map(lambda csr: store.write(csr_path, csr, "signing request").map(lambda _: csr))
                .flat_map(lambda csr: self._record_and_sign(store, csr, validity_days, profile, material))
                .map(
                    lambda signed: (
                        signed[0],
                        assemble_for_certificate(signed[1], key, issuing_chain(material.cert, chain)),
                    )
                )
            )
            .flat_map(
                lambda signed: self._write_artifacts(store, directory, signed[1]).map(
                    lambda written: IssuedArtifactSet(
                        instance=instance,
                        directory=directory,
                        serial=signed[0].serial,
                        profile=profile,
                        key=key_path,
                        csr=csr_path,
                        **written,
                    )
                )
            )
        )

    def _record_and_sign(
        self,
        store: CaStore,
        csr: bytes,
        validity_days: int,
        profile: ExtensionProfile,
        material: SigningMaterial,
    ) -> Result[tuple[LedgerEntry, bytes]]:
        return (
            self._engine.subject_of(csr)
            .flat_map(lambda dn: self._ledger_factory(store).append(dn, validity_days))
            .flat_map(
                lambda entry: self._engine.sign(
                    SigningRequest(
                        ca_key=material.key,
                        ca_secret=material.secret,
                        ca_cert=material.cert,
                        csr=csr,
                        serial=entry.serial,
                        validity_days=validity_days,
                        profile=profile,
                    )
                )
                .peek_failure(
                    lambda _: log.warning(
                        "issuance.ledger_entry_without_certificate",
                        ca=str(store.identity),
                        serial=format_serial(entry.serial),
                        subject=entry.subject,
                    )
                )
                .map(lambda cert: (entry, cert))
            )
        )

    def _write_artifacts(
        self,
        store: CaStore,
        directory: Path,
        assembled: AssembledCertificate,
    ) -> Result[dict[str, Path | None]]:
        files: list[tuple[str, str, bytes | None, bool]] = [
            ("cert", "cert.pem", assembled.cert, False),
            ("keycert", "keycert.pem", assembled.keycert, True),
            ("chained_cert", "chain.cert.pem", assembled.chained_cert, False),
            ("chained_keycert", "chain.keycert.pem", assembled.chained_keycert, True),
        ]
        written: dict[str, Path | None] = {}
        for field_name, file_name, data, private in files:
            if data is None:
                written[field_name] = None
                continue
            result = store.write(directory / file_name, data, file_name, private=private)
            if result.is_failure():
                return Result.failure_from(result.error())
            written[field_name] = result.value()
        return Result.success(written)

    # ──────────────────────── Renewal ────────────────────────

    def renew_certificate(
        self,
        store: CaStore,
        subject: str,
        profile: ExtensionProfile = ExtensionProfile.HOST,
    ) -> Result[IssuedArtifactSet]:
        """Revoke the subject's valid certificate, then issue a new one."""
        return (
            self._revocation.revoke_certificate(store, subject)
            .flat_map(
                lambda revoked: self.issue_certificate(store, subject, profile).peek_failure(
                    lambda err: log.warning(
                        "issuance.renewal_incomplete",
                        ca=str(store.identity),
                        subject=subject,
                        revoked_serial=format_serial(revoked.serial),
                        error=str(err),
                    )
                )
            )
            .map_failure(lambda err: err.at(f"renew[{subject}]"))
        )
