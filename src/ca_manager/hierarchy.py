"""
CA hierarchy controller — the CA state machine and cross-CA signing.

States: UNINITIALIZED → ACTIVE (terminal, no de-initialization).

Root initialization:
  check state → config → key → self-signed certificate → activate

Intermediate initialization:
  check state → config → parent check → key → CSR
    → sign_intermediate(parent, child)     (runs against the PARENT's store)

sign_intermediate is a first-class operation taking two explicit store
handles. It is called internally during a child's initialization and is also
exposed on the command line for a parent operator signing a pending child.
Either way the child comes out complete: trust chain, counters, ledger,
certificate and an empty CRL.

Activation writes the CA certificate after the chain and the bookkeeping,
because the certificate is what makes a store ACTIVE. A failure before that
point leaves the child UNINITIALIZED with its CSR in place, so the pending
request can be signed again.

There is no two-phase commit across the two stores: once the parent has
recorded and signed, a later failure on the child side leaves the parent's
ledger and serial advanced. That window is accepted and reported, not
rolled back.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from railway import ResultFailures
from railway.result import Result

from ca_manager.adapters.ca_store import CaStore, SigningMaterial, require_validity_days
from ca_manager.adapters.ledger import IndexLedger, crl_counter, open_ledger, serial_counter
from ca_manager.chain import build_chain_for_new_ca, concatenate
from ca_manager.domain.models import (
    CaConfig,
    CaState,
    CaStatus,
    EntryStatus,
    ExtensionProfile,
    SigningRequest,
)
from ca_manager.domain.ports import CertificateEngine, SecretProvider
from ca_manager.revocation_list import RevocationListManager

log = structlog.get_logger()


class HierarchyController:
    """Initialize root and intermediate CAs and sign intermediates."""

    def __init__(
        self,
        engine: CertificateEngine,
        secrets: SecretProvider,
        crl_manager: RevocationListManager,
        ledger_factory: Callable[[CaStore], IndexLedger] = open_ledger,
    ) -> None:
        self._engine = engine
        self._secrets = secrets
        self._crl_manager = crl_manager
        self._ledger_factory = ledger_factory

    # ──────────────────────── Initialization ────────────────────────

    def initialize(self, store: CaStore, parent: CaStore | None = None) -> Result[CaStatus]:
        """
        Bring `store` from UNINITIALIZED to ACTIVE, as a root when `parent`
        is None and as an intermediate signed by `parent` otherwise.

        Every precondition is checked before anything is written, so a
        refused initialization mutates nothing.
        """
        return (
            self._require_uninitialized(store)
            .flat_map(lambda _: store.load_config())
            .flat_map(
                lambda config: require_validity_days(config, store.config_path).map(
                    lambda days: (config, days)
                )
            )
            .flat_map(lambda cfg: self._require_parent(store, parent).map(lambda _: cfg))
            .flat_map(lambda cfg: store.prepare().map(lambda _: cfg))
            .flat_map(
                lambda cfg: self._create_root(store, *cfg)
                if parent is None
                else self._create_intermediate(store, parent, cfg[0])
            )
            .flat_map(lambda _: self.status(store))
            .peek(
                lambda status: log.info(
                    "hierarchy.initialized",
                    ca=str(status.identity),
                    kind=status.kind.value if status.kind else None,
                    common_name=status.common_name,
                    chain_length=status.chain_length,
                )
            )
            .map_failure(lambda err: err.at(f"init[{store.identity}]"))
        )

    def _require_uninitialized(self, store: CaStore) -> Result[CaStore]:
        if store.state is CaState.ACTIVE:
            return ResultFailures.state_error(
                "AlreadyInitialized", f"CA at {store.identity} already has a certificate"
            )
        return Result.success(store)

    def _require_parent(self, store: CaStore, parent: CaStore | None) -> Result[CaStore]:
        if parent is None:
            return Result.success(store)
        if parent == store:
            return ResultFailures.not_found("Parent CA distinct from", str(store.identity), reason="InvalidParent")
        if parent.state is not CaState.ACTIVE or not parent.has_config():
            return ResultFailures.not_found("Active parent CA", str(parent.identity), reason="InvalidParent")
        return Result.success(parent)

    def _create_root(self, store: CaStore, config: CaConfig, validity_days: int) -> Result[bytes]:
        return (
            store.key_secret(self._secrets)
            .flat_map(
                lambda secret: self._new_key(store, config, secret).flat_map(
                    lambda key: self._engine.self_sign(key, secret, config, validity_days)
                )
            )
            .peek(lambda _: log.info("hierarchy.root_self_signed", ca=str(store.identity), days=validity_days))
            .flat_map(lambda cert: self._activate(store, cert, []))
        )

    def _create_intermediate(self, store: CaStore, parent: CaStore, config: CaConfig) -> Result[bytes]:
        return (
            store.key_secret(self._secrets)
            .flat_map(
                lambda secret: self._new_key(store, config, secret).flat_map(
                    lambda key: self._engine.create_csr(key, secret, config)
                )
            )
            .flat_map(lambda csr: store.write(store.csr_path, csr, "CA signing request"))
            .flat_map(lambda _: self.sign_intermediate(parent, store))
        )

    def _new_key(self, store: CaStore, config: CaConfig, secret: str) -> Result[bytes]:
        return self._engine.generate_key(config.key_bits, secret or None).flat_map(
            lambda key: store.write(store.key_path, key, "CA signing key", private=True).map(lambda _: key)
        )

    def _activate(self, store: CaStore, cert: bytes, chain: list[bytes]) -> Result[bytes]:
        """
        Trust chain, counters at their initial values and an empty ledger,
        then the certificate, then an empty CRL signed with it.
        """
        return (
            self._store_chain(store, chain)
            .flat_map(lambda _: serial_counter(store).initialize())
            .flat_map(lambda _: crl_counter(store).initialize())
            .flat_map(lambda _: self._ledger_factory(store).initialize())
            .flat_map(lambda _: store.write(store.cert_path, cert, "CA certificate"))
            .flat_map(lambda _: self._crl_manager.regenerate(store))
            .map(lambda _: cert)
        )

    @staticmethod
    def _store_chain(store: CaStore, chain: list[bytes]) -> Result[CaStore]:
        if not chain:
            return Result.success(store)
        return store.write(store.chain_path, concatenate(chain), "trust chain").map(lambda _: store)

    # ──────────────────────── Cross-CA signing ────────────────────────

    def sign_intermediate(self, parent: CaStore, child: CaStore) -> Result[bytes]:
        """
        Sign `child`'s pending CSR with `parent`'s key using the CA profile.

        Runs in the parent's context: the serial comes from, and the ledger
        entry goes to, the parent. The validity period comes from the
        child's configuration. The child is then activated as an
        intermediate under `parent`; returns the child's certificate.
        """
        return (
            parent.require_active()
            .flat_map(lambda _: self._require_pending_request(child))
            .flat_map(lambda _: child.load_config())
            .flat_map(lambda config: require_validity_days(config, child.config_path))
            .flat_map(
                lambda days: Result.combine(
                    child.read(child.csr_path, "CA signing request"),
                    parent.signing_material(self._secrets),
                    lambda csr, material: (days, csr, material),
                )
            )
            .flat_map(
                lambda inputs: parent.read_chain().flat_map(
                    lambda parent_chain: self._record_and_sign(parent, *inputs).flat_map(
                        lambda cert: self._activate(
                            child, cert, build_chain_for_new_ca(parent_chain, inputs[2].cert)
                        )
                    )
                )
            )
            .peek(
                lambda _: log.info(
                    "hierarchy.intermediate_signed", parent=str(parent.identity), child=str(child.identity)
                )
            )
            .map_failure(lambda err: err.at(f"sign_intermediate[{child.identity}]"))
        )

    @staticmethod
    def _require_pending_request(child: CaStore) -> Result[CaStore]:
        if child.state is CaState.ACTIVE:
            return ResultFailures.state_error(
                "AlreadySigned", f"CA at {child.identity} already has a certificate"
            )
        if not child.csr_path.is_file():
            return ResultFailures.not_found("Pending CA signing request", str(child.csr_path), reason="MissingCSR")
        if not child.key_path.is_file():
            return ResultFailures.not_found("CA signing key", str(child.key_path), reason="MissingKey")
        return Result.success(child)

    def _record_and_sign(
        self,
        parent: CaStore,
        validity_days: int,
        csr: bytes,
        material: SigningMaterial,
    ) -> Result[bytes]:
        return (
            self._engine.subject_of(csr)
            .flat_map(lambda dn: self._ledger_factory(parent).append(dn, validity_days))
            .flat_map(
                lambda entry: self._engine.sign(
                    SigningRequest(
                        ca_key=material.key,
                        ca_secret=material.secret,
                        ca_cert=material.cert,
                        csr=csr,
                        serial=entry.serial,
                        validity_days=validity_days,
                        profile=ExtensionProfile.CA,
                    )
                )
            )
        )

    # ──────────────────────── Introspection ────────────────────────

    def status(self, store: CaStore) -> Result[CaStatus]:
        common_name = store.load_config().map(lambda c: c.common_name).get_or_else(None)
        if store.state is CaState.UNINITIALIZED:
            return Result.success(
                CaStatus(identity=store.identity, state=CaState.UNINITIALIZED, common_name=common_name)
            )

        return Result.combine(
            store.read_chain(),
            self._ledger_factory(store).entries(),
            lambda chain, entries: (chain, entries),
        ).flat_map(
            lambda found: serial_counter(store).peek().map(
                lambda next_serial: CaStatus(
                    identity=store.identity,
                    state=CaState.ACTIVE,
                    kind=store.kind,
                    common_name=common_name,
                    chain_length=len(found[0]),
                    next_serial=next_serial,
                    valid_certificates=sum(1 for e in found[1] if e.status is EntryStatus.VALID),
                    revoked_certificates=sum(1 for e in found[1] if e.status is EntryStatus.REVOKED),
                )
            )
        )
