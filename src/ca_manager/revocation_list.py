"""
Revocation list manager — keeps crl.pem in step with the ledger.

The CRL is derived state: it is rebuilt from the ledger's revoked entries
every time, never patched. Regeneration runs at CA initialization (empty
list) and after every successful revocation; a failure here fails the
revocation that triggered it.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from railway.result import Result

from ca_manager.adapters.ca_store import CaStore, SigningMaterial
from ca_manager.adapters.ledger import IndexLedger, crl_counter, open_ledger
from ca_manager.domain.models import CaConfig, CrlRequest, LedgerEntry
from ca_manager.domain.ports import CertificateEngine, SecretProvider

log = structlog.get_logger()


class RevocationListManager:
    """Regenerate a CA's revocation list from its ledger."""

    def __init__(
        self,
        engine: CertificateEngine,
        secrets: SecretProvider,
        ledger_factory: Callable[[CaStore], IndexLedger] = open_ledger,
    ) -> None:
        self._engine = engine
        self._secrets = secrets
        self._ledger_factory = ledger_factory

    def regenerate(self, store: CaStore) -> Result[bytes]:
        """
        Rebuild and overwrite `store`'s CRL; returns the new CRL PEM.

        The CRL number is reserved only once every input has loaded, right
        before the engine call.
        """
        return (
            store.load_config()
            .flat_map(
                lambda config: Result.combine(
                    store.signing_material(self._secrets),
                    self._ledger_factory(store).revoked(),
                    lambda material, revoked: (config, material, revoked),
                )
            )
            .flat_map(lambda inputs: self._sign_crl(store, *inputs))
            .flat_map(lambda crl: store.write(store.crl_path, crl, "revocation list").map(lambda _: crl))
            .map_failure(lambda err: err.at(f"crl[{store.identity}]"))
        )

    def _sign_crl(
        self,
        store: CaStore,
        config: CaConfig,
        material: SigningMaterial,
        revoked: list[LedgerEntry],
    ) -> Result[bytes]:
        return crl_counter(store).next().flat_map(
            lambda crl_number: self._engine.generate_crl(
                CrlRequest(
                    ca_key=material.key,
                    ca_secret=material.secret,
                    ca_cert=material.cert,
                    revoked=revoked,
                    crl_number=crl_number,
                    next_update_days=config.crl_days,
                )
            ).peek(
                lambda _: log.info(
                    "crl.regenerated",
                    ca=str(store.identity),
                    crl_number=crl_number,
                    revoked=len(revoked),
                )
            )
        )
