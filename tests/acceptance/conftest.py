"""
Acceptance test fixtures — a real two-level hierarchy on disk.

The Certificate Engine is the real PyCA cryptography adapter wrapped in a
MagicMock, so a test can make one engine operation fail while every other
call still produces genuine keys, certificates and CRLs.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from railway import ResultAssertions

from ca_manager.adapters.ca_store import CaStore
from ca_manager.adapters.crypto_engine import CryptographyCertificateEngine
from ca_manager.adapters.secrets import CachedSecretProvider
from ca_manager.config import AppSettings
from ca_manager.main import Services, create_services
from tests.conftest import PASSPHRASE, configured_store


@pytest.fixture()
def engine() -> MagicMock:
    """The real engine, observable and overridable per operation."""
    return MagicMock(wraps=CryptographyCertificateEngine())


@pytest.fixture()
def services(engine: MagicMock) -> Services:
    settings = AppSettings(_env_file=None, default_validity_days=365, default_key_bits=2048)  # type: ignore[call-arg]
    return create_services(settings, engine=engine, secrets=CachedSecretProvider.fixed(PASSPHRASE))


@pytest.fixture()
def root_ca(tmp_path: Path, services: Services) -> CaStore:
    """Root CA "R", ACTIVE, validity 3650 days."""
    store = configured_store(tmp_path / "R", "R", validity_days=3650)
    ResultAssertions.assert_success(services.hierarchy.initialize(store))
    return store


@pytest.fixture()
def intermediate_ca(tmp_path: Path, services: Services, root_ca: CaStore) -> CaStore:
    """Intermediate CA "I" signed by R, validity 1825 days."""
    store = configured_store(tmp_path / "I", "I", validity_days=1825)
    ResultAssertions.assert_success(services.hierarchy.initialize(store, parent=root_ca))
    return store
