"""
Unit tests for the ledger adapter — SerialCounter and IndexLedger.

Uses tmp_path files and a fixed clock; no engine involved.

Test categories:
  - Serial allocation: reserve-before-use, monotonic across instances
  - index.txt format: serial and timestamp encoding, line layout
  - Lookup: exact subject match, ambiguity policy, missing subject
  - Revocation: status transition, double revocation, unknown serial
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest
from railway import ErrorCode, ResultAssertions

from ca_manager.adapters.ca_store import CaStore
from ca_manager.adapters.ledger import (
    IndexLedger,
    SerialCounter,
    common_name_of,
    crl_counter,
    format_serial,
    format_timestamp,
    open_ledger,
    parse_timestamp,
    serial_counter,
)
from ca_manager.domain.models import EntryStatus

ISSUED = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _make_ledger(tmp_path: Path, clock: datetime = ISSUED) -> IndexLedger:
    ledger = IndexLedger(tmp_path / "index.txt", SerialCounter(tmp_path / "serial"), lambda: clock)
    ledger.initialize()
    SerialCounter(tmp_path / "serial").initialize()
    return ledger


# ─────────────────────── Serial Allocator ───────────────────────


class TestSerialCounter:
    """Verify persisted, strictly increasing serial allocation."""

    def test_initialize_writes_initial_value(self, tmp_path: Path) -> None:
        counter = SerialCounter(tmp_path / "serial")
        ResultAssertions.assert_success_value(counter.initialize(), 1)
        assert (tmp_path / "serial").read_text() == "01\n"

    def test_initialize_does_not_reset(self, tmp_path: Path) -> None:
        """
        GIVEN a counter that has handed out serials
        WHEN initialize is called again
        THEN the current value is kept.
        """
        counter = SerialCounter(tmp_path / "serial")
        counter.initialize()
        counter.next()
        counter.next()
        ResultAssertions.assert_success_value(counter.initialize(), 3)

    def test_next_reserves_before_returning(self, tmp_path: Path) -> None:
        """
        GIVEN a fresh counter
        WHEN next() is called
        THEN it returns the current value and the file already holds the successor.
        """
        counter = SerialCounter(tmp_path / "serial")
        counter.initialize()
        ResultAssertions.assert_success_value(counter.next(), 1)
        assert (tmp_path / "serial").read_text() == "02\n"

    def test_monotonic_across_instances(self, tmp_path: Path) -> None:
        """
        GIVEN serials drawn by several independent counter objects (separate invocations)
        WHEN collected
        THEN they are strictly increasing with no value returned twice.
        """
        SerialCounter(tmp_path / "serial").initialize()
        drawn = [ResultAssertions.assert_success(SerialCounter(tmp_path / "serial").next()) for _ in range(50)]
        assert drawn == sorted(set(drawn))
        assert drawn[0] == 1
        assert drawn[-1] == 50

    def test_peek_missing_counter_fails(self, tmp_path: Path) -> None:
        result = SerialCounter(tmp_path / "serial").peek()
        ResultAssertions.assert_failure(result, ErrorCode.PERSISTENCE_ERROR)

    def test_next_on_garbage_fails_without_writing(self, tmp_path: Path) -> None:
        path = tmp_path / "serial"
        path.write_text("not-hex\n")
        ResultAssertions.assert_failure(SerialCounter(path).next(), ErrorCode.PERSISTENCE_ERROR)
        assert path.read_text() == "not-hex\n"

    def test_store_counters_are_independent(self, tmp_path: Path) -> None:
        """
        GIVEN a CA store
        WHEN the CRL number advances
        THEN the serial counter is untouched.
        """
        store = CaStore(tmp_path)
        serial_counter(store).initialize()
        crl_counter(store).initialize()
        crl_counter(store).next()
        ResultAssertions.assert_success_value(serial_counter(store).peek(), 1)
        ResultAssertions.assert_success_value(crl_counter(store).peek(), 2)


# ─────────────────────── Formats ───────────────────────


class TestFormats:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(1, "01"), (10, "0A"), (255, "FF"), (256, "0100"), (4095, "0FFF")],
    )
    def test_format_serial(self, value: int, expected: str) -> None:
        assert format_serial(value) == expected

    def test_utc_time_before_2050(self) -> None:
        assert format_timestamp(ISSUED) == "260101120000Z"

    def test_generalized_time_from_2050(self) -> None:
        moment = datetime(2051, 6, 30, 8, 15, 0, tzinfo=UTC)
        assert format_timestamp(moment) == "20510630081500Z"
        assert parse_timestamp("20510630081500Z") == moment

    def test_parse_utc_time(self) -> None:
        assert parse_timestamp("260101120000Z") == ISSUED

    def test_common_name_of(self) -> None:
        assert common_name_of("CN=web1,O=Example,C=US") == "web1"

    def test_common_name_of_name_without_cn(self) -> None:
        assert common_name_of("O=Example") == "O=Example"


# ─────────────────────── Ledger ───────────────────────


class TestLedgerAppend:
    """Verify VALID entries are recorded with a freshly reserved serial."""

    def test_append_writes_index_line(self, tmp_path: Path) -> None:
        """
        GIVEN an empty ledger
        WHEN a 365-day certificate for web1 is recorded
        THEN index.txt holds one tab-separated VALID line with serial 01.
        """
        ledger = _make_ledger(tmp_path)
        entry = ResultAssertions.assert_success(ledger.append("CN=web1,O=Example", 365))

        assert entry.serial == 1
        assert entry.subject == "web1"
        assert entry.status is EntryStatus.VALID
        assert (tmp_path / "index.txt").read_text() == (
            "V\t270101120000Z\t\t01\t260101120000Z\tCN=web1,O=Example\n"
        )

    def test_append_advances_serial(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        first = ResultAssertions.assert_success(ledger.append("CN=web1", 30))
        second = ResultAssertions.assert_success(ledger.append("CN=web2", 30))
        assert (first.serial, second.serial) == (1, 2)
        assert (tmp_path / "serial").read_text() == "03\n"

    def test_entries_round_trip(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        appended = ResultAssertions.assert_success(ledger.append("CN=web1,O=Example", 365))
        assert ResultAssertions.assert_success(ledger.entries()) == [appended]

    def test_append_without_counter_fails(self, tmp_path: Path) -> None:
        ledger = IndexLedger(tmp_path / "index.txt", SerialCounter(tmp_path / "serial"))
        ledger.initialize()
        ResultAssertions.assert_failure(ledger.append("CN=web1", 30), ErrorCode.PERSISTENCE_ERROR)
        assert (tmp_path / "index.txt").read_text() == ""


class TestLedgerLookup:
    """Verify subject → valid serial lookup."""

    def test_finds_valid_serial(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        ledger.append("CN=web1,O=Example", 30)
        ledger.append("CN=web2,O=Example", 30)
        ResultAssertions.assert_success_value(ledger.find_valid_serial("web2"), 2)

    def test_match_is_exact_not_substring(self, tmp_path: Path) -> None:
        """
        GIVEN a ledger holding web10 only
        WHEN looking up web1
        THEN nothing matches, even though web1 is a prefix of web10.
        """
        ledger = _make_ledger(tmp_path)
        ledger.append("CN=web10,O=Example", 30)
        result = ledger.find_valid_serial("web1")
        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
        ResultAssertions.assert_failure_reason(result, "NoValidCertificate")

    def test_ambiguous_subject_selects_lowest_serial(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        ledger.append("CN=web1,O=Example", 30)
        ledger.append("CN=web1,O=Other", 30)
        ResultAssertions.assert_success_value(ledger.find_valid_serial("web1"), 1)

    def test_missing_ledger(self, tmp_path: Path) -> None:
        ledger = IndexLedger(tmp_path / "index.txt", SerialCounter(tmp_path / "serial"))
        result = ledger.find_valid_serial("web1")
        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
        ResultAssertions.assert_failure_reason(result, "MissingLedger")

    def test_corrupt_ledger(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        (tmp_path / "index.txt").write_text("V\tgarbage\n")
        result = ledger.entries()
        ResultAssertions.assert_failure(result, ErrorCode.PERSISTENCE_ERROR)
        ResultAssertions.assert_failure_reason(result, "LedgerCorrupt")


class TestLedgerRevoke:
    """Verify VALID → REVOKED transitions."""

    def test_revoke_marks_entry(self, tmp_path: Path) -> None:
        """
        GIVEN a valid entry for web1
        WHEN its serial is revoked
        THEN the entry becomes REVOKED with a revocation date and lookups no longer find it.
        """
        revoked_at = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)
        ledger = _make_ledger(tmp_path, clock=revoked_at)
        ledger.append("CN=web1,O=Example", 365)

        entry = ResultAssertions.assert_success(ledger.revoke(1))

        assert entry.status is EntryStatus.REVOKED
        assert entry.revoked_at == revoked_at
        assert [e.serial for e in ResultAssertions.assert_success(ledger.revoked())] == [1]
        ResultAssertions.assert_failure(ledger.find_valid_serial("web1"), ErrorCode.NOT_FOUND)
        assert (tmp_path / "index.txt").read_text().startswith("R\t")

    def test_revoke_keeps_other_entries(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        ledger.append("CN=web1", 30)
        ledger.append("CN=web2", 30)
        ledger.revoke(1)
        ResultAssertions.assert_success_value(ledger.find_valid_serial("web2"), 2)

    def test_revoke_twice_is_state_error(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        ledger.append("CN=web1", 30)
        ledger.revoke(1)
        result = ledger.revoke(1)
        ResultAssertions.assert_failure(result, ErrorCode.STATE_ERROR)
        ResultAssertions.assert_failure_reason(result, "AlreadyRevoked")

    def test_revoke_unknown_serial(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        result = ledger.revoke(0x2A)
        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
        ResultAssertions.assert_failure_reason(result, "SerialNotFound")

    def test_renewal_after_revocation_gets_new_serial(self, tmp_path: Path) -> None:
        ledger = _make_ledger(tmp_path)
        ledger.append("CN=web1", 30)
        ledger.revoke(1)
        ledger.append("CN=web1", 30)
        ResultAssertions.assert_success_value(ledger.find_valid_serial("web1"), 2)


class TestOpenLedger:
    def test_wired_to_store_paths(self, tmp_path: Path) -> None:
        store = CaStore(tmp_path)
        serial_counter(store).initialize()
        ledger = open_ledger(store)
        ledger.initialize()
        ledger.append("CN=web1", 30)
        assert store.index_path.read_text().endswith("CN=web1\n")
        assert store.serial_path.read_text() == "02\n"
