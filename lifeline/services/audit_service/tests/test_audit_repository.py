"""Tests for the audit chain repositories."""
import json
import pytest
from dataclasses import replace
from datetime import datetime
from unittest.mock import MagicMock

from lifeline.shared.database import RepositoryError
from lifeline.shared.utils import configure_pii_salt
from lifeline.services.audit_service.audit_logger import (
    AuditAction,
    AuditEntity,
    AuditEntry,
)
from lifeline.services.audit_service.audit_repository import (
    AuditRepository,
    PostgresAuditRepository,
    verify_chain,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


def make_entry(sequence: int = 1, previous_hash: str = "genesis") -> AuditEntry:
    entry = AuditEntry(
        entry_id=f"audit_{sequence}",
        sequence=sequence,
        timestamp=datetime(2024, 3, 1, 12, 0, sequence),
        action=AuditAction.VOLUNTEER_ASSIGNED,
        entity_type=AuditEntity.VOLUNTEER,
        entity_id="vol_1",
        actor_id="system",
        actor_role="system",
        details={"session_id": f"sess_{sequence}"},
        previous_hash=previous_hash,
    )
    return replace(entry, entry_hash=entry.compute_hash())


def make_chain(length: int):
    entries, previous = [], "genesis"
    for sequence in range(1, length + 1):
        entry = make_entry(sequence, previous_hash=previous)
        entries.append(entry)
        previous = entry.entry_hash
    return entries


def as_row(entry: AuditEntry) -> tuple:
    return (
        entry.entry_id, entry.sequence, entry.timestamp, entry.action.value,
        entry.entity_type.value, entry.entity_id, entry.actor_id, entry.actor_role,
        json.dumps(entry.details), entry.previous_hash, entry.entry_hash,
    )


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def manager(cursor):
    manager = MagicMock()
    manager.transaction.return_value.__enter__.return_value = cursor
    return manager


@pytest.fixture
def postgres_repository(manager):
    return PostgresAuditRepository(manager)


class TestVerifyChain:
    def test_linked_entries_verify_in_any_order(self):
        chain = make_chain(4)

        assert verify_chain(reversed(chain)) is True

    def test_broken_link_detected(self, caplog):
        chain = make_chain(3)
        chain[2] = make_entry(3, previous_hash="not_the_previous_hash")

        assert verify_chain(chain) is False
        assert "AUDIT_CHAIN_BROKEN" in caplog.text

    def test_tampered_content_detected(self, caplog):
        chain = make_chain(2)
        chain[1] = replace(chain[1], details={"session_id": "forged"})

        assert verify_chain(chain) is False
        assert "AUDIT_ENTRY_TAMPERED" in caplog.text

    def test_empty_chain_is_valid(self):
        assert verify_chain([]) is True


class TestMemoryBackend:
    def test_append_and_count(self):
        repository = AuditRepository()

        repository.append(make_entry(1))

        assert repository.count() == 1

    def test_latest_is_highest_sequence(self):
        repository = AuditRepository()
        assert repository.latest() is None

        for entry in make_chain(3):
            repository.append(entry)

        assert repository.latest().sequence == 3

    def test_query_filters_and_limits(self):
        repository = AuditRepository()
        for entry in make_chain(5):
            repository.append(entry)

        results = repository.query(
            entity_id="vol_1",
            start_date=datetime(2024, 3, 1, 12, 0, 2),
            limit=2,
        )

        assert [e.sequence for e in results] == [5, 4]

    def test_verify_stored_chain(self):
        repository = AuditRepository()
        for entry in make_chain(3):
            repository.append(entry)

        assert repository.verify_chain() is True

    def test_verify_stored_chain_with_broken_link(self):
        repository = AuditRepository()
        repository.append(make_entry(1))
        repository.append(make_entry(2, previous_hash="not_the_previous_hash"))

        assert repository.verify_chain() is False


class TestPostgresBackend:
    def test_append_inserts_in_transaction(self, postgres_repository, cursor, manager):
        entry = make_entry(1)

        assert postgres_repository.append(entry) is True

        query, params = cursor.execute.call_args.args
        assert "INSERT INTO audit_entries" in query
        assert "ON CONFLICT" not in query
        assert params[0] == entry.entry_id
        assert json.loads(params[8]) == {"session_id": "sess_1"}
        manager.transaction.assert_called_once()

    def test_append_failure_raises_repository_error(self, postgres_repository, cursor):
        cursor.execute.side_effect = RuntimeError("connection reset")

        with pytest.raises(RepositoryError):
            postgres_repository.append(make_entry(1))

    def test_query_builds_filters(self, postgres_repository, cursor):
        entry = make_entry(1)
        cursor.fetchall.return_value = [as_row(entry)]

        results = postgres_repository.query(
            entity_id="vol_1", action=AuditAction.VOLUNTEER_ASSIGNED, limit=10
        )

        query, params = cursor.execute.call_args.args
        assert "entity_id = %s" in query
        assert "action = %s" in query
        assert "ORDER BY sequence DESC" in query
        assert params == ["vol_1", "volunteer_assigned", 10]
        assert results[0] == entry

    def test_latest(self, postgres_repository, cursor):
        entry = make_entry(7, previous_hash="abc")
        cursor.fetchall.return_value = [as_row(entry)]

        assert postgres_repository.latest() == entry

        _, params = cursor.execute.call_args.args
        assert params == [1]

    def test_latest_on_empty_table(self, postgres_repository, cursor):
        cursor.fetchall.return_value = []

        assert postgres_repository.latest() is None

    def test_verify_chain_reads_ascending(self, postgres_repository, cursor):
        cursor.fetchall.return_value = [as_row(e) for e in make_chain(3)]

        assert postgres_repository.verify_chain() is True

        query, _ = cursor.execute.call_args.args
        assert "ORDER BY sequence ASC" in query

    def test_count(self, postgres_repository, cursor):
        cursor.fetchone.return_value = (42,)

        assert postgres_repository.count() == 42
