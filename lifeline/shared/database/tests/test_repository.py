"""Tests for base repository pattern."""
import pytest
from unittest.mock import MagicMock
from dataclasses import dataclass
from typing import Any, Dict

from lifeline.shared.utils import configure_pii_salt
from lifeline.shared.database.repository import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    DuplicateError,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@dataclass
class Counter:
    id: str
    name: str
    value: int


class CounterRepository(BaseRepository[Counter]):
    """Concrete repository for testing."""

    def _row_to_entity(self, row: tuple) -> Counter:
        return Counter(id=row[0], name=row[1], value=row[2])

    def _entity_to_params(self, entity: Counter) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "name": entity.name,
            "value": entity.value,
        }


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def manager(cursor):
    manager = MagicMock()
    manager.transaction.return_value.__enter__.return_value = cursor
    return manager


@pytest.fixture
def repository(manager):
    return CounterRepository(manager, "counters")


class TestRepositoryExceptions:
    def test_not_found_error(self):
        assert isinstance(NotFoundError("missing"), RepositoryError)

    def test_duplicate_error(self):
        assert isinstance(DuplicateError("dup"), RepositoryError)


class TestBaseRepository:
    def test_initialization(self, repository):
        assert repository.table_name == "counters"

    def test_find_by_id(self, repository, cursor):
        cursor.fetchone.return_value = ("c1", "sessions", 3)

        entity = repository.find_by_id("c1")

        assert entity == Counter("c1", "sessions", 3)
        query, params = cursor.execute.call_args.args
        assert "WHERE id = %s" in query
        assert params == ("c1",)

    def test_find_by_id_missing(self, repository, cursor):
        cursor.fetchone.return_value = None

        assert repository.find_by_id("missing") is None

    def test_find_where_joins_conditions(self, repository, cursor):
        cursor.fetchall.return_value = [("c1", "a", 1), ("c2", "b", 2)]

        entities = repository.find_where(
            ["name = %s", "value > %s"], ["a", 0], order_by="id ASC", limit=5
        )

        assert [e.id for e in entities] == ["c1", "c2"]
        query, params = cursor.execute.call_args.args
        assert "name = %s AND value > %s" in query
        assert "ORDER BY id ASC" in query
        assert params == ["a", 0, 5]

    def test_save_upserts_in_transaction(self, repository, cursor, manager):
        cursor.fetchone.return_value = ("c1", "sessions", 4)

        saved = repository.save(Counter("c1", "sessions", 4))

        assert saved.value == 4
        query = cursor.execute.call_args.args[0]
        assert "ON CONFLICT (id) DO UPDATE" in query
        assert "id = EXCLUDED.id" not in query
        manager.transaction.assert_called_once()

    def test_update_where_applies_guards(self, repository, cursor):
        cursor.fetchone.return_value = ("c1", "sessions", 2)

        updated = repository.update_where(
            "c1",
            ["value = value + %s"],
            [1],
            guards=["value < %s"],
            guard_params=[3],
        )

        assert updated.value == 2
        query, params = cursor.execute.call_args.args
        assert "SET value = value + %s" in query
        assert "WHERE id = %s AND value < %s" in query
        assert params == [1, "c1", 3]

    def test_update_where_guard_failed(self, repository, cursor):
        cursor.fetchone.return_value = None

        assert repository.update_where("c1", ["value = 0"], []) is None

    def test_count(self, repository, cursor):
        cursor.fetchone.return_value = (7,)

        assert repository.count() == 7

    def test_driver_error_wrapped(self, repository, cursor):
        cursor.execute.side_effect = RuntimeError("server closed the connection")

        with pytest.raises(RepositoryError) as exc:
            repository.find_by_id("c1")

        assert "counters" in str(exc.value)

    def test_repository_error_not_rewrapped(self, repository, cursor):
        cursor.execute.side_effect = DuplicateError("dup")

        with pytest.raises(DuplicateError):
            repository.find_by_id("c1")
