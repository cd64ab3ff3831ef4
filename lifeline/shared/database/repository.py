"""Table-backed repositories for the volunteer record store.

Each repository maps one table to one dataclass. Besides lookups and
upserts it offers update_where(), the conditional single-statement
update used for every per-volunteer counter change: PostgreSQL's row
lock serializes concurrent writers on the same id, so no read-modify-write
race is possible.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """The backing store is unreachable or a statement failed.

    Callers are expected to apply their own backoff.
    """


class NotFoundError(RepositoryError):
    """No row with the requested id."""


class DuplicateError(RepositoryError):
    """A row with this id already exists."""


def _where(conditions: Sequence[str]) -> str:
    return " AND ".join(conditions) if conditions else "TRUE"


class BaseRepository(ABC, Generic[T]):
    """One table, one entity type.

    Subclasses supply the row <-> entity mapping; every statement goes
    through _execute() and therefore runs in its own transaction.
    """

    def __init__(self, connection_manager: ConnectionManager, table_name: str):
        self.connection_manager = connection_manager
        self.table_name = table_name
        logger.info("REPOSITORY_INITIALIZED", extra={"table_name": table_name})

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Build an entity from a SELECT * / RETURNING * row."""

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Column name -> value for INSERT; must include "id"."""

    def _execute(
        self,
        query: str,
        params: Sequence[Any] = (),
        fetch: str = "none",
    ) -> Any:
        """Run one statement in its own transaction.

        Args:
            query: SQL statement
            params: Statement parameters
            fetch: "one", "all", "rowcount" or "none"

        Returns:
            Fetched row(s), rowcount, or None

        Raises:
            RepositoryError: Driver failure; the transaction was rolled back
        """
        try:
            with self.connection_manager.transaction() as cur:
                cur.execute(query, params)
                if fetch == "one":
                    return cur.fetchone()
                if fetch == "all":
                    return cur.fetchall()
                if fetch == "rowcount":
                    return cur.rowcount
                return None
        except RepositoryError:
            raise
        except Exception as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Query on {self.table_name} failed: {e}") from e

    def _one(self, query: str, params: Sequence[Any]) -> Optional[T]:
        row = self._execute(query, params, fetch="one")
        return self._row_to_entity(row) if row is not None else None

    def find_by_id(self, entity_id: str) -> Optional[T]:
        return self._one(f"SELECT * FROM {self.table_name} WHERE id = %s", (entity_id,))

    def find_where(
        self,
        conditions: Sequence[str],
        params: Sequence[Any],
        order_by: str = "created_at DESC",
        limit: int = 100,
    ) -> List[T]:
        """Entities matching AND-ed SQL conditions.

        Args:
            conditions: SQL fragments using %s placeholders
            params: Values for the placeholders
            order_by: ORDER BY clause
            limit: Row cap
        """
        rows = self._execute(
            f"SELECT * FROM {self.table_name} WHERE {_where(conditions)} "
            f"ORDER BY {order_by} LIMIT %s",
            list(params) + [limit],
            fetch="all",
        )
        return [self._row_to_entity(row) for row in rows or []]

    def save(self, entity: T) -> T:
        """Insert, or overwrite every column of the row with the same id."""
        params = self._entity_to_params(entity)
        columns = ", ".join(params)
        overwrite = ", ".join(f"{name} = EXCLUDED.{name}" for name in params if name != "id")
        stored = self._one(
            f"INSERT INTO {self.table_name} ({columns}) "
            f"VALUES ({', '.join(['%s'] * len(params))}) "
            f"ON CONFLICT (id) DO UPDATE SET {overwrite} RETURNING *",
            list(params.values()),
        )
        return stored if stored is not None else entity

    def update_where(
        self,
        entity_id: str,
        assignments: Sequence[str],
        assignment_params: Sequence[Any],
        guards: Sequence[str] = (),
        guard_params: Sequence[Any] = (),
    ) -> Optional[T]:
        """Conditionally update one row in a single statement.

        Args:
            entity_id: Row id
            assignments: SET fragments, e.g. "current_load = current_load + 1"
            assignment_params: Values for placeholders in the SET fragments
            guards: Extra WHERE fragments that must hold for the update
            guard_params: Values for placeholders in the guards

        Returns:
            Updated entity, or None if the row is missing or a guard failed
        """
        return self._one(
            f"UPDATE {self.table_name} SET {', '.join(assignments)} "
            f"WHERE {_where(['id = %s', *guards])} RETURNING *",
            list(assignment_params) + [entity_id] + list(guard_params),
        )

    def count(self, conditions: Sequence[str] = (), params: Sequence[Any] = ()) -> int:
        row = self._execute(
            f"SELECT COUNT(*) FROM {self.table_name} WHERE {_where(conditions)}",
            list(params),
            fetch="one",
        )
        return row[0] if row else 0
