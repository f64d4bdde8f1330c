# store.py
# The queryable store that store assertions run against.
#
# The engine only ever reads through Store.query(). InMemoryStore backs the
# demo tools and the test-suite; a real deployment adapts its persistence
# layer to the same protocol.

import copy
import uuid
from typing import Any, Protocol


class Store(Protocol):
    async def query(self, table: str, predicate: dict[str, Any]) -> list[dict[str, Any]]:
        """Rows in `table` whose columns equal every value in `predicate`."""
        ...


class InMemoryStore:
    """Dict-of-tables store. Rows are copied on the way in and out."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }

    async def query(self, table: str, predicate: dict[str, Any]) -> list[dict[str, Any]]:
        rows = self._tables.get(table, [])
        return [
            copy.deepcopy(row)
            for row in rows
            if all(row.get(column) == value for column, value in predicate.items())
        ]

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", uuid.uuid4().hex)
        self._tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    async def update(self, table: str, row_id: Any, changes: dict[str, Any]) -> dict[str, Any] | None:
        for row in self._tables.get(table, []):
            if row.get("id") == row_id:
                row.update(changes)
                return copy.deepcopy(row)
        return None

    async def delete(self, table: str, row_id: Any) -> bool:
        rows = self._tables.get(table, [])
        kept = [row for row in rows if row.get("id") != row_id]
        self._tables[table] = kept
        return len(kept) != len(rows)

    def rows(self, table: str) -> list[dict[str, Any]]:
        """Synchronous snapshot of a table, for inspection."""
        return copy.deepcopy(self._tables.get(table, []))
