"""In-process state store.

Used by the test-suite and by single-screen rehearsals (``CG_STORE_BACKEND=memory``).
Change events are delivered synchronously to local subscriptions after each write.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Sequence
from typing import Any

from genesis.state.store import (
    ChangeType,
    Filters,
    Record,
    StateStore,
    StateStoreError,
    Table,
    matches_filters,
)


def _sort_value(value: Any) -> tuple[bool, Any]:
    # None sorts last in ascending order, like Postgres.
    return (value is None, value if value is not None else 0)


class InMemoryStateStore(StateStore):
    """Dict-backed implementation of :class:`StateStore`."""

    def __init__(self) -> None:
        super().__init__()
        self._tables: dict[Table, dict[str, Record]] = {table: {} for table in Table}

    def _rows(self, table: Table, filters: Filters | None) -> list[Record]:
        return [row for row in self._tables[table].values() if matches_filters(row, filters or {})]

    async def insert(self, table: Table, record: Record) -> Record:
        row = copy.deepcopy(record)
        row.setdefault("id", str(uuid.uuid4()))
        if row["id"] in self._tables[table]:
            raise StateStoreError(f"Duplicate id {row['id']} in {table.value}")
        self._tables[table][row["id"]] = row
        await self.publish(table, ChangeType.INSERT, [copy.deepcopy(row)])
        return copy.deepcopy(row)

    async def upsert(self, table: Table, record: Record, conflict_key: Sequence[str]) -> Record:
        missing = [column for column in conflict_key if column not in record]
        if missing:
            raise StateStoreError(f"Upsert on {table.value} missing conflict columns {missing}")

        key = {column: record[column] for column in conflict_key}
        existing = self._rows(table, key)
        if not existing:
            return await self.insert(table, record)

        row = existing[0]
        for column, value in record.items():
            if column == "id":
                continue
            row[column] = copy.deepcopy(value)
        await self.publish(table, ChangeType.UPDATE, [copy.deepcopy(row)])
        return copy.deepcopy(row)

    async def update(self, table: Table, filters: Filters, values: Record) -> list[Record]:
        updated = []
        for row in self._rows(table, filters):
            row.update(copy.deepcopy(values))
            updated.append(copy.deepcopy(row))
        if updated:
            await self.publish(table, ChangeType.UPDATE, updated)
        return updated

    async def query(
        self, table: Table, filters: Filters | None = None, order_by: str | None = None,
    ) -> list[Record]:
        rows = [copy.deepcopy(row) for row in self._rows(table, filters)]
        if order_by:
            column = order_by.lstrip("-")
            rows.sort(key=lambda row: _sort_value(row.get(column)), reverse=order_by.startswith("-"))
        return rows

    async def delete(self, table: Table, filters: Filters) -> int:
        removed = self._rows(table, filters)
        for row in removed:
            del self._tables[table][row["id"]]
        if removed:
            await self.publish(table, ChangeType.DELETE, [copy.deepcopy(row) for row in removed])
        return len(removed)
