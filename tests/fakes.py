from __future__ import annotations

from typing import Any, Iterable, Optional

from placement_desk.errors import RemoteError
from placement_desk.loader import SheetRow


def sheet_rows(rows: Iterable[dict], source: str = "fixture.xlsx", sheet: Optional[str] = "Sheet1") -> list[SheetRow]:
    return [
        SheetRow(source=source, sheet=sheet, row_number=index, values=dict(values))
        for index, values in enumerate(rows, start=2)
    ]


class FakeStore:
    """In-memory stand-in for RestStore that records every call."""

    def __init__(self, tables: Optional[dict[str, list[dict]]] = None) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.access_token = ""
        self.fail_insert_call: Optional[int] = None
        self.fail_batch_update = False
        self.fail_bulk_insert = False
        self.closed = False
        self._next_id = 1
        self._insert_calls = 0
        for table, rows in (tables or {}).items():
            self.tables[table] = [self._with_id(row) for row in rows]

    def _with_id(self, row: dict) -> dict:
        row = dict(row)
        if row.get("id") is None:
            row["id"] = str(self._next_id)
            self._next_id += 1
        return row

    def writes(self) -> list[tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] not in ("select_all", "select_in")]

    def select_all(self, table: str, order_by: Optional[str] = None, descending: bool = False) -> list[dict]:
        self.calls.append(("select_all", table, order_by))
        return [dict(row) for row in self.tables.get(table, [])]

    def select_in(self, table: str, column: str, values) -> list[dict]:
        values = list(values)
        self.calls.append(("select_in", table, (column, values)))
        wanted = {str(value) for value in values}
        return [dict(row) for row in self.tables.get(table, []) if str(row.get(column)) in wanted]

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        self._insert_calls += 1
        self.calls.append(("insert", table, [dict(row) for row in rows]))
        if self.fail_insert_call == self._insert_calls:
            raise RemoteError("duplicate key value violates unique constraint", status=409)
        created = [self._with_id(row) for row in rows]
        self.tables.setdefault(table, []).extend(created)
        return [dict(row) for row in created]

    def insert_one(self, table: str, row: dict) -> dict:
        return self.insert(table, [row])[0]

    def upsert(self, table: str, rows: list[dict], on_conflict: str) -> list[dict]:
        self.calls.append(("upsert", table, ([dict(row) for row in rows], on_conflict)))
        existing = self.tables.setdefault(table, [])
        for row in rows:
            for current in existing:
                if current.get(on_conflict) == row.get(on_conflict):
                    current.update(row)
                    break
            else:
                existing.append(self._with_id(row))
        return [dict(row) for row in rows]

    def update(self, table: str, record_id: str, values: dict) -> list[dict]:
        self.calls.append(("update", table, (record_id, dict(values))))
        for row in self.tables.get(table, []):
            if row["id"] == record_id:
                row.update(values)
                return [dict(row)]
        return []

    def delete(self, table: str, record_id: str) -> None:
        self.calls.append(("delete", table, record_id))
        self.tables[table] = [row for row in self.tables.get(table, []) if row["id"] != record_id]

    def delete_in(self, table: str, ids) -> None:
        ids = list(ids)
        self.calls.append(("delete_in", table, ids))
        self.tables[table] = [row for row in self.tables.get(table, []) if row["id"] not in ids]

    def bulk_insert(self, entity: str, rows: list[dict]) -> None:
        self.calls.append(("bulk_insert", entity, [dict(row) for row in rows]))
        if self.fail_bulk_insert:
            raise RemoteError("transaction aborted", status=400)
        self.tables.setdefault(entity, []).extend(self._with_id(row) for row in rows)

    def batch_update(self, entity: str, updates: list[dict]) -> None:
        self.calls.append(("batch_update", entity, [dict(update) for update in updates]))
        if self.fail_batch_update:
            raise RemoteError("permission denied for table", status=403)
        for update in updates:
            for row in self.tables.get(entity, []):
                if row["id"] == update["id"]:
                    row.update(update["changes"])

    def set_access_token(self, token: str) -> None:
        self.access_token = token

    def close(self) -> None:
        self.closed = True
