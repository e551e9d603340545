"""
grid.py - spreadsheet-style editing over a filtered record view.

The editor is a small state machine:

    VIEWING ──select──> SELECTED ──Enter / double-click / printable key──> EDITING
       ^                   │  ^                                              │
       │                   │  └──────── Enter / Tab / Escape ────────────────┘
       │                   └──start_drag──> DRAG_FILLING ──release──> SELECTED
       └── any filter, search or column-visibility change

Cell addresses are relative to the current view (filtered rows x visible
columns), which is why every view change drops the selection. Edits, pastes,
clears and drag-fills only touch the local EditBuffer; the store sees nothing
until save_changes() sends every pending value in one batch_update call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Iterator, Optional

from placement_desk.columns import ColumnDefinition, ColumnLayout, save_layout
from placement_desk.contracts import build_run_summary, wrap_summary
from placement_desk.errors import SelectionError
from placement_desk.filters import FilterSet, apply_filters, strict_view_columns
from placement_desk.loader import parse_paste_block
from placement_desk.normalizer import RowNormalizer, coerce_text
from placement_desk.schema import DATE, NUMBER, EntitySchema, Record


class Mode(Enum):
    VIEWING = "viewing"
    SELECTED = "selected"
    EDITING = "editing"
    DRAG_FILLING = "drag_filling"


@dataclass(frozen=True)
class CellAddress:
    row: int
    col: int


@dataclass(frozen=True)
class Selection:
    anchor: CellAddress
    focus: CellAddress

    @property
    def top(self) -> int:
        return min(self.anchor.row, self.focus.row)

    @property
    def bottom(self) -> int:
        return max(self.anchor.row, self.focus.row)

    @property
    def left(self) -> int:
        return min(self.anchor.col, self.focus.col)

    @property
    def right(self) -> int:
        return max(self.anchor.col, self.focus.col)

    @property
    def top_left(self) -> CellAddress:
        return CellAddress(self.top, self.left)

    @property
    def is_single(self) -> bool:
        return self.anchor == self.focus

    def contains(self, row: int, col: int) -> bool:
        return self.top <= row <= self.bottom and self.left <= col <= self.right

    def cells(self) -> Iterator[CellAddress]:
        for row in range(self.top, self.bottom + 1):
            for col in range(self.left, self.right + 1):
                yield CellAddress(row, col)


class EditBuffer:
    """Pending values keyed by record id, then column key. Latest write wins."""

    def __init__(self) -> None:
        self._pending: dict[str, dict[str, Any]] = {}

    def __len__(self) -> int:
        return sum(len(changes) for changes in self._pending.values())

    def __bool__(self) -> bool:
        return bool(self._pending)

    def stage(self, record_id: str, key: str, value: Any) -> None:
        self._pending.setdefault(record_id, {})[key] = value

    def has(self, record_id: Optional[str], key: str) -> bool:
        return record_id in self._pending and key in self._pending[record_id]

    def get(self, record_id: str, key: str) -> Any:
        return self._pending[record_id][key]

    def by_record(self) -> list[tuple[str, dict[str, Any]]]:
        return [(record_id, dict(changes)) for record_id, changes in self._pending.items()]

    def discard(self, record_id: str) -> None:
        self._pending.pop(record_id, None)

    def clear(self) -> None:
        self._pending.clear()


class GridEditor:
    def __init__(
        self,
        store,
        schema: EntitySchema,
        columns: Optional[ColumnLayout] = None,
        *,
        session=None,
        state=None,
        records: Optional[list[Record]] = None,
        today: Optional[date] = None,
    ) -> None:
        self.store = store
        self.schema = schema
        self.columns = columns if columns is not None else ColumnLayout(schema)
        self.session = session
        self.state = state
        self.records: list[Record] = list(records or [])
        self.normalizer = RowNormalizer(schema, self.columns, today=today)
        self.today = today
        self.filters = FilterSet()
        self.search = ""
        self.strict_view = False
        self.buffer = EditBuffer()
        self.mode = Mode.VIEWING
        self.selection: Optional[Selection] = None
        self.edit_text: Optional[str] = None
        self.drag_source: Optional[CellAddress] = None
        self.drag_target: Optional[int] = None
        self._view: Optional[list[Record]] = None
        self._visible: Optional[list[ColumnDefinition]] = None

    # ── view ──────────────────────────────────────────────────────────────

    @property
    def view(self) -> list[Record]:
        """Filtered records, computed once per view change."""
        if self._view is None:
            self._view = apply_filters(self.records, self.filters, self.search, self.columns)
        return self._view

    @property
    def visible_columns(self) -> list[ColumnDefinition]:
        if self._visible is None:
            if self.strict_view:
                self._visible = strict_view_columns(self.view, self.columns)
            else:
                self._visible = self.columns.visible()
        return self._visible

    @property
    def row_count(self) -> int:
        return len(self.view)

    @property
    def col_count(self) -> int:
        return len(self.visible_columns)

    def record_at(self, row: int) -> Record:
        view = self.view
        if not 0 <= row < len(view):
            raise SelectionError(f"Row {row} is outside the current view")
        return view[row]

    def column_at(self, col: int) -> ColumnDefinition:
        columns = self.visible_columns
        if not 0 <= col < len(columns):
            raise SelectionError(f"Column {col} is outside the current view")
        return columns[col]

    def value_at(self, row: int, col: int) -> Any:
        record = self.record_at(row)
        column = self.column_at(col)
        if self.buffer.has(record.id, column.key):
            return self.buffer.get(record.id, column.key)
        return record.get(column.ref)

    def text_at(self, row: int, col: int) -> str:
        return coerce_text(self.value_at(row, col))

    def is_dirty(self, row: int, col: int) -> bool:
        return self.buffer.has(self.record_at(row).id, self.column_at(col).key)

    def invalidate(self) -> None:
        """Back to VIEWING; addresses from the old view mean nothing now."""
        self._view = None
        self._visible = None
        self.mode = Mode.VIEWING
        self.selection = None
        self.edit_text = None
        self.drag_source = None
        self.drag_target = None

    # ── selection ─────────────────────────────────────────────────────────

    def _clamp(self, row: int, col: int) -> CellAddress:
        if not self.row_count or not self.col_count:
            raise SelectionError("Nothing to select in the current view")
        return CellAddress(
            max(0, min(row, self.row_count - 1)),
            max(0, min(col, self.col_count - 1)),
        )

    def _require_selection(self) -> Selection:
        if self.selection is None:
            raise SelectionError("No cell selected")
        return self.selection

    def select(self, row: int, col: int) -> Selection:
        if self.mode is Mode.EDITING:
            self.commit_edit()
        cell = self._clamp(row, col)
        self.selection = Selection(cell, cell)
        self.mode = Mode.SELECTED
        return self.selection

    def extend(self, row: int, col: int) -> Selection:
        """Shift+click / Shift+arrow: keep the anchor, move the focus."""
        if self.selection is None:
            return self.select(row, col)
        if self.mode is Mode.EDITING:
            self.commit_edit()
        self.selection = Selection(self.selection.anchor, self._clamp(row, col))
        self.mode = Mode.SELECTED
        return self.selection

    def move(self, d_row: int, d_col: int, *, extend: bool = False) -> Selection:
        focus = self._require_selection().focus
        if extend:
            return self.extend(focus.row + d_row, focus.col + d_col)
        return self.select(focus.row + d_row, focus.col + d_col)

    def tab(self) -> Selection:
        self._require_selection()
        if self.mode is Mode.EDITING:
            self.commit_edit()
        return self.move(0, 1)

    def enter(self) -> Selection:
        selection = self._require_selection()
        if self.mode is Mode.EDITING:
            self.commit_edit()
            return self.move(1, 0)
        self.begin_edit()
        return selection

    def escape(self) -> None:
        if self.mode is Mode.EDITING:
            self.cancel_edit()
        elif self.mode is Mode.DRAG_FILLING:
            self.drag_source = None
            self.drag_target = None
            self.mode = Mode.SELECTED

    # ── editing ───────────────────────────────────────────────────────────

    def begin_edit(self, initial: Optional[str] = None) -> None:
        """Double-click / Enter keeps the cell text; typing replaces it."""
        focus = self._require_selection().focus
        self.selection = Selection(focus, focus)
        self.edit_text = self.text_at(focus.row, focus.col) if initial is None else initial
        self.mode = Mode.EDITING

    def type_char(self, char: str) -> None:
        if self.mode is Mode.EDITING:
            self.edit_text = (self.edit_text or "") + char
            return
        if not char.isprintable():
            return
        self.begin_edit(initial=char)

    def set_edit_text(self, text: str) -> None:
        if self.mode is not Mode.EDITING:
            self.begin_edit(initial=text)
        else:
            self.edit_text = text

    def backspace(self) -> None:
        if self.mode is Mode.EDITING:
            self.edit_text = (self.edit_text or "")[:-1]
        else:
            self.delete()

    def commit_edit(self) -> None:
        if self.mode is not Mode.EDITING or self.selection is None:
            return
        focus = self.selection.focus
        self.stage(focus.row, focus.col, self.edit_text or "")
        self.edit_text = None
        self.mode = Mode.SELECTED

    def cancel_edit(self) -> None:
        self.edit_text = None
        self.mode = Mode.SELECTED if self.selection is not None else Mode.VIEWING

    # ── buffer writes ─────────────────────────────────────────────────────

    def stage(self, row: int, col: int, value: Any) -> None:
        record = self.record_at(row)
        if record.id is None:
            raise SelectionError("Unsaved records cannot be edited in the grid")
        self.buffer.stage(record.id, self.column_at(col).key, value)

    def copy(self) -> str:
        """Selection as TSV, every row newline-terminated like a spreadsheet copy."""
        selection = self._require_selection()
        lines = []
        for row in range(selection.top, selection.bottom + 1):
            lines.append("\t".join(self.text_at(row, col) for col in range(selection.left, selection.right + 1)))
        return "".join(line + "\n" for line in lines)

    def paste(self, text: str) -> int:
        """Write a pasted matrix from the selection's top-left; returns cells staged."""
        origin = self._require_selection().top_left
        if self.mode is Mode.EDITING:
            self.cancel_edit()
        matrix = parse_paste_block(text)
        staged = 0
        for d_row, line in enumerate(matrix):
            row = origin.row + d_row
            if row >= self.row_count:
                break
            for d_col, value in enumerate(line):
                col = origin.col + d_col
                if col >= self.col_count:
                    break
                self.stage(row, col, value)
                staged += 1
        return staged

    def delete(self) -> int:
        selection = self._require_selection()
        count = 0
        for cell in selection.cells():
            self.stage(cell.row, cell.col, "")
            count += 1
        return count

    # ── drag fill ─────────────────────────────────────────────────────────

    def start_drag(self) -> None:
        selection = self._require_selection()
        if self.mode is Mode.EDITING:
            self.commit_edit()
        self.drag_source = selection.focus
        self.drag_target = selection.focus.row
        self.mode = Mode.DRAG_FILLING

    def drag_to(self, row: int) -> None:
        if self.mode is not Mode.DRAG_FILLING or self.drag_source is None:
            raise SelectionError("No drag in progress")
        self.drag_target = self._clamp(row, self.drag_source.col).row

    def release(self) -> int:
        """Copy the source value down (or up) to the release row; returns rows staged."""
        if self.mode is not Mode.DRAG_FILLING or self.drag_source is None:
            raise SelectionError("No drag in progress")
        source = self.drag_source
        target = source.row if self.drag_target is None else self.drag_target
        value = self.value_at(source.row, source.col)
        step = 1 if target >= source.row else -1
        filled = 0
        for row in range(source.row + step, target + step, step):
            self.stage(row, source.col, value)
            filled += 1
        self.selection = Selection(source, CellAddress(target, source.col))
        self.drag_source = None
        self.drag_target = None
        self.mode = Mode.SELECTED
        return filled

    # ── commit / revert ───────────────────────────────────────────────────

    def _find(self, record_id: str) -> Optional[Record]:
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    def _column(self, key: str) -> Optional[ColumnDefinition]:
        for column in self.columns:
            if column.key == key:
                return column
        return None

    def coerce(self, key: str, value: Any) -> Any:
        """Field-typed value for the store; a cleared date or number cell is null."""
        spec = self.schema.spec_for(key)
        if spec is not None and spec.kind in (DATE, NUMBER) and coerce_text(value) == "":
            return None
        return self.normalizer.coerce(key, value)

    def changes_for(self, record: Optional[Record], changes: dict[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        other: Optional[dict[str, str]] = None
        for key, value in changes.items():
            column = self._column(key)
            if (column is not None and column.is_custom) or key not in self.schema.keys:
                if other is None:
                    other = dict(record.other_details) if record is not None else {}
                other[key] = coerce_text(value)
            else:
                fields[key] = self.coerce(key, value)
        if other is not None:
            fields["other_details"] = other
        return fields

    def save_changes(self) -> dict[str, Any]:
        """Send every buffered value in one batch_update call.

        The buffer is cleared and records refetched only on success; a
        RemoteError leaves every pending value in place.
        """
        if self.mode is Mode.EDITING:
            self.commit_edit()
        pending = self.buffer.by_record()
        cells = len(self.buffer)
        if pending:
            updates = [
                {"id": record_id, "changes": self.changes_for(self._find(record_id), changes)}
                for record_id, changes in pending
            ]
            self.store.batch_update(self.schema.name, updates)
            self.buffer.clear()
            self.refresh()
        run_summary = build_run_summary(
            operation="save",
            entity=self.schema.name,
            metrics={"records": len(pending), "cells": cells},
        )
        return wrap_summary("grid.save_summary", run_summary)

    def revert(self) -> None:
        self.buffer.clear()
        if self.mode in (Mode.EDITING, Mode.DRAG_FILLING):
            self.escape()

    # ── records ───────────────────────────────────────────────────────────

    def refresh(self) -> list[Record]:
        rows = self.store.select_all(
            self.schema.name,
            order_by=self.schema.order_by,
            descending=self.schema.order_by == "created_at",
        )
        self.records = [Record.from_payload(self.schema, row) for row in rows]
        self._view = None
        self._visible = None
        if self.selection is not None and (not self.row_count or not self.col_count):
            self.invalidate()
        elif self.selection is not None:
            self.selection = Selection(
                self._clamp(self.selection.anchor.row, self.selection.anchor.col),
                self._clamp(self.selection.focus.row, self.selection.focus.col),
            )
        return self.records

    def new_record(self, values: Optional[dict[str, Any]] = None) -> Record:
        record = Record()
        for key in self.schema.keys:
            record.values[key] = self.schema.default_value(key, self.today)
        if self.session is not None:
            record.values.update(self.session.new_record_defaults(self.schema))
        for key, value in (values or {}).items():
            column = self._column(key)
            if column is not None and column.is_custom:
                record.other_details[key] = coerce_text(value)
            elif key in self.schema.keys:
                record.values[key] = self.normalizer.coerce(key, value)
        return record

    def add_record(self, values: Optional[dict[str, Any]] = None) -> Record:
        record = self.new_record(values)
        created = self.store.insert_one(self.schema.name, record.to_payload(self.schema))
        self.refresh()
        return Record.from_payload(self.schema, created) if created else record

    def update_record(self, record_id: str, values: dict[str, Any]) -> None:
        """Edit-dialog save: one immediate update, bypassing the buffer."""
        changes = self.changes_for(self._find(record_id), values)
        self.store.update(self.schema.name, record_id, changes)
        self.refresh()

    def delete_record(self, record_id: str) -> None:
        self.store.delete(self.schema.name, record_id)
        self.buffer.discard(record_id)
        self.invalidate()
        self.refresh()

    def delete_all_visible(self) -> int:
        ids = [record.id for record in self.view if record.id is not None]
        if not ids:
            raise SelectionError("No records in the current view")
        self.store.delete_in(self.schema.name, ids)
        for record_id in ids:
            self.buffer.discard(record_id)
        self.invalidate()
        self.refresh()
        return len(ids)

    # ── view changes ──────────────────────────────────────────────────────

    def add_filter(self, column_key: str, value: str, label: str = "") -> None:
        self.filters.add(column_key, value, label)
        self.invalidate()

    def remove_filter(self, criterion_id: str) -> None:
        self.filters.remove(criterion_id)
        self.invalidate()

    def clear_filters(self) -> None:
        self.filters.clear()
        self.search = ""
        self.invalidate()

    def set_search(self, text: str) -> None:
        self.search = text or ""
        self.invalidate()

    def set_strict_view(self, enabled: bool) -> None:
        self.strict_view = enabled
        self.invalidate()

    def _persist_layout(self) -> None:
        if self.state is not None:
            save_layout(self.state, self.columns)

    def hide_column(self, key: str) -> None:
        self.columns.hide(key)
        self._persist_layout()
        self.invalidate()

    def show_column(self, key: str) -> None:
        self.columns.show(key)
        self._persist_layout()
        self.invalidate()

    def rename_column(self, key: str, label: str) -> None:
        self.columns.rename(key, label)
        self._persist_layout()

    def add_column(self, label: str) -> ColumnDefinition:
        column = self.columns.add_custom(label)
        self._persist_layout()
        self.invalidate()
        return column

    def paste_as_new_column(self, label: str, text: str) -> int:
        """New custom column whose values are the pasted lines, in view order."""
        column = self.add_column(label)
        lines = (text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n")
        while lines and not lines[-1].strip():
            lines.pop()
        view = self.view
        staged = 0
        for record, line in zip(view, lines):
            if record.id is None:
                continue
            self.buffer.stage(record.id, column.key, line.strip())
            staged += 1
        return staged
