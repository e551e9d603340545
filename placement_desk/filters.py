"""Column filters and universal search over an in-memory record list."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence

from placement_desk.columns import ColumnDefinition, ColumnLayout
from placement_desk.normalizer import coerce_text
from placement_desk.schema import BuiltIn, ColumnRef, Custom, Record


def _new_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass(frozen=True)
class FilterCriterion:
    column_key: str
    value: str
    label: str = ""
    id: str = field(default_factory=_new_id)


class FilterSet:
    def __init__(self, criteria: Iterable[FilterCriterion] = ()) -> None:
        self._criteria: list[FilterCriterion] = list(criteria)

    def __iter__(self) -> Iterator[FilterCriterion]:
        return iter(self._criteria)

    def __len__(self) -> int:
        return len(self._criteria)

    def add(self, column_key: str, value: str, label: str = "") -> FilterCriterion:
        criterion = FilterCriterion(column_key=column_key, value=str(value), label=label or column_key)
        self._criteria.append(criterion)
        return criterion

    def remove(self, criterion_id: str) -> None:
        self._criteria = [item for item in self._criteria if item.id != criterion_id]

    def clear(self) -> None:
        self._criteria = []


def column_ref(columns: ColumnLayout, key: str) -> ColumnRef:
    for column in columns:
        if column.key == key:
            return column.ref
    if key in columns.schema.keys:
        return BuiltIn(key)
    return Custom(key)


def cell_text(record: Record, ref: ColumnRef) -> str:
    return coerce_text(record.get(ref))


def contains(haystack: str, needle: str) -> bool:
    return needle.strip().lower() in haystack.lower()


def apply_filters(
    records: Sequence[Record],
    criteria: Iterable[FilterCriterion],
    search: Optional[str],
    columns: ColumnLayout,
) -> list[Record]:
    """Records passing every criterion and, when given, the search text.

    Criteria compare case-insensitive substrings; an empty criterion value
    constrains nothing. Search looks at visible columns only.
    """
    active = [
        (column_ref(columns, criterion.column_key), criterion.value)
        for criterion in criteria
        if str(criterion.value).strip()
    ]
    search = (search or "").strip()
    if not active and not search:
        return list(records)

    visible_refs = [column.ref for column in columns.visible()]
    result = []
    for record in records:
        if not all(contains(cell_text(record, ref), value) for ref, value in active):
            continue
        if search and not any(contains(cell_text(record, ref), search) for ref in visible_refs):
            continue
        result.append(record)
    return result


def unique_values(records: Iterable[Record], columns: ColumnLayout, key: str) -> list[str]:
    ref = column_ref(columns, key)
    seen = {cell_text(record, ref) for record in records}
    seen.discard("")
    return sorted(seen, key=str.lower)


def strict_view_columns(records: Sequence[Record], columns: ColumnLayout) -> list[ColumnDefinition]:
    """Visible columns with a value in every one of ``records``."""
    visible = columns.visible()
    if not records:
        return visible
    return [
        column
        for column in visible
        if all(cell_text(record, column.ref) for record in records)
    ]
