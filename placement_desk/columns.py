"""Ordered, user-customisable column layouts for the record grid."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

from placement_desk.errors import ColumnError
from placement_desk.schema import BuiltIn, ColumnRef, Custom, EntitySchema


def canonical_text(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "", str(value).lower())


@dataclass
class ColumnDefinition:
    key: str
    label: str
    visible: bool = True
    is_custom: bool = False

    @property
    def ref(self) -> ColumnRef:
        return Custom(self.key) if self.is_custom else BuiltIn(self.key)


class ColumnLayout:
    def __init__(self, schema: EntitySchema, columns: Optional[Iterable[ColumnDefinition]] = None) -> None:
        self.schema = schema
        if columns is None:
            columns = default_columns(schema)
        self._columns: list[ColumnDefinition] = []
        for column in columns:
            self._append(column)

    def __iter__(self):
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def _append(self, column: ColumnDefinition) -> None:
        if any(existing.key == column.key for existing in self._columns):
            raise ColumnError(f"Duplicate column key: {column.key}")
        self._columns.append(column)

    @property
    def keys(self) -> list[str]:
        return [column.key for column in self._columns]

    def get(self, key: str) -> ColumnDefinition:
        for column in self._columns:
            if column.key == key:
                return column
        raise ColumnError(f"Unknown column: {key}")

    def visible(self) -> list[ColumnDefinition]:
        return [column for column in self._columns if column.visible]

    def custom(self) -> list[ColumnDefinition]:
        return [column for column in self._columns if column.is_custom]

    def add_custom(self, label: str) -> ColumnDefinition:
        name = " ".join(str(label).split())
        if not name:
            raise ColumnError("Column name cannot be empty.")
        taken = set()
        for column in self._columns:
            taken.add(canonical_text(column.key))
            taken.add(canonical_text(column.label))
        if canonical_text(name) in taken or not canonical_text(name):
            raise ColumnError(f'Column "{name}" already exists.')
        column = ColumnDefinition(key=name, label=name, visible=True, is_custom=True)
        self._append(column)
        return column

    def rename(self, key: str, label: str) -> None:
        label = " ".join(str(label).split())
        if not label:
            raise ColumnError("Column label cannot be empty.")
        self.get(key).label = label

    def hide(self, key: str) -> None:
        self.get(key).visible = False

    def show(self, key: str) -> None:
        self.get(key).visible = True

    def remove(self, key: str) -> None:
        # Hiding is the only removal; underlying record data is never dropped.
        raise ColumnError(f'Column "{key}" cannot be removed; hide it instead.')

    def to_json(self) -> list[dict[str, Any]]:
        return [asdict(column) for column in self._columns]

    @classmethod
    def from_json(cls, schema: EntitySchema, payload: Any) -> "ColumnLayout":
        """Rebuild a saved layout, merged against the current built-in columns.

        Saved order, labels and visibility win for keys that still exist.
        Built-ins added since the layout was saved are appended; saved
        built-in keys that no longer exist are dropped.
        """
        builtin = {column.key: column for column in default_columns(schema)}
        merged: list[ColumnDefinition] = []
        seen: set[str] = set()
        for item in payload if isinstance(payload, list) else []:
            if not isinstance(item, dict) or not item.get("key"):
                continue
            key = str(item["key"])
            if key in seen:
                continue
            is_custom = bool(item.get("is_custom", item.get("isCustom", False)))
            if not is_custom and key not in builtin:
                continue
            fallback = builtin[key].label if key in builtin else key
            merged.append(
                ColumnDefinition(
                    key=key,
                    label=str(item.get("label") or fallback),
                    visible=bool(item.get("visible", True)),
                    is_custom=is_custom and key not in builtin,
                )
            )
            seen.add(key)
        for key, column in builtin.items():
            if key not in seen:
                merged.append(column)
        return cls(schema, merged)

    @classmethod
    def from_custom_names(cls, schema: EntitySchema, names: Iterable[str]) -> "ColumnLayout":
        layout = cls(schema)
        for name in names:
            try:
                layout.add_custom(name)
            except ColumnError:
                continue
        return layout


def default_columns(schema: EntitySchema) -> list[ColumnDefinition]:
    return [ColumnDefinition(key=spec.key, label=spec.label) for spec in schema.fields]


def layout_key(schema: EntitySchema) -> str:
    return f"{schema.name}_columns_config"


def legacy_custom_key(schema: EntitySchema) -> str:
    return f"{schema.name}_custom_columns"


def load_layout(state, schema: EntitySchema) -> ColumnLayout:
    saved = state.get(layout_key(schema))
    if saved is not None:
        return ColumnLayout.from_json(schema, saved)
    legacy = state.get(legacy_custom_key(schema))
    if isinstance(legacy, list):
        return ColumnLayout.from_custom_names(schema, [str(name) for name in legacy])
    return ColumnLayout(schema)


def save_layout(state, layout: ColumnLayout) -> None:
    state.set(layout_key(layout.schema), layout.to_json())
