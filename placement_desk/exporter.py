"""Write record views to styled .xlsx workbooks."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from placement_desk.columns import ColumnLayout
from placement_desk.contracts import build_run_summary, wrap_summary
from placement_desk.errors import ExportError
from placement_desk.filters import cell_text
from placement_desk.schema import COMPANY_TYPES, Record

SERIAL_HEADER = "S.No"
ALL_RECORDS_SHEET = "All Records"
HEADER_COLOR = "1565C0"
INVALID_SHEET_CHARS = set("[]:*?/\\")


def default_filename(by_category: bool = False, today: Optional[date] = None) -> str:
    stamp = (today or date.today()).isoformat()
    prefix = "Multiple_Export" if by_category else "Placement_Records"
    return f"{prefix}_{stamp}.xlsx"


def _sheet_title(name: str) -> str:
    cleaned = "".join("_" if char in INVALID_SHEET_CHARS else char for char in str(name)).strip()
    return (cleaned or "Sheet")[:31]


def export_columns(
    records: Sequence[Record],
    columns: ColumnLayout,
    *,
    flatten_other: bool = True,
) -> list[tuple[str, Callable[[Record], Any]]]:
    """(header, getter) pairs: visible columns, then any remaining other_details keys."""
    getters: list[tuple[str, Callable[[Record], Any]]] = []
    used = {SERIAL_HEADER}
    keys = set()
    for column in columns.visible():
        getters.append((column.label, lambda record, ref=column.ref: cell_text(record, ref)))
        used.add(column.label)
        keys.add(column.key)
    if not flatten_other:
        return getters

    extra: list[str] = []
    for column in columns.custom():
        if column.key not in keys:
            extra.append(column.key)
    for record in records:
        for key in record.other_details:
            if key not in keys and key not in extra:
                extra.append(key)
    for key in extra:
        header = key if key not in used else f"{key} (details)"
        getters.append((header, lambda record, key=key: record.other_details.get(key, "")))
        used.add(header)
    return getters


def to_dataframe(
    records: Sequence[Record],
    columns: ColumnLayout,
    *,
    flatten_other: bool = True,
) -> pd.DataFrame:
    getters = export_columns(records, columns, flatten_other=flatten_other)
    rows = []
    for number, record in enumerate(records, start=1):
        row = [number] + [getter(record) for _, getter in getters]
        rows.append(row)
    return pd.DataFrame(rows, columns=[SERIAL_HEADER] + [header for header, _ in getters])


def _style_sheet(ws, df: pd.DataFrame) -> None:
    """Bold coloured header, frozen first row, widths from a sample of values."""
    fill = PatternFill("solid", fgColor=HEADER_COLOR)
    font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center")
    ws.freeze_panes = "A2"
    for index, header in enumerate(df.columns, start=1):
        sample = [str(value) for value in df.iloc[:300, index - 1].tolist()]
        width = max([len(str(header))] + [len(value) for value in sample]) + 2
        ws.column_dimensions[get_column_letter(index)].width = max(8, min(60, width))


def _write_sheets(output_path: Path, frames: list[tuple[str, pd.DataFrame]]) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            for title, df in frames:
                df.to_excel(writer, sheet_name=title, index=False)
                _style_sheet(writer.sheets[title], df)
    except OSError as exc:
        raise ExportError(f"Could not write {output_path}: {exc}") from exc


def export_records(
    records: Sequence[Record],
    columns: ColumnLayout,
    output_path: Path,
    *,
    flatten_other: bool = True,
    sheet_name: str = "Records",
) -> dict[str, Any]:
    if not records:
        raise ExportError("No records to export")
    output_path = Path(output_path)
    df = to_dataframe(records, columns, flatten_other=flatten_other)
    _write_sheets(output_path, [(_sheet_title(sheet_name), df)])
    run_summary = build_run_summary(
        operation="export",
        entity=columns.schema.name,
        output_path=output_path,
        metrics={"rows": len(df), "columns": len(df.columns) - 1, "sheets": 1},
    )
    return wrap_summary("exporter.summary", run_summary, sheets=[_sheet_title(sheet_name)])


def category_of(record: Record, field: str) -> str:
    value = " ".join(str(record.values.get(field) or "").split())
    if field == "company_type":
        upper = value.upper()
        return upper if upper in COMPANY_TYPES else "OTHER"
    return value


def group_by_category(records: Sequence[Record], field: str) -> list[tuple[str, list[Record]]]:
    groups: dict[str, list[Record]] = {}
    if field == "company_type":
        for category in COMPANY_TYPES:
            groups[category] = []
    for record in records:
        category = category_of(record, field)
        if not category:
            continue
        groups.setdefault(category, []).append(record)
    return [(category, members) for category, members in groups.items() if members]


def export_by_category(
    records: Sequence[Record],
    columns: ColumnLayout,
    output_path: Path,
    *,
    field: Optional[str] = None,
    flatten_other: bool = True,
) -> dict[str, Any]:
    """Write an "All Records" sheet plus one sheet per non-empty category of ``field``."""
    if not records:
        raise ExportError("No records to export")
    field = field or columns.schema.category_field
    if not field:
        raise ExportError(f"{columns.schema.name} has no category field to split by")

    output_path = Path(output_path)
    frames = [(ALL_RECORDS_SHEET, to_dataframe(records, columns, flatten_other=flatten_other))]
    warnings: list[str] = []
    titles = {ALL_RECORDS_SHEET}
    for category, members in group_by_category(records, field):
        title = _sheet_title(category)
        if title in titles:
            warnings.append(f"Category '{category}' shares a sheet name with another; skipped")
            continue
        titles.add(title)
        frames.append((title, to_dataframe(members, columns, flatten_other=flatten_other)))

    _write_sheets(output_path, frames)
    run_summary = build_run_summary(
        operation="export",
        entity=columns.schema.name,
        output_path=output_path,
        metrics={"rows": len(records), "sheets": len(frames)},
        warnings=warnings,
    )
    return wrap_summary("exporter.summary", run_summary, sheets=[title for title, _ in frames])
