#!/usr/bin/env python3
"""
loader.py - reads spreadsheets and pasted clipboard text into header-keyed rows.

Supports: .csv .tsv .txt .xlsx .xls .xlsm

Public API:
    result = load_files(["march.xlsx", "april.csv"])
    rows   = result["rows"]          # list[SheetRow]

    result = clipboard_rows(text, schema)

Result dict keys:
    rows       - list of SheetRow (values keyed by the sheet's own headers)
    sources    - one entry per file: name, format, encoding, delimiter,
                 sheet_names, rows
    headers    - distinct headers seen, in first-seen order
    warnings   - list of warning strings

Every sheet of every workbook is read with its first row as the header.
Wholly empty rows never reach the caller.
"""

from __future__ import annotations

import csv
import io
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import chardet
import pandas as pd

from placement_desk.errors import (
    ClipboardEmptyError,
    HeaderNotFoundError,
    MissingEngineError,
    ParseError,
    UnsupportedFileError,
)
from placement_desk.normalizer import normalize_scalar
from placement_desk.schema import EntitySchema

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS  = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xls", ".xlsm"}
ALL_FORMATS   = TEXT_FORMATS | EXCEL_FORMATS

CLIPBOARD_SOURCE = "clipboard"

Source = Union[str, Path]


@dataclass
class SheetRow:
    source: str
    sheet: Optional[str]
    row_number: int
    values: dict[str, Any] = field(default_factory=dict)


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding_info(raw: bytes) -> dict:
    """Detect encoding from raw bytes; returns detected, confidence, is_utf8."""
    result     = chardet.detect(raw)
    detected   = result.get("encoding") or "unknown"
    confidence = round(result.get("confidence") or 0.0, 2)
    is_utf8    = detected.upper().replace("-", "") in ("UTF8", "UTF8SIG", "ASCII")
    return {
        "detected":   detected,
        "confidence": confidence,
        "is_utf8":    is_utf8,
    }


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line:
      1. Try UTF-8
      2. Try preferred_encoding (chardet result)
      3. Try latin-1
      4. CP1252 with replace (never crashes)
    """
    if raw.startswith(b"\xef\xbb\xbf"):
        raw = raw[3:]
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: Optional[str] = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    Uses csv.Sniffer first; falls back to scoring each candidate by
    column-count consistency and width.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    sample_text = "\n".join(sample_lines)

    for delim in (",", ";", "\t", "|"):
        rows = [
            row
            for row in csv.reader(io.StringIO(sample_text), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = (mode_width * 2.0) + (mode_count / len(rows)) * mode_width
        if len(rows[0]) == mode_width:
            score += 1.0
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim

    return best_delim


def _validate_txt_table(text: str, delimiter: str) -> None:
    """Reject .txt files that are prose rather than delimited rows."""
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    rows = [
        row
        for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delimiter)
        if any(cell.strip() for cell in row)
    ]
    if sum(1 for row in rows if len(row) > 1) < 2:
        raise ParseError(
            ".txt file does not appear to contain delimited/tabular data "
            f"(detected delimiter {delimiter!r})"
        )


# ══════════════════════════════════════════════════════════════════════════════
# FRAME -> ROWS
# ══════════════════════════════════════════════════════════════════════════════

def _is_placeholder_header(header: Any) -> bool:
    return str(header).startswith("Unnamed:") or not str(header).strip()


def _frame_rows(df: pd.DataFrame, source: str, sheet: Optional[str], warnings: list[str]) -> list[SheetRow]:
    headers = [col for col in df.columns if not _is_placeholder_header(col)]
    skipped = len(df.columns) - len(headers)
    if skipped:
        label = f"{source}:{sheet}" if sheet else source
        warnings.append(f"{label}: ignored {skipped} column(s) without a header")

    rows: list[SheetRow] = []
    for offset, values in enumerate(df[headers].itertuples(index=False, name=None)):
        cells = {str(header): normalize_scalar(value) for header, value in zip(headers, values)}
        if all(value is None or (isinstance(value, str) and not value.strip()) for value in cells.values()):
            continue
        # +2: one for the header row, one for 1-based numbering.
        rows.append(SheetRow(source=source, sheet=sheet, row_number=offset + 2, values=cells))
    return rows


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_text(raw: bytes, name: str, suffix: str) -> dict:
    enc_info = _detect_encoding_info(raw)
    enc      = enc_info["detected"] if enc_info["detected"] != "unknown" else "utf-8"
    text     = _read_text_safely(raw, enc)

    if not text.strip():
        raise ParseError(f"{name} is empty")

    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)
    if suffix == ".txt":
        _validate_txt_table(text, delimiter)

    sep = r"\|" if delimiter == "|" else delimiter
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            on_bad_lines="skip",
            sep=sep,
            engine="python",
            skip_blank_lines=True,
        )
    except Exception as exc:
        raise ParseError(f"Could not parse {name}: {exc}") from exc

    warnings: list[str] = []
    rows = _frame_rows(df, name, None, warnings)
    return {
        "rows": rows,
        "headers": [str(col) for col in df.columns if not _is_placeholder_header(col)],
        "source": {
            "name":        name,
            "format":      suffix.lstrip("."),
            "encoding":    enc,
            "delimiter":   delimiter,
            "sheet_names": None,
            "rows":        len(rows),
        },
        "warnings": warnings,
    }


def _load_excel(raw: bytes, name: str, suffix: str) -> dict:
    # .xls requires xlrd; give a clear error if missing.
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise MissingEngineError(".xls files require xlrd; run: pip install xlrd")

    warnings: list[str] = []
    rows: list[SheetRow] = []
    headers: list[str] = []

    try:
        with pd.ExcelFile(io.BytesIO(raw)) as xf:
            sheet_names = list(xf.sheet_names)
            for sheet in sheet_names:
                try:
                    df = xf.parse(sheet_name=sheet)
                except Exception as exc:
                    warnings.append(f"{name}: could not load sheet '{sheet}': {exc}")
                    continue
                if df.empty and not len(df.columns):
                    continue
                headers.extend(str(col) for col in df.columns if not _is_placeholder_header(col))
                rows.extend(_frame_rows(df, name, sheet, warnings))
    except ParseError:
        raise
    except Exception as exc:
        raise ParseError(f"Could not open workbook {name}: {exc}") from exc

    if len(sheet_names) > 1:
        warnings.append(f"{name}: read {len(sheet_names)} sheets ({', '.join(sheet_names)})")

    return {
        "rows": rows,
        "headers": headers,
        "source": {
            "name":        name,
            "format":      suffix.lstrip("."),
            "encoding":    None,
            "delimiter":   None,
            "sheet_names": sheet_names,
            "rows":        len(rows),
        },
        "warnings": warnings,
    }


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_file(source: Source, *, data: Optional[bytes] = None) -> dict:
    """
    Load one spreadsheet into header-keyed rows.

    Args:
        source: Path to the file, or the original file name when ``data``
                carries the contents (browser uploads).
        data:   Raw file contents; read from ``source`` when omitted.

    Raises:
        UnsupportedFileError  for an extension outside ALL_FORMATS.
        MissingEngineError    when .xls is given without xlrd installed.
        ParseError            when the file is missing or unreadable.
    """
    path   = Path(source)
    name   = path.name
    suffix = path.suffix.lower()

    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise UnsupportedFileError(f"Unsupported format '{suffix or name}'. Supported: {supported}")

    if data is None:
        if not path.exists():
            raise ParseError(f"File not found: {path}")
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise ParseError(f"Could not read {path}: {exc}") from exc

    if suffix in TEXT_FORMATS:
        return _load_text(data, name, suffix)
    return _load_excel(data, name, suffix)


def load_files(sources: Iterable[Union[Source, tuple[str, bytes]]]) -> dict:
    """Load several files and flatten their rows in input order.

    Each item is a path, or a ``(name, bytes)`` pair for in-memory uploads.
    """
    rows: list[SheetRow] = []
    headers: list[str] = []
    summaries: list[dict] = []
    warnings: list[str] = []

    for item in sources:
        if isinstance(item, tuple):
            result = load_file(item[0], data=item[1])
        else:
            result = load_file(item)
        rows.extend(result["rows"])
        for header in result["headers"]:
            if header not in headers:
                headers.append(header)
        summaries.append(result["source"])
        warnings.extend(result["warnings"])

    return {
        "rows": rows,
        "headers": headers,
        "sources": summaries,
        "warnings": warnings,
    }


def parse_clipboard(text: Optional[str]) -> list[list[str]]:
    """Split pasted text into a matrix: lines, then tab-separated cells.

    CRLF and CR line endings are accepted; blank lines are ignored.
    """
    if not text:
        return []
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return [line.split("\t") for line in lines if line.strip()]


def parse_paste_block(text: Optional[str]) -> list[list[str]]:
    """Split text pasted onto the grid into a cell matrix.

    Unlike ``parse_clipboard`` every line is kept, blank ones included, so
    row offsets survive; only the single newline that ends a copied block
    is dropped.
    """
    if not text:
        return []
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    if text.endswith("\n"):
        text = text[:-1]
    return [line.split("\t") for line in text.split("\n")]


def has_header_keyword(cells: Iterable[Any], schema: EntitySchema) -> bool:
    for cell in cells:
        lowered = str(cell).lower()
        if any(keyword in lowered for keyword in schema.header_keywords):
            return True
    return False


def clipboard_rows(text: Optional[str], schema: EntitySchema) -> dict:
    """
    Turn pasted text into header-keyed rows for an import.

    The first line is used as the header row only when one of its cells holds
    a header keyword for the entity; there is no positional fallback.

    Raises:
        ClipboardEmptyError  when the text holds no non-blank line.
        HeaderNotFoundError  when the first line carries no header keyword.
    """
    matrix = parse_clipboard(text)
    if not matrix:
        raise ClipboardEmptyError("Clipboard is empty")

    header_cells = [cell.strip() for cell in matrix[0]]
    if not has_header_keyword(header_cells, schema):
        raise HeaderNotFoundError(
            "No headers detected. Copy the header row along with the data "
            f"(expected a column such as {', '.join(schema.header_keywords[:3])})."
        )

    warnings: list[str] = []
    rows: list[SheetRow] = []
    width = len(header_cells)
    for index, line in enumerate(matrix[1:], start=2):
        if len(line) > width:
            warnings.append(f"line {index}: {len(line) - width} cell(s) beyond the header were ignored")
        values = {}
        for position, header in enumerate(header_cells):
            if not header or header in values:
                continue
            values[header] = line[position] if position < len(line) else None
        if all(value is None or not str(value).strip() for value in values.values()):
            continue
        rows.append(SheetRow(source=CLIPBOARD_SOURCE, sheet=None, row_number=index, values=values))

    return {
        "rows": rows,
        "headers": [header for header in header_cells if header],
        "sources": [{
            "name":        CLIPBOARD_SOURCE,
            "format":      "tsv",
            "encoding":    None,
            "delimiter":   "\t",
            "sheet_names": None,
            "rows":        len(rows),
        }],
        "warnings": warnings,
    }
