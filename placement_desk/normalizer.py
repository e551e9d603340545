#!/usr/bin/env python3
"""
normalizer.py - maps arbitrary spreadsheet headers onto an entity schema.

Every input row is a mapping of header -> cell value. Headers are resolved to
schema fields through an ordered matcher pipeline:

    1. exact match against column labels/keys
    2. exact match against the static alias table
    3. substring containment in either direction (longest known key first)

Values are then coerced by field kind (text, number, date). Nothing here
raises on bad data; unusable rows come back as empty records and the caller
drops them.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

import pandas as pd

from placement_desk.columns import ColumnLayout, canonical_text
from placement_desk.schema import DATE, NOISE_HEADERS, NUMBER, EntitySchema, Record

# 1900 date system: serial 25569 is 1970-01-01, so day zero is 1899-12-30.
EXCEL_EPOCH = datetime(1899, 12, 30)
EXCEL_SERIAL_MIN = 1
EXCEL_SERIAL_MAX = 2958465
MIN_SUBSTRING_LENGTH = 3

BANNER_RE = re.compile(
    r"\b(placement\s+(records?|details|report|statistics|drive)|list\s+of\s+(students|companies)|"
    r"department\s+of|academic\s+year|student\s+details)\b",
    re.IGNORECASE,
)
MULTI_DATE_RE = re.compile(r"&|\band\b|,")
DAY_FIRST_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ISO_DATETIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]")
SENTINEL_NULLS = {"", "na", "n/a", "none", "null", "nil", "nan", "-"}


def normalize_scalar(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, pd.Timestamp):
        if value.tzinfo is not None:
            value = value.tz_convert(None)
        return value.to_pydatetime()
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if isinstance(value, str):
        return value.replace("\ufeff", "")
    return value


def coerce_text(value: Any) -> str:
    normalized = normalize_scalar(value)
    if normalized is None:
        return ""
    if isinstance(normalized, bool):
        return str(normalized)
    if isinstance(normalized, float) and normalized.is_integer():
        return str(int(normalized))
    if isinstance(normalized, datetime):
        if normalized.time() == datetime.min.time():
            return normalized.strftime("%Y-%m-%d")
        return normalized.isoformat(sep=" ")
    return str(normalized).strip()


def maybe_parse_number(value: Any) -> Optional[float]:
    normalized = normalize_scalar(value)
    if normalized is None or isinstance(normalized, bool):
        return None
    if isinstance(normalized, (int, float)):
        return float(normalized)
    text = str(normalized).strip()
    if not text or text.lower() in SENTINEL_NULLS:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()

    text = text.replace(" ", "")
    text = re.sub(r"(?i)^(rs\.?|inr)", "", text)
    text = re.sub(r"(?i)(lpa|inr|/-|pm|pa)$", "", text)
    text = text.replace("₹", "").replace("$", "").replace(",", "")

    if not re.fullmatch(r"[+-]?\d+(?:\.\d+)?", text):
        return None
    number = float(text)
    return -number if negative else number


def coerce_number(value: Any, default: Any = 0) -> Any:
    number = maybe_parse_number(value)
    if number is None:
        return default
    if number.is_integer():
        return int(number)
    return number


def excel_serial_to_date(serial: float) -> date:
    return (EXCEL_EPOCH + timedelta(days=float(serial))).date()


def coerce_date(value: Any) -> str:
    """Return ``YYYY-MM-DD`` when the value reads as a date, else the raw text."""
    normalized = normalize_scalar(value)
    if normalized is None:
        return ""
    if isinstance(normalized, datetime):
        return normalized.strftime("%Y-%m-%d")
    if isinstance(normalized, date):
        return normalized.isoformat()
    if isinstance(normalized, (int, float)) and not isinstance(normalized, bool):
        if EXCEL_SERIAL_MIN <= normalized <= EXCEL_SERIAL_MAX:
            return excel_serial_to_date(normalized).isoformat()
        return coerce_text(normalized)

    text = str(normalized).strip()
    if not text or text.lower() in SENTINEL_NULLS:
        return ""
    if ISO_DATE_RE.match(text):
        return text
    iso = ISO_DATETIME_RE.match(text)
    if iso:
        return iso.group(1)
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        serial = float(text)
        if EXCEL_SERIAL_MIN <= serial <= EXCEL_SERIAL_MAX:
            return excel_serial_to_date(serial).isoformat()
        return text
    # Ranges and lists of dates ("12 & 13 Jan") stay as written.
    if MULTI_DATE_RE.search(text) or len(text.split()) > 3:
        return text

    day_first = DAY_FIRST_RE.match(text)
    if day_first:
        day, month, year = (int(part) for part in day_first.groups())
        if year < 100:
            year += 2000
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            try:
                return date(year, day, month).isoformat()
            except ValueError:
                return text

    parsed = pd.to_datetime(text, errors="coerce", dayfirst=True)
    if pd.isna(parsed):
        return text
    return parsed.strftime("%Y-%m-%d")


class FieldMap:
    """Header -> field lookup for one import.

    Column-derived entries are registered before aliases and are never
    overridden by them.
    """

    def __init__(self, schema: EntitySchema, columns: Optional[ColumnLayout] = None) -> None:
        self.schema = schema
        self.columns = columns if columns is not None else ColumnLayout(schema)
        self.column_lookup: dict[str, str] = {}
        for column in self.columns:
            for candidate in (column.label, column.key):
                normalized = canonical_text(candidate)
                if normalized:
                    self.column_lookup.setdefault(normalized, column.key)
        self.alias_lookup: dict[str, str] = {
            alias: target
            for alias, target in schema.aliases.items()
            if alias not in self.column_lookup and target in self.columns.keys
        }
        combined = list(self.column_lookup.items()) + list(self.alias_lookup.items())
        self._substring_candidates = sorted(
            (item for item in combined if len(item[0]) >= MIN_SUBSTRING_LENGTH),
            key=lambda item: len(item[0]),
            reverse=True,
        )
        self.matchers: list[Callable[[str], Optional[str]]] = [
            self.match_column,
            self.match_alias,
            self.match_substring,
        ]

    def match_column(self, normalized: str) -> Optional[str]:
        return self.column_lookup.get(normalized)

    def match_alias(self, normalized: str) -> Optional[str]:
        return self.alias_lookup.get(normalized)

    def match_substring(self, normalized: str) -> Optional[str]:
        if len(normalized) < MIN_SUBSTRING_LENGTH:
            return None
        for known, target in self._substring_candidates:
            if known in normalized or normalized in known:
                return target
        return None

    def resolve(self, header: Any) -> Optional[str]:
        normalized = canonical_text(header)
        if not normalized or normalized in NOISE_HEADERS:
            return None
        for matcher in self.matchers:
            target = matcher(normalized)
            if target is not None:
                return target
        return None

    def mapping_for(self, headers: Iterable[Any]) -> dict[str, str]:
        resolved = {}
        for header in headers:
            target = self.resolve(header)
            if target is not None:
                resolved[str(header)] = target
        return resolved


class RowNormalizer:
    def __init__(
        self,
        schema: EntitySchema,
        columns: Optional[ColumnLayout] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.schema = schema
        self.field_map = FieldMap(schema, columns)
        self.columns = self.field_map.columns
        self.today = today or date.today()

    def coerce(self, key: str, value: Any) -> Any:
        spec = self.schema.spec_for(key)
        if spec is None:
            return coerce_text(value)
        if spec.kind == NUMBER:
            return coerce_number(value, self.schema.default_value(key, self.today))
        if spec.kind == DATE:
            return coerce_date(value)
        text = coerce_text(value)
        mapping = self.schema.value_maps.get(key)
        if mapping:
            return mapping.get(text.lower(), text)
        return text

    def is_banner(self, record: Record) -> bool:
        # Title rows carry their phrase in one cell and nothing else.
        title_only = not (record.sourced - set(self.schema.identity)) and not record.other_details
        for key in self.schema.identity:
            value = str(record.values.get(key, ""))
            if title_only and BANNER_RE.search(value):
                return True
            # A repeated header row maps its own label back onto the field.
            if value and self.field_map.resolve(value) == key and canonical_text(value) in self.field_map.column_lookup:
                return True
        return False

    def normalize(self, row: Mapping[Any, Any]) -> Record:
        record = Record()
        for header, raw in row.items():
            key = self.field_map.resolve(header)
            if key is None:
                continue
            column = self.columns.get(key)
            if column.is_custom:
                if record.other_details.get(key):
                    continue
                text = coerce_text(raw)
                if text:
                    record.other_details[key] = text
                continue
            if key in record.sourced:
                continue
            if normalize_scalar(raw) is None or coerce_text(raw) == "":
                continue
            record.values[key] = self.coerce(key, raw)
            record.sourced.add(key)

        if any(not str(record.values.get(key, "")).strip() for key in self.schema.identity):
            return Record()
        if self.is_banner(record):
            return Record()

        for spec in self.schema.fields:
            if spec.key not in record.values:
                record.values[spec.key] = self.schema.default_value(spec.key, self.today)
        return record

    def normalize_rows(self, rows: Iterable[Mapping[Any, Any]]) -> tuple[list[Record], int]:
        records: list[Record] = []
        dropped = 0
        for row in rows:
            record = self.normalize(row)
            if record.is_empty():
                dropped += 1
            else:
                records.append(record)
        return records, dropped
