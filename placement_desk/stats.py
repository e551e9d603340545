"""
stats.py - placement outcome counts over student placement records.

Offer types are matched case-insensitively by substring, each marker on its
own, so one record can count under more than one outcome:

    placed      "placed", "on campus", "off campus"
    internship  "internship"
    both        "both"

Selected students are placed + both; PPO offers are internship + both. Years
come from the join date; records without a readable one count as "Unknown".
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import pandas as pd

from placement_desk.contracts import build_run_summary, wrap_summary
from placement_desk.errors import ConfigError
from placement_desk.schema import EntitySchema, Record

PLACED_MARKERS = ("placed", "on campus", "off campus")
INTERNSHIP_MARKER = "internship"
BOTH_MARKER = "both"
UNASSIGNED = "Unassigned"
UNKNOWN_YEAR = "Unknown"
REQUIRED_FIELDS = ("offer_type", "department")


def year_of(value: Any) -> str:
    text = " ".join(str(value or "").split())
    if not text:
        return UNKNOWN_YEAR
    if len(text) >= 4 and text[:4].isdigit() and (len(text) == 4 or text[4] == "-"):
        return text[:4]
    parsed = pd.to_datetime(text, errors="coerce", dayfirst=True)
    if pd.isna(parsed):
        return UNKNOWN_YEAR
    return str(parsed.year)


def department_of(record: Record) -> str:
    return " ".join(str(record.values.get("department") or "").split()) or UNASSIGNED


@dataclass
class OutcomeCounts:
    appeared: int = 0
    placed: int = 0
    internship: int = 0
    both: int = 0
    companies: set[str] = field(default_factory=set)
    years: Counter = field(default_factory=Counter)

    @property
    def selected(self) -> int:
        return self.placed + self.both

    @property
    def ppo(self) -> int:
        return self.internship + self.both

    @property
    def placement_rate(self) -> int:
        if not self.appeared:
            return 0
        return round(self.selected / self.appeared * 100)

    def add(self, record: Record) -> None:
        offer = str(record.values.get("offer_type") or "").lower()
        self.appeared += 1
        if any(marker in offer for marker in PLACED_MARKERS):
            self.placed += 1
        if INTERNSHIP_MARKER in offer:
            self.internship += 1
        if BOTH_MARKER in offer:
            self.both += 1
        company = " ".join(str(record.values.get("company_name") or "").split()).lower()
        if company:
            self.companies.add(company)
        self.years[year_of(record.values.get("join_date"))] += 1

    def to_json(self) -> dict[str, Any]:
        return {
            "appeared": self.appeared,
            "placed": self.placed,
            "internship": self.internship,
            "both": self.both,
            "selected": self.selected,
            "ppo": self.ppo,
            "placement_rate": self.placement_rate,
            "companies": len(self.companies),
            "years": [{"year": year, "count": count} for year, count in sorted(self.years.items())],
        }


def require_stats_fields(schema: EntitySchema) -> None:
    missing = [key for key in REQUIRED_FIELDS if key not in schema.keys]
    if missing:
        raise ConfigError(f"{schema.name} has no {', '.join(missing)} field; statistics need student placements")


def _department_order(name: str) -> tuple[bool, str]:
    return (name == UNASSIGNED, name.lower())


def placement_stats(
    records: Iterable[Record],
    schema: EntitySchema,
    *,
    department: Optional[str] = None,
) -> dict[str, Any]:
    """Totals plus a per-department breakdown, wrapped as ``stats.summary``."""
    require_stats_fields(schema)
    wanted = " ".join(department.split()).lower() if department else ""
    totals = OutcomeCounts()
    by_department: dict[str, OutcomeCounts] = {}
    for record in records:
        name = department_of(record)
        if wanted and name.lower() != wanted:
            continue
        totals.add(record)
        by_department.setdefault(name, OutcomeCounts()).add(record)

    departments = []
    for name in sorted(by_department, key=_department_order):
        entry = by_department[name].to_json()
        entry["department"] = name
        departments.append(entry)

    run_summary = build_run_summary(
        operation="stats",
        entity=schema.name,
        metrics={"records": totals.appeared, "departments": len(departments)},
    )
    return wrap_summary(
        "stats.summary",
        run_summary,
        department=department or None,
        totals=totals.to_json(),
        departments=departments,
    )
