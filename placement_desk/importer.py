"""
importer.py - spreadsheet / clipboard rows -> normalised records -> store.

Stages:
    1. load      every sheet of every file (or pasted text) into header-keyed rows
    2. normalise each row through RowNormalizer; empty-identity rows are dropped
    3. enrich    fill unsourced fields from the master tables (optional)
    4. confirm   large imports go through a caller-supplied confirmation callback
    5. submit    sequential batches, one transactional RPC, or upsert batches

Nothing is written to the store before stage 5. Every failure is raised as a
distinct PlacementDeskError subclass; the caller decides how to report it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable, Optional, Sequence

from placement_desk import loader
from placement_desk.columns import ColumnLayout
from placement_desk.contracts import build_run_summary, wrap_summary
from placement_desk.errors import (
    BatchInsertError,
    ConfigError,
    ImportCancelled,
    NoValidRowsError,
    RemoteError,
)
from placement_desk.normalizer import RowNormalizer
from placement_desk.schema import EntitySchema, Record
from placement_desk.settings import DEFAULT_BATCH_SIZE, DEFAULT_CONFIRM_THRESHOLD

BATCH_SIZE = DEFAULT_BATCH_SIZE

MODE_BATCHED = "batched"
MODE_TRANSACTIONAL = "transactional"
MODE_UPSERT = "upsert"
MODE_DRY_RUN = "dry_run"

GUARANTEES = {
    MODE_BATCHED: "each batch is atomic; earlier batches stay committed if a later one fails",
    MODE_TRANSACTIONAL: "all rows committed or none",
    MODE_UPSERT: "each batch is atomic; existing rows are updated on the conflict key",
    MODE_DRY_RUN: "nothing submitted",
}

ConfirmCallback = Callable[[int, Sequence[str]], bool]
ProgressCallback = Callable[[int, int], None]


def match_key(value: Any) -> str:
    """Whitespace-collapsed value; case is kept because the store compares exactly."""
    return " ".join(str(value).split())


def batches(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[start:start + size] for start in range(0, len(items), size)]


@dataclass
class ImportPlan:
    schema: EntitySchema
    records: list[Record]
    dropped: int = 0
    sources: list[str] = field(default_factory=list)
    enriched: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    def payloads(self) -> list[dict[str, Any]]:
        return [record.to_payload(self.schema) for record in self.records]


@dataclass
class ImportResult:
    plan: ImportPlan
    mode: str
    inserted: int = 0
    batches: int = 0

    @property
    def guarantee(self) -> str:
        return GUARANTEES[self.mode]

    def to_summary(self) -> dict[str, Any]:
        plan = self.plan
        run_summary = build_run_summary(
            operation="import",
            entity=plan.schema.name,
            sources=plan.sources,
            status="dry_run" if self.mode == MODE_DRY_RUN else "ok",
            metrics={
                "prepared": plan.count,
                "inserted": self.inserted,
                "dropped": plan.dropped,
                "enriched": plan.enriched,
                "batches": self.batches,
            },
            warnings=plan.warnings,
        )
        return wrap_summary(
            "importer.summary",
            run_summary,
            mode=self.mode,
            guarantee=self.guarantee,
        )


class ImportPipeline:
    def __init__(
        self,
        store,
        schema: EntitySchema,
        columns: Optional[ColumnLayout] = None,
        *,
        batch_size: int = BATCH_SIZE,
        confirm_threshold: int = DEFAULT_CONFIRM_THRESHOLD,
        confirm: Optional[ConfirmCallback] = None,
        progress: Optional[ProgressCallback] = None,
        enrich: bool = True,
        transactional: bool = False,
        today: Optional[date] = None,
    ) -> None:
        if batch_size <= 0:
            raise ConfigError("batch_size must be positive")
        if transactional and schema.conflict_key:
            raise ConfigError(f"{schema.name} is imported by upsert; transactional mode does not apply")
        self.store = store
        self.schema = schema
        self.normalizer = RowNormalizer(schema, columns, today=today)
        self.batch_size = batch_size
        self.confirm_threshold = confirm_threshold
        self.confirm = confirm
        self.progress = progress
        self.enrich_enabled = enrich
        self.transactional = transactional

    # ── prepare ───────────────────────────────────────────────────────────

    def prepare_rows(
        self,
        rows: Iterable[loader.SheetRow],
        sources: Sequence[str] = (),
        warnings: Optional[list[str]] = None,
    ) -> ImportPlan:
        records, dropped = self.normalizer.normalize_rows(row.values for row in rows)
        warnings = list(warnings or [])
        if not records:
            raise NoValidRowsError(
                f"No valid {self.schema.title.lower()} found"
                + (f" ({dropped} row(s) had no {', '.join(self.schema.identity)})" if dropped else ""),
                dropped=dropped,
            )
        if dropped:
            warnings.append(f"Dropped {dropped} row(s) with an empty {' / '.join(self.schema.identity)}")
        plan = ImportPlan(
            schema=self.schema,
            records=records,
            dropped=dropped,
            sources=list(sources),
            warnings=warnings,
        )
        if self.schema.conflict_key:
            self._collapse_conflicts(plan)
        if self.enrich_enabled and self.schema.enrichment:
            if self.store is None:
                plan.warnings.append("Master-data enrichment skipped: no store configured")
            else:
                plan.enriched = self.enrich(plan.records)
        return plan

    def prepare_files(self, sources: Iterable[Any]) -> ImportPlan:
        loaded = loader.load_files(sources)
        names = [source["name"] for source in loaded["sources"]]
        return self.prepare_rows(loaded["rows"], names, loaded["warnings"])

    def prepare_clipboard(self, text: Optional[str]) -> ImportPlan:
        loaded = loader.clipboard_rows(text, self.schema)
        return self.prepare_rows(loaded["rows"], [loader.CLIPBOARD_SOURCE], loaded["warnings"])

    def _collapse_conflicts(self, plan: ImportPlan) -> None:
        # One upsert statement cannot touch the same conflict key twice.
        key = self.schema.conflict_key
        latest: dict[str, Record] = {}
        for record in plan.records:
            latest[match_key(record.values.get(key, ""))] = record
        if len(latest) < len(plan.records):
            plan.warnings.append(
                f"Collapsed {len(plan.records) - len(latest)} duplicate {key} row(s); the last one wins"
            )
            plan.records = list(latest.values())

    def enrich(self, records: list[Record]) -> int:
        """Fill unsourced or empty fields from master rows; returns records touched."""
        touched: set[int] = set()
        for source in self.schema.enrichment:
            values = {match_key(record.values.get(source.local_field, "")) for record in records}
            values.discard("")
            if not values:
                continue
            master_rows = self.store.select_in(source.table, source.remote_field, sorted(values))
            index = {match_key(row.get(source.remote_field, "")): row for row in master_rows}
            for position, record in enumerate(records):
                master = index.get(match_key(record.values.get(source.local_field, "")))
                if master is None:
                    continue
                for key in self.schema.keys:
                    incoming = master.get(key)
                    if incoming is None or incoming == "":
                        continue
                    current = record.values.get(key)
                    if key in record.sourced and current not in (None, ""):
                        continue
                    if current == incoming:
                        continue
                    record.values[key] = incoming
                    touched.add(position)
        return len(touched)

    # ── submit ────────────────────────────────────────────────────────────

    def needs_confirmation(self, plan: ImportPlan) -> bool:
        return plan.count > self.confirm_threshold

    def submit(self, plan: ImportPlan, *, dry_run: bool = False) -> ImportResult:
        if dry_run:
            return ImportResult(plan=plan, mode=MODE_DRY_RUN)

        if self.needs_confirmation(plan) and self.confirm is not None:
            if not self.confirm(plan.count, plan.sources):
                raise ImportCancelled(f"Import of {plan.count} row(s) cancelled")

        payloads = plan.payloads()
        if self.transactional:
            self.store.bulk_insert(self.schema.name, payloads)
            self._report(len(payloads), len(payloads))
            return ImportResult(plan=plan, mode=MODE_TRANSACTIONAL, inserted=len(payloads), batches=1)

        mode = MODE_UPSERT if self.schema.conflict_key else MODE_BATCHED
        chunks = batches(payloads, self.batch_size)
        total = len(chunks)
        committed = 0
        for number, chunk in enumerate(chunks, start=1):
            try:
                if mode == MODE_UPSERT:
                    self.store.upsert(self.schema.name, list(chunk), self.schema.conflict_key)
                else:
                    self.store.insert(self.schema.name, list(chunk))
            except RemoteError as exc:
                raise BatchInsertError(
                    f"Batch {number}/{total} failed after {committed} row(s) were committed: {exc}",
                    committed=committed,
                    failed_batch=number,
                    total_batches=total,
                    status=exc.status,
                ) from exc
            committed += len(chunk)
            self._report(committed, len(payloads))
        return ImportResult(plan=plan, mode=mode, inserted=committed, batches=total)

    def _report(self, done: int, total: int) -> None:
        if self.progress is not None:
            self.progress(done, total)

    # ── one-shot helpers ──────────────────────────────────────────────────

    def import_files(self, sources: Iterable[Any], *, dry_run: bool = False) -> ImportResult:
        return self.submit(self.prepare_files(sources), dry_run=dry_run)

    def import_clipboard(self, text: Optional[str], *, dry_run: bool = False) -> ImportResult:
        return self.submit(self.prepare_clipboard(text), dry_run=dry_run)


def expected_batches(count: int, batch_size: int = BATCH_SIZE) -> int:
    return math.ceil(count / batch_size) if count else 0
