from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from placement_desk import __version__ as TOOL_VERSION
from placement_desk.columns import ColumnLayout, load_layout, save_layout
from placement_desk.errors import (
    BatchInsertError,
    ImportCancelled,
    NoValidRowsError,
    ParseError,
    PlacementDeskError,
    RemoteError,
)
from placement_desk.exporter import default_filename, export_by_category, export_records
from placement_desk.filters import FilterSet, apply_filters
from placement_desk.importer import ImportPipeline
from placement_desk.schema import ENTITIES, EntitySchema, Record, get_entity
from placement_desk.session import LocalState
from placement_desk.settings import Settings
from placement_desk.stats import placement_stats, require_stats_fields
from placement_desk.store import RestStore

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_NO_VALID_ROWS = 3
EXIT_REMOTE_FAILED = 4
EXIT_CANCELLED = 5
EXIT_PARTIAL = 6

PREVIEW_ROWS = 5


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class PlacementDeskArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ParseError):
        return EXIT_PARSE_FAILED
    if isinstance(exc, NoValidRowsError):
        return EXIT_NO_VALID_ROWS
    if isinstance(exc, ImportCancelled):
        return EXIT_CANCELLED
    if isinstance(exc, BatchInsertError):
        return EXIT_PARTIAL if exc.committed else EXIT_REMOTE_FAILED
    if isinstance(exc, RemoteError):
        return EXIT_REMOTE_FAILED
    return EXIT_COMMAND_ERROR


def add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--entity", default="student_placements", choices=sorted(ENTITIES), help="Target table")
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")


def add_import_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt for large imports")
    parser.add_argument("--dry-run", action="store_true", help="Parse and normalise without submitting")
    parser.add_argument("--transactional", action="store_true", help="Submit all rows in one all-or-nothing call")
    parser.add_argument("--no-enrich", dest="enrich", action="store_false", help="Do not fill fields from master tables")


def build_parser() -> argparse.ArgumentParser:
    parser = PlacementDeskArgumentParser(prog="placement-desk")
    subparsers = parser.add_subparsers(dest="command", required=True, parser_class=PlacementDeskArgumentParser)

    import_cmd = subparsers.add_parser("import", help="Import rows from spreadsheet files.")
    import_cmd.add_argument("inputs", nargs="+", help="Input .xlsx/.xls/.xlsm/.csv/.tsv/.txt files")
    add_common_flags(import_cmd)
    add_import_flags(import_cmd)

    paste = subparsers.add_parser("paste", help="Import tab-separated clipboard text.")
    paste.add_argument("--input", help="File holding the pasted text (default: stdin)")
    add_common_flags(paste)
    add_import_flags(paste)

    export = subparsers.add_parser("export", help="Export records to .xlsx.")
    export.add_argument("-o", "--out", dest="output", help="Output .xlsx path")
    export.add_argument("--filter", dest="filters", action="append", default=[], metavar="KEY=VALUE", help="Column filter (repeatable)")
    export.add_argument("--search", default="", help="Search text across visible columns")
    export.add_argument("--by-category", action="store_true", help="One sheet per category plus All Records")
    export.add_argument("--no-flatten", dest="flatten", action="store_false", help="Leave extra details out of the export")
    add_common_flags(export)

    stats = subparsers.add_parser("stats", help="Placement outcome counts per department and year.")
    stats.add_argument("--filter", dest="filters", action="append", default=[], metavar="KEY=VALUE", help="Column filter (repeatable)")
    stats.add_argument("--search", default="", help="Search text across visible columns")
    stats.add_argument("--department", help="Only count this department")
    add_common_flags(stats)

    columns = subparsers.add_parser("columns", help="Inspect or change the saved column layout.")
    columns_sub = columns.add_subparsers(dest="columns_command", required=True, parser_class=PlacementDeskArgumentParser)
    columns_list = columns_sub.add_parser("list", help="List columns in display order")
    add_common_flags(columns_list)
    columns_add = columns_sub.add_parser("add", help="Add a custom column")
    columns_add.add_argument("label")
    add_common_flags(columns_add)
    columns_rename = columns_sub.add_parser("rename", help="Change a column label")
    columns_rename.add_argument("key")
    columns_rename.add_argument("label")
    add_common_flags(columns_rename)
    for name, help_text in (("hide", "Hide a column"), ("show", "Unhide a column")):
        sub = columns_sub.add_parser(name, help=help_text)
        sub.add_argument("key")
        add_common_flags(sub)

    subparsers.add_parser("version", help="Print version")
    return parser


# ── shared plumbing ───────────────────────────────────────────────────────────

def load_settings() -> Settings:
    return Settings.from_env()


def open_store(settings: Settings) -> RestStore:
    return RestStore.from_settings(settings)


def parse_filters(raw_filters: Sequence[str], layout: ColumnLayout) -> FilterSet:
    filters = FilterSet()
    for raw in raw_filters:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise CliError(f"--filter expects KEY=VALUE, got {raw!r}")
        key = key.strip()
        if key not in layout.keys:
            raise CliError(f"Unknown column '{key}'. Known: {', '.join(layout.keys)}")
        filters.add(key, value, layout.get(key).label)
    return filters


def confirm_on_tty(count: int, sources: Sequence[str]) -> bool:
    if not sys.stdin.isatty():
        eprint(f"Refusing to import {count} rows without confirmation; pass --yes.")
        return False
    try:
        answer = input(f"Import {count} rows from {', '.join(sources)}? [y/N] ").strip().lower()
    except (EOFError, KeyboardInterrupt):
        eprint("")
        return False
    return answer in ("y", "yes")


def render_import_text(summary: dict[str, Any], schema: EntitySchema) -> str:
    metrics = summary["run_summary"]["metrics"]
    lines = []
    if summary["mode"] == "dry_run":
        lines.append(f"Dry run: {metrics['prepared']} {schema.title.lower()} ready to import")
    else:
        lines.append(
            f"Imported {metrics['inserted']} {schema.title.lower()} "
            f"in {metrics['batches']} batch(es) [{summary['mode']}]"
        )
    if metrics["dropped"]:
        lines.append(f"  dropped rows: {metrics['dropped']}")
    if metrics["enriched"]:
        lines.append(f"  enriched from master data: {metrics['enriched']}")
    for warning in summary["run_summary"]["warnings"]:
        lines.append(f"  warning: {warning}")
    return "\n".join(lines)


def run_pipeline(args: argparse.Namespace, prepare) -> int:
    schema = get_entity(args.entity)
    settings = load_settings()
    store = None if args.dry_run else open_store(settings)
    state = LocalState.in_dir(settings.state_dir)
    layout = load_layout(state, schema)

    def progress(done: int, total: int) -> None:
        emit_human(f"  committed {done}/{total}", quiet=args.quiet or args.json)

    pipeline = ImportPipeline(
        store,
        schema,
        layout,
        batch_size=settings.batch_size,
        confirm_threshold=settings.confirm_threshold,
        confirm=None if args.yes else confirm_on_tty,
        progress=progress,
        enrich=args.enrich,
        transactional=args.transactional,
    )
    try:
        plan = prepare(pipeline)
        result = pipeline.submit(plan, dry_run=args.dry_run)
    finally:
        if store is not None:
            store.close()

    summary = result.to_summary()
    if args.dry_run:
        summary["preview"] = [record.to_payload(schema) for record in plan.records[:PREVIEW_ROWS]]
    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(render_import_text(summary, schema), quiet=args.quiet)
    return EXIT_SUCCESS


def run_import(args: argparse.Namespace) -> int:
    for raw in args.inputs:
        if not Path(raw).exists():
            raise CliError(f"File not found: {raw}", EXIT_COMMAND_ERROR)
    return run_pipeline(args, lambda pipeline: pipeline.prepare_files([Path(raw) for raw in args.inputs]))


def run_paste(args: argparse.Namespace) -> int:
    if args.input:
        try:
            text = Path(args.input).read_text(encoding="utf-8")
        except OSError as exc:
            raise CliError(f"Could not read {args.input}: {exc}", EXIT_COMMAND_ERROR) from exc
    else:
        text = sys.stdin.read()
    return run_pipeline(args, lambda pipeline: pipeline.prepare_clipboard(text))


def fetch_records(store: RestStore, schema: EntitySchema) -> list[Record]:
    rows = store.select_all(schema.name, order_by=schema.order_by, descending=schema.order_by == "created_at")
    return [Record.from_payload(schema, row) for row in rows]


def run_export(args: argparse.Namespace) -> int:
    schema = get_entity(args.entity)
    settings = load_settings()
    layout = load_layout(LocalState.in_dir(settings.state_dir), schema)
    filters = parse_filters(args.filters, layout)

    store = open_store(settings)
    try:
        records = fetch_records(store, schema)
    finally:
        store.close()

    view = apply_filters(records, filters, args.search, layout)
    output = Path(args.output) if args.output else Path.cwd() / default_filename(args.by_category)
    if args.by_category:
        summary = export_by_category(view, layout, output, flatten_other=args.flatten)
    else:
        summary = export_records(view, layout, output, flatten_other=args.flatten)

    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(
            f"Exported {len(view)} of {len(records)} records to {output} "
            f"({', '.join(summary['sheets'])})",
            quiet=args.quiet,
        )
    return EXIT_SUCCESS


def render_stats_text(summary: dict[str, Any]) -> str:
    totals = summary["totals"]
    lines = [
        f"Appeared {totals['appeared']}, selected {totals['selected']} ({totals['placement_rate']}%), "
        f"PPO {totals['ppo']}, companies {totals['companies']}",
        f"{'Department':<16} {'Appeared':>8} {'Placed':>7} {'Intern':>7} {'Both':>5} {'Rate':>5}",
    ]
    for entry in summary["departments"]:
        lines.append(
            f"{entry['department']:<16} {entry['appeared']:>8} {entry['placed']:>7} "
            f"{entry['internship']:>7} {entry['both']:>5} {entry['placement_rate']:>4}%"
        )
    if totals["years"]:
        lines.append("By year: " + ", ".join(f"{item['year']}: {item['count']}" for item in totals["years"]))
    return "\n".join(lines)


def run_stats(args: argparse.Namespace) -> int:
    schema = get_entity(args.entity)
    settings = load_settings()
    layout = load_layout(LocalState.in_dir(settings.state_dir), schema)
    filters = parse_filters(args.filters, layout)
    require_stats_fields(schema)

    store = open_store(settings)
    try:
        records = fetch_records(store, schema)
    finally:
        store.close()

    view = apply_filters(records, filters, args.search, layout)
    summary = placement_stats(view, schema, department=args.department)
    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(render_stats_text(summary), quiet=args.quiet)
    return EXIT_SUCCESS


def render_columns_text(layout: ColumnLayout) -> str:
    lines = []
    for column in layout:
        flags = []
        if column.is_custom:
            flags.append("custom")
        if not column.visible:
            flags.append("hidden")
        suffix = f"  ({', '.join(flags)})" if flags else ""
        lines.append(f"{column.key:<28} {column.label}{suffix}")
    return "\n".join(lines)


def run_columns(args: argparse.Namespace) -> int:
    schema = get_entity(args.entity)
    state = LocalState.in_dir(load_settings().state_dir)
    layout = load_layout(state, schema)

    command = args.columns_command
    if command == "add":
        column = layout.add_custom(args.label)
        emit_human(f"Added column '{column.label}'", quiet=args.quiet or args.json)
    elif command == "rename":
        layout.rename(args.key, args.label)
        emit_human(f"Renamed {args.key} to '{args.label}'", quiet=args.quiet or args.json)
    elif command == "hide":
        layout.hide(args.key)
        emit_human(f"Hid {args.key}", quiet=args.quiet or args.json)
    elif command == "show":
        layout.show(args.key)
        emit_human(f"Showing {args.key}", quiet=args.quiet or args.json)
    if command != "list":
        save_layout(state, layout)

    if args.json:
        maybe_emit_json_stdout({"entity": schema.name, "columns": layout.to_json()}, True)
    elif command == "list":
        emit_human(render_columns_text(layout), quiet=args.quiet)
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: Optional[list[str]] = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "import":
            return run_import(args)
        if args.command == "paste":
            return run_paste(args)
        if args.command == "export":
            return run_export(args)
        if args.command == "stats":
            return run_stats(args)
        if args.command == "columns":
            return run_columns(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except (CliError, PlacementDeskError) as exc:
        eprint(str(exc))
        return classify_exception(exc)


if __name__ == "__main__":
    raise SystemExit(main())
