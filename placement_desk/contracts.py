"""Shared versioned contracts for placement-desk run summaries."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from placement_desk import __version__

TOOL = "placement-desk"

CONTRACT_VERSIONS = {
    "importer.summary": "1.0.0",
    "grid.save_summary": "1.0.0",
    "exporter.summary": "1.0.0",
    "stats.summary": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    operation: str,
    entity: str,
    sources: Iterable[Any] = (),
    status: str = "ok",
    output_path: Any = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": TOOL,
        "operation": operation,
        "entity": entity,
        "status": status,
        "generated_at": utc_now_iso(),
        "sources": [str(source) for source in sources],
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def wrap_summary(name: str, run_summary: dict[str, Any], **payload: Any) -> dict[str, Any]:
    """Attach contract metadata to a run summary and any extra top-level fields."""
    contract = build_contract(name)
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": __version__,
        "run_summary": run_summary,
        **payload,
    }
