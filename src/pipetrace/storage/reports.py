"""Persisted report snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pipetrace.metrics.aggregator import ReportView, report_view_from_dict
from pipetrace.storage.atomic import atomic_write_json, read_json


REPORT_SCHEMA = "report/v1"


def build_report_envelope(view: ReportView, run: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "schema": REPORT_SCHEMA,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "run": dict(run or {}),
        "report": view.to_dict(),
    }


def write_report(path: Path, view: ReportView, *, run: dict[str, Any] | None = None) -> Path:
    """Atomically persist `view` inside a versioned envelope."""

    return atomic_write_json(path, build_report_envelope(view, run))


def read_report(path: Path) -> tuple[ReportView, dict[str, Any]]:
    """Load a stored report; returns the view and the full envelope."""

    payload = read_json(path)
    if not isinstance(payload, dict):
        raise TypeError(f"Report payload must be a JSON object: {path}")
    schema = payload.get("schema")
    if schema != REPORT_SCHEMA:
        raise ValueError(f"Unsupported report schema {schema!r} in {path}")
    report = payload.get("report")
    if not isinstance(report, dict):
        raise TypeError(f"Report envelope has no 'report' object: {path}")
    return report_view_from_dict(report), payload
