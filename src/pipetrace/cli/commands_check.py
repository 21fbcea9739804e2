"""`pipetrace check` command."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any, Sequence

from pipetrace.config.profiles import resolve_profile
from pipetrace.metrics.aggregator import ReportView
from pipetrace.metrics.thresholds import all_passed, evaluate_thresholds
from pipetrace.storage.reports import read_report


@dataclass(slots=True)
class CheckCommand:
    """Evaluate latency and completion thresholds against a stored report."""

    report: Path
    threshold: tuple[str, ...] = ()
    profile: str | None = None


def threshold_payload(
    view: ReportView,
    expressions: Sequence[str],
) -> tuple[list[dict[str, Any]], bool]:
    """Evaluate `expressions` and return JSON-ready rows plus the overall verdict."""

    results = evaluate_thresholds(view, expressions)
    return [result.to_dict() for result in results], all_passed(results)


def collect_expressions(explicit: Sequence[str], profile: str | None) -> list[str]:
    expressions = list(explicit)
    if profile is not None:
        expressions.extend(resolve_profile(profile).thresholds)
    return expressions


def execute(command: CheckCommand) -> None:
    expressions = collect_expressions(command.threshold, command.profile)
    if not expressions:
        raise ValueError("Provide at least one --threshold or a --profile.")

    view, envelope = read_report(command.report)
    rows, passed = threshold_payload(view, expressions)
    payload = {
        "report": str(command.report.resolve()),
        "run": envelope.get("run", {}),
        "passed": passed,
        "thresholds": rows,
    }
    print(json.dumps(payload, indent=2, sort_keys=True))
    if not passed:
        raise SystemExit(1)
