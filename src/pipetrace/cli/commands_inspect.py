"""`pipetrace inspect` command."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path

from pipetrace.config.profiles import available_profiles
from pipetrace.storage.reports import read_report


@dataclass(slots=True)
class InspectCommand:
    """Print a stored report, or list built-in profiles when no report is given."""

    report: Path | None = None


def execute(command: InspectCommand) -> None:
    if command.report is None:
        payload = {
            name: {
                "description": spec.description,
                "deadline_per_stage_ms": spec.deadline_per_stage_ms,
                "sweep_interval_ms": spec.sweep_interval_ms,
                "thresholds": list(spec.thresholds),
            }
            for name, spec in sorted(available_profiles().items())
        }
        print(json.dumps({"profiles": payload}, indent=2, sort_keys=True))
        return

    if not command.report.exists():
        raise FileNotFoundError(f"Report not found: {command.report}")
    _view, envelope = read_report(command.report)
    print(json.dumps(envelope, indent=2, sort_keys=True))
