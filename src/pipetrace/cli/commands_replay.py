"""`pipetrace replay` command."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
from pathlib import Path

from pipetrace.cli.commands_check import collect_expressions, threshold_payload
from pipetrace.config.loader import load_engine_config
from pipetrace.observability.logging import configure_logging
from pipetrace.pipeline.clock import VirtualClock
from pipetrace.pipeline.engine import CorrelationEngine
from pipetrace.pipeline.replay import replay_events
from pipetrace.storage.journal import iter_events
from pipetrace.storage.reports import write_report


@dataclass(slots=True)
class ReplayCommand:
    """Replay a JSONL stage-event journal through the engine."""

    events: Path
    config: str | None = None
    profile: str | None = None
    threshold: tuple[str, ...] = ()
    out: Path | None = None
    log_level: str = "WARNING"


def execute(command: ReplayCommand) -> None:
    if not command.events.exists():
        raise FileNotFoundError(f"Event journal not found: {command.events}")

    configure_logging(command.log_level, force=True)
    cfg = load_engine_config(command.config, command.profile)
    clock = VirtualClock()
    engine = CorrelationEngine(cfg, clock)
    summary = replay_events(engine, iter_events(command.events), clock)
    view = engine.report()

    run = {
        "source": str(command.events.resolve()),
        "replayed_at": datetime.now(timezone.utc).isoformat(),
        "profile": command.profile,
        "events": summary.events,
        "sweeps": summary.sweeps,
        "first_ts": summary.first_ts,
        "last_ts": summary.last_ts,
        "results": dict(summary.results),
    }
    rows, passed = threshold_payload(view, collect_expressions(command.threshold, command.profile))
    if command.out is not None:
        write_report(command.out, view, run=run)

    print(
        json.dumps(
            {"run": run, "report": view.to_dict(), "thresholds": rows, "passed": passed},
            indent=2,
            sort_keys=True,
        )
    )
    if not passed:
        raise SystemExit(1)
