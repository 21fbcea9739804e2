"""`pipetrace simulate` command."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import json
from pathlib import Path
from uuid import uuid4

from pipetrace.cli.commands_check import collect_expressions, threshold_payload
from pipetrace.config.loader import load_engine_config
from pipetrace.config.profiles import apply_profile_load
from pipetrace.config.schema import SyntheticLoadConfig
from pipetrace.observability.logging import configure_logging
from pipetrace.pipeline.clock import VirtualClock
from pipetrace.pipeline.engine import CorrelationEngine
from pipetrace.pipeline.replay import replay_events
from pipetrace.simulate.synthetic import generate_events, group_by_trace
from pipetrace.storage.journal import append_events
from pipetrace.storage.reports import write_report
from pipetrace.workers.pool import dispatch_concurrently


@dataclass(slots=True)
class SimulateCommand:
    """Generate synthetic stage events and measure them through the engine."""

    traces: int = 1000
    profile: str | None = None
    config: str | None = None
    seed: int | None = 0
    hop_median_ms: float = 40.0
    hop_sigma: float = 0.5
    drop_rate: float | None = None
    duplicate_rate: float = 0.0
    concurrent: bool = False
    workers: int | None = None
    threshold: tuple[str, ...] = ()
    events_out: Path | None = None
    out: Path | None = None
    log_level: str = "WARNING"


def execute(command: SimulateCommand) -> None:
    configure_logging(command.log_level, force=True)
    cfg = load_engine_config(command.config, command.profile)
    load = SyntheticLoadConfig(
        traces=command.traces,
        hop_median_ms=command.hop_median_ms,
        hop_sigma=command.hop_sigma,
        duplicate_rate=command.duplicate_rate,
        seed=command.seed,
    )
    if command.profile is not None:
        apply_profile_load(load, command.profile)
    if command.drop_rate is not None:
        load.drop_rate = command.drop_rate

    run_id = uuid4().hex[:12]
    clock = VirtualClock()
    engine = CorrelationEngine(cfg, clock)
    events = generate_events(engine.stages, load, run_id=run_id)
    if command.events_out is not None:
        append_events(command.events_out, events)

    started_at = datetime.now(timezone.utc).isoformat()
    if command.concurrent:
        results = dispatch_concurrently(
            engine.recorder,
            group_by_trace(events),
            workers=command.workers,
        )
        last = max((event.ts for event in events), default=0)
        engine.sweep(last + cfg.sweep.deadline_per_stage_ms + 1)
        dispatch = {"mode": "concurrent", "results": dict(results)}
    else:
        summary = replay_events(engine, events, clock)
        dispatch = {
            "mode": "replay",
            "results": dict(summary.results),
            "sweeps": summary.sweeps,
        }

    view = engine.report()
    run = {
        "run_id": run_id,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "profile": command.profile,
        "events": len(events),
        "load": asdict(load),
        "dispatch": dispatch,
    }
    expressions = collect_expressions(command.threshold, command.profile)
    rows, passed = threshold_payload(view, expressions)
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
