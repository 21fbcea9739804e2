"""Deterministic replay of stage events on virtual time."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
import time
from typing import Iterable

from pipetrace.observability.logging import get_logger, log_event
from pipetrace.pipeline.clock import VirtualClock
from pipetrace.pipeline.engine import CorrelationEngine
from pipetrace.storage.journal import StageEvent


_LOGGER = get_logger("pipetrace.replay")

DROPPED = "dropped"


@dataclass(slots=True)
class ReplaySummary:
    events: int = 0
    sweeps: int = 0
    timed_out: int = 0
    results: Counter[str] = field(default_factory=Counter)
    first_ts: int | None = None
    last_ts: int | None = None
    wall_seconds: float = 0.0


def replay_events(
    engine: CorrelationEngine,
    events: Iterable[StageEvent],
    clock: VirtualClock,
    *,
    settle: bool = True,
) -> ReplaySummary:
    """Feed events to `engine` in delivery order, sweeping on virtual time.

    A sweep runs at every `sweep.interval_ms` boundary crossed by the
    delivery clock; idle gaps collapse to one sweep at the last boundary,
    which times out the same traces. With `settle=True` the clock finally
    moves past every deadline so no trace is left in flight.
    """

    ordered = sorted(events, key=lambda event: event.delivery_time)
    summary = ReplaySummary()
    started_perf = time.perf_counter()
    if not ordered:
        return summary

    interval = engine.config.sweep.interval_ms
    deadline = engine.config.sweep.deadline_per_stage_ms
    summary.first_ts = ordered[0].delivery_time
    next_sweep = summary.first_ts + interval

    for event in ordered:
        delivered = event.delivery_time
        if delivered >= next_sweep:
            boundary = next_sweep + ((delivered - next_sweep) // interval) * interval
            clock.set(boundary)
            summary.timed_out += engine.sweep(boundary)
            summary.sweeps += 1
            next_sweep = boundary + interval

        clock.set(delivered)
        result = engine.recorder.on_stage_arrival(event.trace_id, event.stage, event.ts)
        summary.results[DROPPED if result is None else result.value] += 1
        summary.events += 1
        summary.last_ts = delivered

    if settle and summary.last_ts is not None:
        final = max(clock.now_ms(), summary.last_ts) + deadline + 1
        clock.set(final)
        summary.timed_out += engine.sweep(final)
        summary.sweeps += 1

    summary.wall_seconds = time.perf_counter() - started_perf
    log_event(
        _LOGGER,
        "replay_finished",
        events=summary.events,
        sweeps=summary.sweeps,
        timed_out=summary.timed_out,
        results=dict(summary.results),
        wall_seconds=round(summary.wall_seconds, 3),
    )
    return summary
