"""Synthetic stage events for a multi-hop pipeline.

Each record enters the first stage at a fixed rate and spends a lognormal
latency on every hop. A hop can drop the record (it never reaches any later
stage), deliver its event twice, or deliver it late by up to
`delivery_jitter_ms`, which is what produces out-of-order arrivals.
"""

from __future__ import annotations

import math

import numpy as np

from pipetrace.config.schema import SyntheticLoadConfig
from pipetrace.pipeline.stage import StageDefinition
from pipetrace.storage.journal import StageEvent


def _validate(load: SyntheticLoadConfig) -> None:
    if load.traces < 0:
        raise ValueError(f"traces must be >= 0, got {load.traces}")
    if load.rate_per_sec <= 0:
        raise ValueError(f"rate_per_sec must be > 0, got {load.rate_per_sec}")
    if load.hop_median_ms <= 0:
        raise ValueError(f"hop_median_ms must be > 0, got {load.hop_median_ms}")
    if load.hop_sigma < 0:
        raise ValueError(f"hop_sigma must be >= 0, got {load.hop_sigma}")
    for name in ("drop_rate", "duplicate_rate"):
        value = getattr(load, name)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be within [0, 1], got {value}")
    if load.delivery_jitter_ms < 0:
        raise ValueError(f"delivery_jitter_ms must be >= 0, got {load.delivery_jitter_ms}")


def trace_id_for(index: int, run_id: str = "syn") -> str:
    return f"{run_id}-{index:08d}"


def generate_events(
    stages: StageDefinition,
    load: SyntheticLoadConfig,
    *,
    run_id: str = "syn",
    start_ms: int = 0,
) -> list[StageEvent]:
    """Return every generated event, sorted by delivery time."""

    _validate(load)
    n = load.traces
    hops = len(stages) - 1
    if n == 0:
        return []

    rng = np.random.default_rng(load.seed)
    spacing_ms = 1000.0 / load.rate_per_sec
    ingest_at = start_ms + np.floor(np.arange(n) * spacing_ms).astype(np.int64)

    latencies = rng.lognormal(mean=math.log(load.hop_median_ms), sigma=load.hop_sigma, size=(n, hops))
    offsets = np.concatenate(
        [np.zeros((n, 1), dtype=np.int64), np.cumsum(np.rint(latencies).astype(np.int64), axis=1)],
        axis=1,
    )
    arrival = ingest_at[:, None] + offsets

    # A record dropped on hop h never shows up at stage h+1 or later.
    dropped = rng.random((n, hops)) < load.drop_rate
    reached = np.concatenate(
        [np.ones((n, 1), dtype=bool), np.cumprod(~dropped, axis=1).astype(bool)],
        axis=1,
    )
    jitter = (
        rng.integers(0, load.delivery_jitter_ms + 1, size=arrival.shape)
        if load.delivery_jitter_ms
        else np.zeros(arrival.shape, dtype=np.int64)
    )
    duplicated = rng.random(arrival.shape) < load.duplicate_rate

    events: list[StageEvent] = []
    names = list(stages)
    for row in range(n):
        trace_id = trace_id_for(row, run_id)
        for col, stage in enumerate(names):
            if not reached[row, col]:
                break
            ts = int(arrival[row, col])
            delivered = ts + int(jitter[row, col])
            events.append(StageEvent(trace_id, stage, ts, delivered))
            if duplicated[row, col]:
                events.append(StageEvent(trace_id, stage, ts, delivered + 1))

    events.sort(key=lambda event: event.delivery_time)
    return events


def group_by_trace(events: list[StageEvent]) -> list[list[StageEvent]]:
    """Split events into per-trace lists, keeping their relative order."""

    groups: dict[str, list[StageEvent]] = {}
    for event in events:
        groups.setdefault(event.trace_id, []).append(event)
    return list(groups.values())
