"""Dataclass-based configuration schema for pipetrace."""

from dataclasses import dataclass, field
from typing import Literal

from pipetrace.metrics.histogram import default_bucket_bounds


def _default_stages() -> list[str]:
    return ["ingest", "transform", "sink"]


@dataclass(slots=True)
class HistogramConfig:
    """Latency histogram bucket layout (upper bounds, milliseconds)."""

    bounds_ms: list[int] = field(default_factory=default_bucket_bounds)


@dataclass(slots=True)
class SweepConfig:
    """Timeout sweeper cadence and deadline."""

    interval_ms: int = 1000
    deadline_per_stage_ms: int = 30_000
    deadline_basis: Literal["last_arrival", "started"] = "last_arrival"


@dataclass(slots=True)
class EngineConfig:
    """Top-level correlation engine configuration."""

    stages: list[str] = field(default_factory=_default_stages)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    histogram: HistogramConfig = field(default_factory=HistogramConfig)
    shard_count: int = 64
    recent_finalized_capacity: int = 100_000
    in_flight_soft_limit: int | None = None


@dataclass(slots=True)
class SyntheticLoadConfig:
    """Synthetic stage-event generation options."""

    traces: int = 1000
    rate_per_sec: float = 100.0
    hop_median_ms: float = 40.0
    hop_sigma: float = 0.5
    drop_rate: float = 0.0
    duplicate_rate: float = 0.0
    delivery_jitter_ms: int = 0
    seed: int | None = 0
