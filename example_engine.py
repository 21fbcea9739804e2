"""Example pipetrace engine config.

    pipetrace replay --events events.jsonl --config example_engine.py:ENGINE
"""

from pipetrace.config.schema import EngineConfig, HistogramConfig, SweepConfig
from pipetrace.metrics.histogram import log_bucket_bounds


ENGINE = EngineConfig(
    stages=["ingest", "transform", "sink"],
    sweep=SweepConfig(
        interval_ms=2_000,
        deadline_per_stage_ms=15_000,
        deadline_basis="last_arrival",
    ),
    histogram=HistogramConfig(
        bounds_ms=log_bucket_bounds(min_ms=1, max_ms=120_000, buckets=160),
    ),
    shard_count=128,
    in_flight_soft_limit=500_000,
)
