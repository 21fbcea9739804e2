"""Correlation engine wiring for one measurement run."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any

from pipetrace.config.loader import validate_engine_config
from pipetrace.config.schema import EngineConfig
from pipetrace.metrics.aggregator import ReportView, StatsAggregator
from pipetrace.observability.logging import get_logger, log_event
from pipetrace.pipeline.clock import MonotonicClock, TimeSource
from pipetrace.pipeline.recorder import StageRecorder
from pipetrace.pipeline.registry import TraceRegistry
from pipetrace.pipeline.sweeper import TimeoutSweeper


_LOGGER = get_logger("pipetrace.engine")


class CorrelationEngine:
    """Own one registry, recorder, aggregator and sweeper.

    Construct one per run and pass it (or its `recorder`) to the stage
    collaborators; nothing here is process-global.
    """

    def __init__(self, config: EngineConfig, clock: TimeSource | None = None) -> None:
        self.config = config
        self.stages = validate_engine_config(config)
        self.clock = clock if clock is not None else MonotonicClock()
        self.aggregator = StatsAggregator(self.stages, config.histogram.bounds_ms)
        self.registry = TraceRegistry(
            self.stages,
            self.aggregator,
            shard_count=config.shard_count,
            recent_finalized_capacity=config.recent_finalized_capacity,
            deadline_basis=config.sweep.deadline_basis,
        )
        self.recorder = StageRecorder(self.registry, self.aggregator)
        self.sweeper = TimeoutSweeper(
            self.registry,
            self.aggregator,
            self.clock,
            deadline_per_stage_ms=config.sweep.deadline_per_stage_ms,
            interval_ms=config.sweep.interval_ms,
        )

    def start(self) -> None:
        self.sweeper.start()
        log_event(
            _LOGGER,
            "engine_started",
            stages=list(self.stages),
            deadline_per_stage_ms=self.config.sweep.deadline_per_stage_ms,
            sweep_interval_ms=self.config.sweep.interval_ms,
        )

    def stop(self, *, drain: bool = False, timeout: float | None = None) -> int:
        """Stop the sweeper; with `drain=True` time out every remaining trace.

        Returns the number of traces drained.
        """

        self.sweeper.stop(timeout)
        drained = self.drain() if drain else 0
        log_event(
            _LOGGER,
            "engine_stopped",
            drained=drained,
            in_flight=self.registry.snapshot_in_flight_count(),
        )
        return drained

    def drain(self) -> int:
        expired = self.registry.drain()
        for trace in expired:
            self.aggregator.ingest(trace)
        return len(expired)

    def sweep(self, now: int | None = None) -> int:
        """Run one sweep cycle synchronously (virtual-time callers use this)."""

        return self.sweeper.run_once(now)

    def report(self) -> ReportView:
        """Aggregator snapshot annotated with the current in-flight count."""

        return replace(
            self.aggregator.snapshot(),
            in_flight=self.registry.snapshot_in_flight_count(),
        )

    def health(self) -> dict[str, Any]:
        in_flight = self.registry.snapshot_in_flight_count()
        limit = self.config.in_flight_soft_limit
        saturated = limit is not None and in_flight >= limit
        if saturated:
            log_event(
                _LOGGER,
                "engine_backpressure",
                level=logging.WARNING,
                in_flight=in_flight,
                soft_limit=limit,
            )
        return {
            "in_flight": in_flight,
            "soft_limit": limit,
            "saturated": saturated,
            "sweeper_running": self.sweeper.running,
            "sweep_cycles": self.sweeper.cycles,
        }

    def __enter__(self) -> CorrelationEngine:
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.stop()
