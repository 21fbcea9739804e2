"""Shared pytest fixtures for pipetrace tests."""

from __future__ import annotations

from collections import Counter
import threading

import pytest

from pipetrace.config.schema import EngineConfig, SweepConfig
from pipetrace.observability.anomalies import AnomalyKind
from pipetrace.pipeline.clock import VirtualClock
from pipetrace.pipeline.engine import CorrelationEngine
from pipetrace.pipeline.registry import TraceRegistry
from pipetrace.pipeline.stage import StageDefinition
from pipetrace.pipeline.trace import FinalizedTrace


class RecordingSink:
    """Thread-safe sink that remembers every finalized trace and anomaly."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.traces: list[FinalizedTrace] = []
        self.anomalies: Counter[AnomalyKind] = Counter()

    def ingest(self, trace: FinalizedTrace) -> None:
        with self._lock:
            self.traces.append(trace)

    def note_anomaly(self, kind: AnomalyKind) -> None:
        with self._lock:
            self.anomalies[kind] += 1

    def by_id(self) -> dict[str, FinalizedTrace]:
        return {trace.trace_id: trace for trace in self.traces}

    def id_counts(self) -> Counter[str]:
        return Counter(trace.trace_id for trace in self.traces)


@pytest.fixture
def stages() -> StageDefinition:
    return StageDefinition.of(["ingest", "transform", "sink"])


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def registry(stages: StageDefinition, sink: RecordingSink) -> TraceRegistry:
    return TraceRegistry(stages, sink, shard_count=8)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def make_engine(clock: VirtualClock):
    """Factory for engines on the shared virtual clock."""

    def _make(deadline_ms: int = 5000, interval_ms: int = 1000, **overrides) -> CorrelationEngine:
        config = EngineConfig(
            sweep=SweepConfig(interval_ms=interval_ms, deadline_per_stage_ms=deadline_ms),
            **overrides,
        )
        return CorrelationEngine(config, clock)

    return _make
