"""Running latency statistics over finalized traces."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import math
import threading
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from pipetrace.metrics.histogram import LatencyHistogram
from pipetrace.observability.anomalies import AnomalyKind, log_anomaly
from pipetrace.observability.logging import get_logger
from pipetrace.pipeline.stage import StageDefinition
from pipetrace.pipeline.trace import FinalizedTrace, TraceStatus


_LOGGER = get_logger("pipetrace.aggregator")

END_TO_END = "end_to_end"
REPORTED_PERCENTILES = (50.0, 95.0, 99.0)


@dataclass(frozen=True, slots=True)
class StatsView:
    """Point-in-time summary of one transition (or end-to-end)."""

    count: int
    min: float | None
    max: float | None
    mean: float | None
    p50: float | None
    p95: float | None
    p99: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class OutcomeCounts:
    completed: int = 0
    timed_out: int = 0
    out_of_order: int = 0
    duplicate_arrivals: int = 0

    @property
    def finalized(self) -> int:
        return self.completed + self.timed_out

    @property
    def completion_rate(self) -> float | None:
        if self.finalized == 0:
            return None
        return self.completed / self.finalized

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ReportView:
    """Immutable aggregate snapshot for reporting collaborators."""

    per_transition: Mapping[str, StatsView]
    end_to_end: StatsView
    outcomes: OutcomeCounts
    anomalies: Mapping[str, int] = field(default_factory=dict)
    in_flight: int | None = None

    def stats_for(self, target: str) -> StatsView:
        """Look up `end_to_end` or one `from->to` transition key."""

        if target == END_TO_END:
            return self.end_to_end
        try:
            return self.per_transition[target]
        except KeyError:
            known = ", ".join([END_TO_END, *self.per_transition])
            raise KeyError(f"Unknown report target '{target}'. Known: {known}") from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "per_transition": {
                key: view.to_dict() for key, view in self.per_transition.items()
            },
            "end_to_end": self.end_to_end.to_dict(),
            "outcomes": self.outcomes.to_dict(),
            "anomalies": dict(self.anomalies),
            "in_flight": self.in_flight,
        }


def _empty_view() -> StatsView:
    return StatsView(count=0, min=None, max=None, mean=None, p50=None, p95=None, p99=None)


def report_view_from_dict(payload: Mapping[str, Any]) -> ReportView:
    """Rebuild a `ReportView` from its `to_dict()` form."""

    def _view(raw: Any) -> StatsView:
        if not isinstance(raw, Mapping):
            raise TypeError(f"Stats entry must be an object, got {type(raw).__name__}")
        return StatsView(
            count=int(raw.get("count", 0)),
            min=raw.get("min"),
            max=raw.get("max"),
            mean=raw.get("mean"),
            p50=raw.get("p50"),
            p95=raw.get("p95"),
            p99=raw.get("p99"),
        )

    per_transition = payload.get("per_transition", {})
    if not isinstance(per_transition, Mapping):
        raise TypeError("Report 'per_transition' must be an object.")
    outcomes = payload.get("outcomes", {})
    if not isinstance(outcomes, Mapping):
        raise TypeError("Report 'outcomes' must be an object.")
    anomalies = payload.get("anomalies") or {}
    if not isinstance(anomalies, Mapping):
        raise TypeError("Report 'anomalies' must be an object.")
    in_flight = payload.get("in_flight")

    return ReportView(
        per_transition=MappingProxyType(
            {str(key): _view(value) for key, value in per_transition.items()}
        ),
        end_to_end=_view(payload.get("end_to_end", {})),
        outcomes=OutcomeCounts(
            completed=int(outcomes.get("completed", 0)),
            timed_out=int(outcomes.get("timed_out", 0)),
            out_of_order=int(outcomes.get("out_of_order", 0)),
            duplicate_arrivals=int(outcomes.get("duplicate_arrivals", 0)),
        ),
        anomalies=MappingProxyType(
            {str(key): int(value) for key, value in anomalies.items()}
        ),
        in_flight=None if in_flight is None else int(in_flight),
    )


class StageStats:
    """Running count/min/max/sum plus a bounded percentile histogram."""

    __slots__ = ("_histogram", "count", "min", "max", "total")

    def __init__(self, bounds_ms: Sequence[int]) -> None:
        self._histogram = LatencyHistogram(bounds_ms)
        self.count = 0
        self.min: float | None = None
        self.max: float | None = None
        self.total = 0.0

    def add(self, duration: float) -> None:
        self._histogram.record(duration)
        self.count += 1
        self.total += duration
        self.min = duration if self.min is None else min(self.min, duration)
        self.max = duration if self.max is None else max(self.max, duration)

    def view(self) -> StatsView:
        if self.count == 0 or self.min is None or self.max is None:
            return _empty_view()
        low, high = self.min, self.max
        # Bucket upper bounds can overshoot the data; keep them inside [min, max].
        quantiles = [
            min(max(value, low), high) if value is not None and not math.isinf(value) else high
            for value in self._histogram.quantiles(REPORTED_PERCENTILES)
        ]
        return StatsView(
            count=self.count,
            min=low,
            max=high,
            mean=self.total / self.count,
            p50=quantiles[0],
            p95=quantiles[1],
            p99=quantiles[2],
        )


class StatsAggregator:
    """Fold finalized traces into per-transition and end-to-end statistics.

    A single lock serializes updates so concurrent finalizers never lose an
    increment and `snapshot()` always sees a consistent state.
    """

    def __init__(self, stages: StageDefinition, bounds_ms: Sequence[int]) -> None:
        self._stages = stages
        self._lock = threading.Lock()
        self._transitions: dict[str, StageStats] = {
            key: StageStats(bounds_ms) for key in stages.transition_keys()
        }
        self._end_to_end = StageStats(bounds_ms)
        self._outcomes = {
            "completed": 0,
            "timed_out": 0,
            "out_of_order": 0,
            "duplicate_arrivals": 0,
        }
        self._anomalies: dict[str, int] = {kind.value: 0 for kind in AnomalyKind}

    @property
    def stages(self) -> StageDefinition:
        return self._stages

    def ingest(self, trace: FinalizedTrace) -> None:
        """Record one finalized trace's durations and outcome."""

        if not trace.status.is_terminal:
            raise ValueError(
                f"Trace {trace.trace_id} is not terminal (status={trace.status.value})"
            )

        skewed: list[tuple[str, int]] = []
        with self._lock:
            for key, raw in trace.transitions.items():
                stats = self._transitions.get(key)
                if stats is None:
                    continue
                if raw < 0:
                    skewed.append((key, raw))
                    self._anomalies[AnomalyKind.CLOCK_SKEW_NEGATIVE_DURATION.value] += 1
                stats.add(max(0, raw))

            if trace.end_to_end is not None:
                if trace.end_to_end < 0:
                    skewed.append(("end_to_end", trace.end_to_end))
                    self._anomalies[AnomalyKind.CLOCK_SKEW_NEGATIVE_DURATION.value] += 1
                self._end_to_end.add(max(0, trace.end_to_end))

            if trace.status is TraceStatus.COMPLETED:
                self._outcomes["completed"] += 1
            else:
                self._outcomes["timed_out"] += 1
            if trace.out_of_order:
                self._outcomes["out_of_order"] += 1

        for key, raw in skewed:
            log_anomaly(
                _LOGGER,
                AnomalyKind.CLOCK_SKEW_NEGATIVE_DURATION,
                trace_id=trace.trace_id,
                transition=key,
                duration_ms=raw,
            )

    def note_duplicate(self) -> None:
        with self._lock:
            self._outcomes["duplicate_arrivals"] += 1
            self._anomalies[AnomalyKind.DUPLICATE_ARRIVAL.value] += 1

    def note_anomaly(self, kind: AnomalyKind) -> None:
        if kind is AnomalyKind.DUPLICATE_ARRIVAL:
            self.note_duplicate()
            return
        with self._lock:
            self._anomalies[kind.value] += 1

    def snapshot(self) -> ReportView:
        """Return an immutable copy of every statistic and counter."""

        with self._lock:
            per_transition = {key: stats.view() for key, stats in self._transitions.items()}
            end_to_end = self._end_to_end.view()
            outcomes = OutcomeCounts(**self._outcomes)
            anomalies = dict(self._anomalies)

        return ReportView(
            per_transition=MappingProxyType(per_transition),
            end_to_end=end_to_end,
            outcomes=outcomes,
            anomalies=MappingProxyType(anomalies),
        )
