"""Trace lifecycle models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pipetrace.pipeline.stage import StageDefinition, transition_key


class TraceStatus(str, Enum):
    """Lifecycle status of one trace."""

    IN_PROGRESS = "in_progress"
    OUT_OF_ORDER = "out_of_order"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (TraceStatus.COMPLETED, TraceStatus.TIMED_OUT)


class RecordResult(str, Enum):
    """Outcome of folding one arrival into the registry."""

    CREATED = "created"
    UPDATED = "updated"
    DUPLICATE_ARRIVAL = "duplicate_arrival"
    OUT_OF_ORDER_RECORDED = "out_of_order_recorded"
    FINALIZED = "finalized"


@dataclass(slots=True)
class Trace:
    """Mutable in-flight state; owned by exactly one registry shard."""

    trace_id: str
    started_at: int
    arrivals: dict[str, int] = field(default_factory=dict)
    status: TraceStatus = TraceStatus.IN_PROGRESS
    max_stage_index: int = -1
    last_arrival_at: int = 0
    out_of_order_at: str | None = None

    def record(self, stage: str, stage_index: int, timestamp: int) -> bool:
        """Store one arrival; returns True when it lands behind a later stage."""

        self.arrivals[stage] = timestamp
        self.last_arrival_at = max(self.last_arrival_at, timestamp)
        inverted = stage_index < self.max_stage_index
        if inverted and self.out_of_order_at is None:
            self.status = TraceStatus.OUT_OF_ORDER
            self.out_of_order_at = stage
        self.max_stage_index = max(self.max_stage_index, stage_index)
        return inverted

    def is_complete(self, stages: StageDefinition) -> bool:
        return len(self.arrivals) == len(stages)

    def age(self, now: int, *, basis: str = "last_arrival") -> int:
        reference = self.started_at if basis == "started" else self.last_arrival_at
        return now - reference

    def finalize(self, status: TraceStatus, stages: StageDefinition) -> FinalizedTrace:
        """Freeze this trace into its terminal snapshot."""

        if not status.is_terminal:
            raise ValueError(f"Cannot finalize a trace as {status.value}")

        ordered = {name: self.arrivals[name] for name in stages if name in self.arrivals}
        transitions: dict[str, int] = {}
        for src, dst in stages.transitions():
            if src in ordered and dst in ordered:
                transitions[transition_key(src, dst)] = ordered[dst] - ordered[src]

        end_to_end: int | None = None
        if status is TraceStatus.COMPLETED:
            end_to_end = ordered[stages.last] - ordered[stages.first]

        return FinalizedTrace(
            trace_id=self.trace_id,
            status=status,
            started_at=self.started_at,
            arrivals=MappingProxyType(ordered),
            transitions=MappingProxyType(transitions),
            end_to_end=end_to_end,
            out_of_order=self.out_of_order_at is not None,
            out_of_order_at=self.out_of_order_at,
        )


@dataclass(frozen=True, slots=True)
class FinalizedTrace:
    """Immutable terminal snapshot handed to the stats aggregator.

    `transitions` holds raw durations, so clock skew between collaborators
    can surface here as a negative value; the aggregator clamps it.
    """

    trace_id: str
    status: TraceStatus
    started_at: int
    arrivals: Mapping[str, int]
    transitions: Mapping[str, int]
    end_to_end: int | None
    out_of_order: bool = False
    out_of_order_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "arrivals": dict(self.arrivals),
            "transitions": dict(self.transitions),
            "end_to_end": self.end_to_end,
            "out_of_order": self.out_of_order,
            "out_of_order_at": self.out_of_order_at,
        }
