"""Authoritative in-flight trace state.

The live map is split into shards keyed by `hash(trace_id)`, each guarded by
its own lock. A trace is finalized only by the caller that removes it from
its shard while holding that shard's lock, which makes finalization
exactly-once even when `record_arrival` and `sweep_timeouts` race on the same
trace.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
import logging
import threading
from typing import Literal, Protocol

from pipetrace.observability.anomalies import AnomalyKind, log_anomaly
from pipetrace.observability.logging import get_logger, log_event
from pipetrace.pipeline.stage import StageDefinition
from pipetrace.pipeline.trace import FinalizedTrace, RecordResult, Trace, TraceStatus


_LOGGER = get_logger("pipetrace.registry")

DeadlineBasis = Literal["last_arrival", "started"]


class FinalizedTraceSink(Protocol):
    """Receiver of finalized traces and anomaly counts."""

    def ingest(self, trace: FinalizedTrace) -> None:
        ...

    def note_anomaly(self, kind: AnomalyKind) -> None:
        ...


@dataclass(slots=True)
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    live: dict[str, Trace] = field(default_factory=dict)
    # Recently finalized ids, oldest first; bounded so memory stays flat.
    finalized: OrderedDict[str, None] = field(default_factory=OrderedDict)


class TraceRegistry:
    """Own every in-flight trace and decide when each one is finalized."""

    def __init__(
        self,
        stages: StageDefinition,
        sink: FinalizedTraceSink,
        *,
        shard_count: int = 64,
        recent_finalized_capacity: int = 100_000,
        deadline_basis: DeadlineBasis = "last_arrival",
    ) -> None:
        if shard_count <= 0:
            raise ValueError(f"shard_count must be > 0, got {shard_count}")
        if recent_finalized_capacity < 0:
            raise ValueError(
                f"recent_finalized_capacity must be >= 0, got {recent_finalized_capacity}"
            )
        if deadline_basis not in ("last_arrival", "started"):
            raise ValueError(f"Unknown deadline basis: {deadline_basis!r}")

        self._stages = stages
        self._sink = sink
        self._shards = [_Shard() for _ in range(shard_count)]
        self._remember_per_shard = -(-recent_finalized_capacity // shard_count)
        self._deadline_basis = deadline_basis
        self._count_lock = threading.Lock()
        self._in_flight = 0

    @property
    def stages(self) -> StageDefinition:
        return self._stages

    def _shard_for(self, trace_id: str) -> _Shard:
        return self._shards[hash(trace_id) % len(self._shards)]

    def _adjust_in_flight(self, delta: int) -> None:
        with self._count_lock:
            self._in_flight += delta

    def _remember_finalized(self, shard: _Shard, trace_id: str) -> None:
        if self._remember_per_shard == 0:
            return
        shard.finalized[trace_id] = None
        while len(shard.finalized) > self._remember_per_shard:
            shard.finalized.popitem(last=False)

    def record_arrival(self, trace_id: str, stage: str, timestamp: int) -> RecordResult:
        """Fold one stage arrival into the trace identified by `trace_id`.

        Raises `ValueError` for stages outside the definition or negative
        timestamps; `StageRecorder` filters those before they get here.
        """

        if stage not in self._stages:
            raise ValueError(f"Unknown stage '{stage}' for trace {trace_id}")
        if timestamp < 0:
            raise ValueError(f"Timestamp must be >= 0, got {timestamp} for trace {trace_id}")

        stage_index = self._stages.index(stage)
        shard = self._shard_for(trace_id)
        finalized: FinalizedTrace | None = None
        reentry = False

        with shard.lock:
            trace = shard.live.get(trace_id)
            if trace is None:
                if trace_id in shard.finalized:
                    reentry = True
                    result = RecordResult.DUPLICATE_ARRIVAL
                else:
                    trace = Trace(
                        trace_id=trace_id,
                        started_at=timestamp,
                        last_arrival_at=timestamp,
                    )
                    trace.record(stage, stage_index, timestamp)
                    shard.live[trace_id] = trace
                    result = RecordResult.CREATED
                    self._adjust_in_flight(1)
            elif stage in trace.arrivals:
                result = RecordResult.DUPLICATE_ARRIVAL
            else:
                inverted = trace.record(stage, stage_index, timestamp)
                result = (
                    RecordResult.OUT_OF_ORDER_RECORDED if inverted else RecordResult.UPDATED
                )

            if trace is not None and result is not RecordResult.DUPLICATE_ARRIVAL:
                if trace.is_complete(self._stages):
                    del shard.live[trace_id]
                    self._remember_finalized(shard, trace_id)
                    self._adjust_in_flight(-1)
                    trace.status = TraceStatus.COMPLETED
                    finalized = trace.finalize(TraceStatus.COMPLETED, self._stages)
                    result = RecordResult.FINALIZED

        if result is RecordResult.DUPLICATE_ARRIVAL:
            if reentry:
                self._sink.note_anomaly(AnomalyKind.FINALIZED_TRACE_REENTRY)
                log_anomaly(
                    _LOGGER,
                    AnomalyKind.FINALIZED_TRACE_REENTRY,
                    trace_id=trace_id,
                    stage=stage,
                    ts=timestamp,
                )
            else:
                self._sink.note_anomaly(AnomalyKind.DUPLICATE_ARRIVAL)
                log_anomaly(
                    _LOGGER,
                    AnomalyKind.DUPLICATE_ARRIVAL,
                    trace_id=trace_id,
                    stage=stage,
                    ts=timestamp,
                )
        elif result is RecordResult.OUT_OF_ORDER_RECORDED:
            log_event(
                _LOGGER,
                "trace_out_of_order",
                level=logging.DEBUG,
                trace_id=trace_id,
                stage=stage,
                ts=timestamp,
            )

        if finalized is not None:
            self._emit(finalized)
        return result

    def _emit(self, finalized: FinalizedTrace) -> None:
        log_event(
            _LOGGER,
            "trace_finalized",
            level=logging.DEBUG,
            trace_id=finalized.trace_id,
            status=finalized.status.value,
            out_of_order=finalized.out_of_order,
            end_to_end_ms=finalized.end_to_end,
        )
        self._sink.ingest(finalized)

    def snapshot_in_flight_count(self) -> int:
        """Current number of live traces."""

        with self._count_lock:
            return self._in_flight

    def _expire_shard(
        self,
        shard: _Shard,
        now: int,
        deadline: int,
        *,
        force: bool,
    ) -> list[FinalizedTrace]:
        expired: list[FinalizedTrace] = []
        with shard.lock:
            stale = [
                trace
                for trace in shard.live.values()
                if force or trace.age(now, basis=self._deadline_basis) > deadline
            ]
            for trace in stale:
                del shard.live[trace.trace_id]
                self._remember_finalized(shard, trace.trace_id)
                self._adjust_in_flight(-1)
                try:
                    trace.status = TraceStatus.TIMED_OUT
                    expired.append(trace.finalize(TraceStatus.TIMED_OUT, self._stages))
                except Exception as exc:
                    # Already evicted above; a broken entry must not stay live.
                    self._sink.note_anomaly(AnomalyKind.SWEEP_ERROR)
                    log_anomaly(
                        _LOGGER,
                        AnomalyKind.SWEEP_ERROR,
                        trace_id=trace.trace_id,
                        error=f"{type(exc).__name__}: {exc}",
                    )
        return expired

    def sweep_timeouts(self, now: int, deadline_per_stage: int) -> list[FinalizedTrace]:
        """Finalize as timed out every live trace older than the deadline.

        Age is measured from the latest arrival by default, or from
        `started_at` when the registry was built with `deadline_basis="started"`.
        The caller hands the returned traces to the aggregator.
        """

        if deadline_per_stage <= 0:
            raise ValueError(f"deadline_per_stage must be > 0, got {deadline_per_stage}")

        expired: list[FinalizedTrace] = []
        for shard in self._shards:
            expired.extend(self._expire_shard(shard, now, deadline_per_stage, force=False))
        return expired

    def drain(self) -> list[FinalizedTrace]:
        """Time out every remaining live trace, regardless of age."""

        expired: list[FinalizedTrace] = []
        for shard in self._shards:
            expired.extend(self._expire_shard(shard, 0, 1, force=True))
        return expired
