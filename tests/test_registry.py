"""Tests for trace lifecycle in the registry."""

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from pipetrace.observability.anomalies import AnomalyKind
from pipetrace.pipeline.registry import TraceRegistry
from pipetrace.pipeline.trace import RecordResult, TraceStatus


class TestRecordArrival:
    """Test how single arrivals are folded into traces."""

    def test_in_order_completion(self, registry, sink):
        """Scenario A: three in-order arrivals finalize a completed trace."""
        assert registry.record_arrival("t1", "ingest", 0) is RecordResult.CREATED
        assert registry.record_arrival("t1", "transform", 200) is RecordResult.UPDATED
        assert registry.record_arrival("t1", "sink", 500) is RecordResult.FINALIZED

        [trace] = sink.traces
        assert trace.status is TraceStatus.COMPLETED
        assert trace.end_to_end == 500
        assert trace.transitions == {"ingest->transform": 200, "transform->sink": 300}
        assert not trace.out_of_order
        assert registry.snapshot_in_flight_count() == 0

    def test_duplicate_arrival_is_ignored(self, registry, sink):
        """Scenario C: a second ingest keeps the first timestamp."""
        registry.record_arrival("t3", "ingest", 0)
        assert registry.record_arrival("t3", "ingest", 5) is RecordResult.DUPLICATE_ARRIVAL
        registry.record_arrival("t3", "transform", 10)
        registry.record_arrival("t3", "sink", 20)

        assert sink.by_id()["t3"].arrivals["ingest"] == 0
        assert sink.anomalies[AnomalyKind.DUPLICATE_ARRIVAL] == 1

    def test_reverse_order_arrivals(self, registry, sink):
        """P5: reverse-order arrivals still yield every duration."""
        assert registry.record_arrival("t5", "sink", 100) is RecordResult.CREATED
        assert registry.record_arrival("t5", "ingest", 10) is RecordResult.OUT_OF_ORDER_RECORDED
        assert registry.record_arrival("t5", "transform", 50) is RecordResult.FINALIZED

        trace = sink.by_id()["t5"]
        assert trace.status is TraceStatus.COMPLETED
        assert trace.out_of_order
        assert trace.out_of_order_at == "ingest"
        assert dict(trace.arrivals) == {"ingest": 10, "transform": 50, "sink": 100}
        assert trace.transitions["ingest->transform"] == 40
        assert trace.transitions["transform->sink"] == 50
        assert trace.end_to_end == 90

    def test_last_stage_alone_does_not_complete(self, registry, sink):
        registry.record_arrival("t6", "ingest", 0)
        assert registry.record_arrival("t6", "sink", 30) is RecordResult.UPDATED
        assert sink.traces == []
        assert registry.snapshot_in_flight_count() == 1

    def test_arrival_after_finalization_is_reentry(self, registry, sink):
        for stage, ts in (("ingest", 0), ("transform", 1), ("sink", 2)):
            registry.record_arrival("t7", stage, ts)

        result = registry.record_arrival("t7", "sink", 900)

        assert result is RecordResult.DUPLICATE_ARRIVAL
        assert sink.id_counts()["t7"] == 1
        assert sink.anomalies[AnomalyKind.FINALIZED_TRACE_REENTRY] == 1
        assert registry.snapshot_in_flight_count() == 0

    def test_unknown_stage_and_negative_timestamp_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.record_arrival("t8", "publish", 0)
        with pytest.raises(ValueError):
            registry.record_arrival("t8", "ingest", -1)
        assert registry.snapshot_in_flight_count() == 0

    def test_in_flight_count_tracks_live_traces(self, registry):
        for idx in range(5):
            registry.record_arrival(f"live-{idx}", "ingest", idx)
        assert registry.snapshot_in_flight_count() == 5
        registry.record_arrival("live-0", "transform", 10)
        registry.record_arrival("live-0", "sink", 20)
        assert registry.snapshot_in_flight_count() == 4

    def test_reentry_memory_is_bounded(self, stages, sink):
        registry = TraceRegistry(stages, sink, shard_count=1, recent_finalized_capacity=2)
        for trace_id in ("a", "b", "c"):
            for stage, ts in (("ingest", 0), ("transform", 1), ("sink", 2)):
                registry.record_arrival(trace_id, stage, ts)

        # "a" has been forgotten, so a late event opens a fresh trace.
        assert registry.record_arrival("a", "sink", 50) is RecordResult.CREATED
        assert registry.record_arrival("c", "sink", 50) is RecordResult.DUPLICATE_ARRIVAL


class TestSweepTimeouts:
    """Test deadline-based finalization."""

    def test_stalled_trace_times_out(self, registry):
        """Scenario B / P4: only the first stage arrives, then nothing."""
        registry.record_arrival("t2", "ingest", 0)

        assert registry.sweep_timeouts(1000, 1000) == []
        [expired] = registry.sweep_timeouts(1500, 1000)

        assert expired.trace_id == "t2"
        assert expired.status is TraceStatus.TIMED_OUT
        assert expired.end_to_end is None
        assert dict(expired.arrivals) == {"ingest": 0}
        assert registry.snapshot_in_flight_count() == 0

    def test_timed_out_trace_keeps_partial_transitions(self, registry):
        registry.record_arrival("p", "ingest", 0)
        registry.record_arrival("p", "transform", 70)

        [expired] = registry.sweep_timeouts(5000, 1000)

        assert expired.transitions == {"ingest->transform": 70}

    def test_deadline_measured_from_latest_arrival(self, registry):
        registry.record_arrival("slow", "ingest", 0)
        registry.record_arrival("slow", "transform", 900)
        assert registry.sweep_timeouts(1500, 1000) == []
        assert len(registry.sweep_timeouts(1901, 1000)) == 1

    def test_deadline_measured_from_start(self, stages, sink):
        registry = TraceRegistry(stages, sink, deadline_basis="started")
        registry.record_arrival("slow", "ingest", 0)
        registry.record_arrival("slow", "transform", 900)
        assert len(registry.sweep_timeouts(1500, 1000)) == 1

    def test_timed_out_trace_is_never_completed_later(self, registry, sink):
        registry.record_arrival("late", "ingest", 0)
        registry.sweep_timeouts(10_000, 1000)

        assert registry.record_arrival("late", "transform", 10_001) is RecordResult.DUPLICATE_ARRIVAL
        assert registry.record_arrival("late", "sink", 10_002) is RecordResult.DUPLICATE_ARRIVAL
        assert sink.traces == []

    def test_drain_times_out_everything(self, registry):
        for idx in range(10):
            registry.record_arrival(f"d{idx}", "ingest", 0)
        expired = registry.drain()
        assert {trace.status for trace in expired} == {TraceStatus.TIMED_OUT}
        assert len(expired) == 10
        assert registry.snapshot_in_flight_count() == 0

    def test_non_positive_deadline_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.sweep_timeouts(0, 0)


class TestConcurrency:
    """Test exactly-once finalization under races."""

    def test_record_and_sweep_race_finalizes_once(self, stages, sink):
        """P1: completions racing a sweeper never double-finalize."""
        registry = TraceRegistry(stages, sink, shard_count=16)
        n = 4000
        for idx in range(n):
            registry.record_arrival(f"r{idx}", "ingest", 0)

        swept = []
        swept_lock = threading.Lock()
        barrier = threading.Barrier(3)

        def complete(offset):
            barrier.wait()
            for idx in range(offset, n, 2):
                registry.record_arrival(f"r{idx}", "transform", 5)
                registry.record_arrival(f"r{idx}", "sink", 9)

        def sweep():
            barrier.wait()
            for _ in range(50):
                expired = registry.sweep_timeouts(100_000, 1000)
                with swept_lock:
                    swept.extend(expired)

        with ThreadPoolExecutor(max_workers=3) as pool:
            futures = [pool.submit(complete, 0), pool.submit(complete, 1), pool.submit(sweep)]
            for future in futures:
                future.result()
        swept.extend(registry.drain())

        finalized_ids = [trace.trace_id for trace in sink.traces] + [
            trace.trace_id for trace in swept
        ]
        assert len(finalized_ids) == n
        assert len(set(finalized_ids)) == n
        assert registry.snapshot_in_flight_count() == 0
