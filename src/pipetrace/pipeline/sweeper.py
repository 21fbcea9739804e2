"""Background timeout sweeper."""

from __future__ import annotations

import logging
import threading
import time

from pipetrace.observability.anomalies import AnomalyKind, log_anomaly
from pipetrace.observability.logging import get_logger, log_event
from pipetrace.pipeline.clock import TimeSource
from pipetrace.pipeline.registry import FinalizedTraceSink, TraceRegistry


_LOGGER = get_logger("pipetrace.sweeper")


class TimeoutSweeper:
    """Periodically age out traces whose next stage never arrived."""

    def __init__(
        self,
        registry: TraceRegistry,
        sink: FinalizedTraceSink,
        clock: TimeSource,
        *,
        deadline_per_stage_ms: int,
        interval_ms: int,
    ) -> None:
        if deadline_per_stage_ms <= 0:
            raise ValueError(f"deadline_per_stage_ms must be > 0, got {deadline_per_stage_ms}")
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {interval_ms}")

        self.registry = registry
        self.sink = sink
        self.clock = clock
        self.deadline_per_stage_ms = deadline_per_stage_ms
        self.interval_ms = interval_ms
        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.cycles = 0
        self.timed_out_total = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now: int | None = None) -> int:
        """Run one sweep cycle and return how many traces were timed out."""

        with self._cycle_lock:
            started_perf = time.perf_counter()
            at = self.clock.now_ms() if now is None else now
            expired = self.registry.sweep_timeouts(at, self.deadline_per_stage_ms)

            delivered = 0
            for trace in expired:
                try:
                    self.sink.ingest(trace)
                except Exception as exc:
                    self.sink.note_anomaly(AnomalyKind.SWEEP_ERROR)
                    log_anomaly(
                        _LOGGER,
                        AnomalyKind.SWEEP_ERROR,
                        trace_id=trace.trace_id,
                        error=f"{type(exc).__name__}: {exc}",
                    )
                    continue
                delivered += 1

            self.cycles += 1
            self.timed_out_total += delivered
            log_event(
                _LOGGER,
                "sweep_completed",
                level=logging.DEBUG if not expired else logging.INFO,
                now_ms=at,
                timed_out=delivered,
                in_flight=self.registry.snapshot_in_flight_count(),
                latency_ms=round((time.perf_counter() - started_perf) * 1000, 3),
            )
            return delivered

    def _loop(self) -> None:
        interval = self.interval_ms / 1000.0
        while not self._stop_event.wait(interval):
            try:
                self.run_once()
            except Exception:
                _LOGGER.exception("sweep_cycle_failed")

    def start(self) -> None:
        if self.running:
            raise RuntimeError("Timeout sweeper is already running.")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="pipetrace-sweeper",
            daemon=True,
        )
        self._thread.start()
        log_event(
            _LOGGER,
            "sweeper_started",
            interval_ms=self.interval_ms,
            deadline_per_stage_ms=self.deadline_per_stage_ms,
        )

    def stop(self, timeout: float | None = None) -> None:
        """Stop scheduling cycles and wait for an in-flight sweep to finish."""

        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                log_event(_LOGGER, "sweeper_stop_timeout", level=logging.WARNING, timeout=timeout)
                return
        self._thread = None
        log_event(
            _LOGGER,
            "sweeper_stopped",
            cycles=self.cycles,
            timed_out_total=self.timed_out_total,
        )

    def __enter__(self) -> TimeoutSweeper:
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.stop()
