"""Worker pool helpers for concurrent event dispatch."""

from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
import os
from typing import Sequence

from pipetrace.observability.logging import get_logger, log_event
from pipetrace.pipeline.recorder import StageRecorder
from pipetrace.storage.journal import StageEvent


_LOGGER = get_logger("pipetrace.workers")


def normalize_worker_count(requested: int | None, *, ceiling: int = 64) -> int:
    """Clamp a requested thread count to `[1, ceiling]`; None means one per CPU."""

    if requested is None:
        return min(ceiling, os.cpu_count() or 1)
    return min(max(1, int(requested)), ceiling)


def _dispatch_chunk(recorder: StageRecorder, chunk: Sequence[StageEvent]) -> Counter[str]:
    results: Counter[str] = Counter()
    for event in chunk:
        result = recorder.on_stage_arrival(event.trace_id, event.stage, event.ts)
        results["dropped" if result is None else result.value] += 1
    return results


def dispatch_concurrently(
    recorder: StageRecorder,
    groups: Sequence[Sequence[StageEvent]],
    *,
    workers: int | None = None,
) -> Counter[str]:
    """Submit each group of events as one task on a thread pool.

    Events inside a group are recorded in order; groups race each other, which
    is how independent collaborators deliver in production.
    """

    worker_count = normalize_worker_count(workers)
    totals: Counter[str] = Counter()
    first_error: Exception | None = None
    with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="pipetrace") as pool:
        futures = [pool.submit(_dispatch_chunk, recorder, group) for group in groups]
        for future in as_completed(futures):
            try:
                totals.update(future.result())
            except Exception as exc:
                if first_error is None:
                    first_error = exc

    if first_error is not None:
        raise RuntimeError(f"Concurrent dispatch failed: {first_error}") from first_error

    log_event(
        _LOGGER,
        "dispatch_finished",
        groups=len(groups),
        workers=worker_count,
        results=dict(totals),
    )
    return totals
