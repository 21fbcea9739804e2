"""JSONL stage-event journals."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any, Iterable, Iterator


@dataclass(frozen=True, slots=True)
class StageEvent:
    """One stage arrival as produced by a collaborator.

    `delivered_at` is when the event reached the engine; it defaults to `ts`
    and differs from it only when delivery was delayed or reordered.
    """

    trace_id: str
    stage: str
    ts: int
    delivered_at: int | None = None

    @property
    def delivery_time(self) -> int:
        return self.ts if self.delivered_at is None else self.delivered_at

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"trace_id": self.trace_id, "stage": self.stage, "ts": self.ts}
        if self.delivered_at is not None:
            payload["delivered_at"] = self.delivered_at
        return payload


def event_from_dict(payload: Any, *, where: str = "event") -> StageEvent:
    """Validate one decoded JSON object into a `StageEvent`."""

    if not isinstance(payload, dict):
        raise ValueError(f"{where}: expected a JSON object, got {type(payload).__name__}")
    trace_id = payload.get("trace_id")
    stage = payload.get("stage")
    ts = payload.get("ts")
    delivered_at = payload.get("delivered_at")
    if not isinstance(trace_id, str) or not trace_id:
        raise ValueError(f"{where}: 'trace_id' must be a non-empty string")
    if not isinstance(stage, str) or not stage:
        raise ValueError(f"{where}: 'stage' must be a non-empty string")
    if isinstance(ts, bool) or not isinstance(ts, int) or ts < 0:
        raise ValueError(f"{where}: 'ts' must be a non-negative integer, got {ts!r}")
    if delivered_at is not None and (
        isinstance(delivered_at, bool) or not isinstance(delivered_at, int) or delivered_at < 0
    ):
        raise ValueError(
            f"{where}: 'delivered_at' must be a non-negative integer, got {delivered_at!r}"
        )
    return StageEvent(trace_id=trace_id, stage=stage, ts=ts, delivered_at=delivered_at)


def append_events(path: Path, events: Iterable[StageEvent]) -> int:
    """Append events as JSON lines; returns how many were written."""

    path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with path.open("a", encoding="utf-8") as handle:
        for event in events:
            handle.write(json.dumps(event.to_dict(), sort_keys=True) + "\n")
            written += 1
    return written


def iter_events(path: Path) -> Iterator[StageEvent]:
    """Yield validated events; blank lines are skipped."""

    with path.open("r", encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            text = line.strip()
            if not text:
                continue
            where = f"{path}:{lineno}"
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{where}: invalid JSON ({exc.msg})") from exc
            yield event_from_dict(payload, where=where)
