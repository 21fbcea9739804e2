"""Validation boundary between stage collaborators and the registry."""

from __future__ import annotations

import numbers
from typing import Any, Mapping

from pipetrace.observability.anomalies import AnomalyKind, log_anomaly
from pipetrace.observability.logging import get_logger
from pipetrace.pipeline.registry import FinalizedTraceSink, TraceRegistry
from pipetrace.pipeline.trace import RecordResult


_LOGGER = get_logger("pipetrace.recorder")


def _coerce_timestamp(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return int(value) if value >= 0 else None
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    return None


class StageRecorder:
    """Accept stage events from collaborators without ever raising.

    A collaborator bug (unknown stage, malformed id or timestamp) is logged
    and counted as an anomaly, and the event is dropped.
    """

    def __init__(self, registry: TraceRegistry, anomalies: FinalizedTraceSink) -> None:
        self._registry = registry
        self._anomalies = anomalies

    @property
    def registry(self) -> TraceRegistry:
        return self._registry

    def _reject(self, kind: AnomalyKind, **fields: Any) -> None:
        self._anomalies.note_anomaly(kind)
        log_anomaly(_LOGGER, kind, **fields)

    def on_stage_arrival(
        self,
        trace_id: str,
        stage_name: str,
        ts: int,
    ) -> RecordResult | None:
        """Record `stage_name` for `trace_id`; returns None if the event was dropped."""

        if not isinstance(trace_id, str) or not trace_id:
            self._reject(AnomalyKind.INVALID_EVENT, reason="empty_trace_id", stage=stage_name)
            return None
        if not isinstance(stage_name, str) or stage_name not in self._registry.stages:
            self._reject(AnomalyKind.UNKNOWN_STAGE, trace_id=trace_id, stage=stage_name)
            return None
        timestamp = _coerce_timestamp(ts)
        if timestamp is None:
            self._reject(
                AnomalyKind.INVALID_EVENT,
                reason="bad_timestamp",
                trace_id=trace_id,
                stage=stage_name,
                ts=repr(ts),
            )
            return None
        return self._registry.record_arrival(trace_id, stage_name, timestamp)

    def on_ingest_arrival(self, trace_id: str, ts: int) -> RecordResult | None:
        return self.on_stage_arrival(trace_id, "ingest", ts)

    def on_transform_arrival(self, trace_id: str, ts: int) -> RecordResult | None:
        return self.on_stage_arrival(trace_id, "transform", ts)

    def on_sink_arrival(self, trace_id: str, ts: int) -> RecordResult | None:
        return self.on_stage_arrival(trace_id, "sink", ts)

    def on_event(self, event: Mapping[str, Any]) -> RecordResult | None:
        """Record a decoded `{"trace_id", "stage", "ts"}` event mapping."""

        if not isinstance(event, Mapping):
            self._reject(
                AnomalyKind.INVALID_EVENT,
                reason="not_an_object",
                payload_type=type(event).__name__,
            )
            return None
        missing = [key for key in ("trace_id", "stage", "ts") if key not in event]
        if missing:
            self._reject(AnomalyKind.INVALID_EVENT, reason="missing_fields", missing=missing)
            return None
        return self.on_stage_arrival(event["trace_id"], event["stage"], event["ts"])
