"""Anomaly taxonomy shared by the registry, recorder and aggregator."""

from __future__ import annotations

from enum import Enum
import logging
from typing import Any

from pipetrace.observability.logging import log_event


class AnomalyKind(str, Enum):
    """Recoverable conditions that are logged and counted, never raised."""

    UNKNOWN_STAGE = "unknown_stage"
    INVALID_EVENT = "invalid_event"
    DUPLICATE_ARRIVAL = "duplicate_arrival"
    FINALIZED_TRACE_REENTRY = "finalized_trace_reentry"
    CLOCK_SKEW_NEGATIVE_DURATION = "clock_skew_negative_duration"
    SWEEP_ERROR = "sweep_error"


# Duplicates are routine under at-least-once delivery; keep them out of WARNING.
_LEVELS: dict[AnomalyKind, int] = {
    AnomalyKind.UNKNOWN_STAGE: logging.WARNING,
    AnomalyKind.INVALID_EVENT: logging.WARNING,
    AnomalyKind.DUPLICATE_ARRIVAL: logging.DEBUG,
    AnomalyKind.FINALIZED_TRACE_REENTRY: logging.WARNING,
    AnomalyKind.CLOCK_SKEW_NEGATIVE_DURATION: logging.WARNING,
    AnomalyKind.SWEEP_ERROR: logging.ERROR,
}


def log_anomaly(logger: logging.Logger, kind: AnomalyKind, **fields: Any) -> None:
    """Log one anomaly as an `anomaly` event tagged with its kind."""

    log_event(logger, "anomaly", level=_LEVELS[kind], anomaly=kind.value, **fields)
