"""Fixed-bucket latency histogram.

Memory is O(bucket count) regardless of how many samples are recorded, so
multi-hour runs over millions of traces cost the same as a smoke test.
Bucket `i` covers `(bounds[i-1], bounds[i]]`; bucket 0 also holds zero and
the final bucket collects everything above the largest bound.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np


DEFAULT_MIN_MS = 1
DEFAULT_MAX_MS = 60_000
DEFAULT_BUCKETS = 128


def log_bucket_bounds(
    min_ms: int = DEFAULT_MIN_MS,
    max_ms: int = DEFAULT_MAX_MS,
    buckets: int = DEFAULT_BUCKETS,
) -> list[int]:
    """Logarithmically spaced integer upper bounds from `min_ms` to `max_ms`.

    Rounding collapses neighbouring bounds at the low end, so the result can be
    shorter than `buckets`.
    """

    if min_ms <= 0:
        raise ValueError(f"min_ms must be > 0, got {min_ms}")
    if max_ms <= min_ms:
        raise ValueError(f"max_ms must be > min_ms, got {max_ms} <= {min_ms}")
    if buckets < 2:
        raise ValueError(f"buckets must be >= 2, got {buckets}")

    raw = np.geomspace(min_ms, max_ms, num=buckets)
    bounds = np.unique(np.rint(raw).astype(np.int64))
    bounds[0] = min_ms
    bounds[-1] = max_ms
    return [int(value) for value in bounds]


def default_bucket_bounds() -> list[int]:
    return log_bucket_bounds()


def validate_bucket_bounds(bounds: Sequence[int]) -> list[int]:
    """Return `bounds` as ints, raising `ValueError` unless strictly ascending."""

    if len(bounds) == 0:
        raise ValueError("Histogram bounds must not be empty.")
    out: list[int] = []
    for value in bounds:
        if isinstance(value, bool) or int(value) != value:
            raise ValueError(f"Histogram bounds must be integers, got {value!r}")
        if value <= 0:
            raise ValueError(f"Histogram bounds must be positive, got {value}")
        if out and value <= out[-1]:
            raise ValueError(
                f"Histogram bounds must be strictly ascending, got {value} after {out[-1]}"
            )
        out.append(int(value))
    return out


class LatencyHistogram:
    """Bucket counters over a fixed set of upper bounds.

    Not synchronized; callers that share one instance across threads guard it
    (see `StatsAggregator`).
    """

    __slots__ = ("_bounds", "_counts", "_total")

    def __init__(self, bounds_ms: Sequence[int]) -> None:
        self._bounds = np.asarray(validate_bucket_bounds(bounds_ms), dtype=np.float64)
        self._counts = np.zeros(len(self._bounds) + 1, dtype=np.int64)
        self._total = 0

    @property
    def bounds(self) -> list[int]:
        return [int(value) for value in self._bounds]

    @property
    def total(self) -> int:
        return self._total

    def bucket_index(self, value: float) -> int:
        return int(np.searchsorted(self._bounds, value, side="left"))

    def record(self, value: float) -> int:
        """Count one non-negative sample and return its bucket index."""

        if value < 0:
            raise ValueError(f"Histogram samples must be >= 0, got {value}")
        idx = self.bucket_index(value)
        self._counts[idx] += 1
        self._total += 1
        return idx

    def counts(self) -> list[int]:
        return [int(value) for value in self._counts]

    def quantiles(self, percents: Sequence[float]) -> list[float | None]:
        """Upper bound of the bucket holding each requested percentile.

        The overflow bucket has no upper bound and reports `math.inf`; callers
        clamp against the observed maximum. Returns `None` entries when empty.
        """

        if self._total == 0:
            return [None for _ in percents]

        cumulative = np.cumsum(self._counts)
        out: list[float | None] = []
        for pct in percents:
            if not 0 < pct <= 100:
                raise ValueError(f"Percentile must be in (0, 100], got {pct}")
            rank = max(1, math.ceil(pct * self._total / 100.0))
            idx = int(np.searchsorted(cumulative, rank, side="left"))
            if idx >= len(self._bounds):
                out.append(math.inf)
            else:
                out.append(float(self._bounds[idx]))
        return out

    def quantile(self, pct: float) -> float | None:
        return self.quantiles([pct])[0]
