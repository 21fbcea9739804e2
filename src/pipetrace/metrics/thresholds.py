"""Pass/fail thresholds over a report view.

Expressions look like `p95<100`, `ingest->transform:p99<=250` or
`completion_rate>0.99`. Without a target, a latency metric applies to every
transition and to end-to-end.
"""

from __future__ import annotations

from dataclasses import dataclass
import operator
import re
from typing import Any, Callable, Iterable

from pipetrace.metrics.aggregator import END_TO_END, ReportView


_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
}
_LATENCY_METRICS = ("count", "min", "max", "mean", "p50", "p95", "p99")
_RATE_METRICS = ("completion_rate", "timeout_rate")

_EXPRESSION = re.compile(
    r"^\s*(?:(?P<target>[^:\s]+)\s*:\s*)?"
    r"(?P<metric>[a-z_0-9]+)\s*"
    r"(?P<op><=|>=|==|<|>)\s*"
    r"(?P<limit>-?\d+(?:\.\d+)?)\s*$"
)


@dataclass(frozen=True, slots=True)
class Threshold:
    target: str | None
    metric: str
    op: str
    limit: float


@dataclass(frozen=True, slots=True)
class ThresholdResult:
    expression: str
    target: str
    metric: str
    observed: float | None
    passed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "expression": self.expression,
            "target": self.target,
            "metric": self.metric,
            "observed": self.observed,
            "passed": self.passed,
        }


def parse_threshold(expression: str) -> Threshold:
    match = _EXPRESSION.match(expression)
    if match is None:
        raise ValueError(f"Malformed threshold expression: {expression!r}")
    metric = match.group("metric")
    target = match.group("target")
    if metric not in _LATENCY_METRICS and metric not in _RATE_METRICS:
        known = ", ".join(_LATENCY_METRICS + _RATE_METRICS)
        raise ValueError(f"Unknown threshold metric '{metric}'. Known: {known}")
    if metric in _RATE_METRICS and target is not None:
        raise ValueError(f"Rate metric '{metric}' does not take a target: {expression!r}")
    return Threshold(
        target=target,
        metric=metric,
        op=match.group("op"),
        limit=float(match.group("limit")),
    )


def _rate(view: ReportView, metric: str) -> float | None:
    completion = view.outcomes.completion_rate
    if completion is None or metric == "completion_rate":
        return completion
    return view.outcomes.timed_out / view.outcomes.finalized


def _check(
    view: ReportView,
    threshold: Threshold,
    target: str,
    expression: str,
) -> ThresholdResult:
    if threshold.metric in _RATE_METRICS:
        observed = _rate(view, threshold.metric)
    else:
        stats = view.stats_for(target)
        observed = getattr(stats, threshold.metric)
    passed = observed is not None and _OPERATORS[threshold.op](float(observed), threshold.limit)
    return ThresholdResult(
        expression=expression,
        target=target,
        metric=threshold.metric,
        observed=None if observed is None else float(observed),
        passed=passed,
    )


def evaluate_thresholds(view: ReportView, expressions: Iterable[str]) -> list[ThresholdResult]:
    """Evaluate each expression; samples that are missing count as failures."""

    results: list[ThresholdResult] = []
    for expression in expressions:
        threshold = parse_threshold(expression)
        if threshold.metric in _RATE_METRICS:
            results.append(_check(view, threshold, "outcomes", expression))
            continue
        targets = (
            [threshold.target]
            if threshold.target is not None
            else [*view.per_transition, END_TO_END]
        )
        for target in targets:
            results.append(_check(view, threshold, target, expression))
    return results


def all_passed(results: Iterable[ThresholdResult]) -> bool:
    return all(result.passed for result in results)
