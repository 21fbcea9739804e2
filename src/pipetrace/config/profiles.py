"""Built-in run profiles matching the common load-test shapes."""

from __future__ import annotations

from dataclasses import dataclass

from pipetrace.config.schema import EngineConfig, SyntheticLoadConfig


@dataclass(frozen=True, slots=True)
class ProfileSpec:
    """Engine defaults, pass/fail thresholds and synthetic load for one profile."""

    name: str
    description: str
    deadline_per_stage_ms: int
    sweep_interval_ms: int
    recent_finalized_capacity: int
    thresholds: tuple[str, ...]
    rate_per_sec: float
    drop_rate: float
    delivery_jitter_ms: int


_PROFILES: dict[str, ProfileSpec] = {
    "baseline": ProfileSpec(
        name="baseline",
        description="Steady small-payload traffic with tight latency targets.",
        deadline_per_stage_ms=5_000,
        sweep_interval_ms=1_000,
        recent_finalized_capacity=100_000,
        thresholds=("p95<100", "p99<200", "completion_rate>0.99"),
        rate_per_sec=100.0,
        drop_rate=0.001,
        delivery_jitter_ms=0,
    ),
    "spike": ProfileSpec(
        name="spike",
        description="Sudden 10x traffic with looser targets and more dropped records.",
        deadline_per_stage_ms=10_000,
        sweep_interval_ms=1_000,
        recent_finalized_capacity=200_000,
        thresholds=("p95<300", "p99<500", "completion_rate>0.95"),
        rate_per_sec=1_000.0,
        drop_rate=0.05,
        delivery_jitter_ms=50,
    ),
    "endurance": ProfileSpec(
        name="endurance",
        description="Long-running soak over millions of records.",
        deadline_per_stage_ms=60_000,
        sweep_interval_ms=5_000,
        recent_finalized_capacity=1_000_000,
        thresholds=("p99<1000", "completion_rate>0.99"),
        rate_per_sec=200.0,
        drop_rate=0.001,
        delivery_jitter_ms=10,
    ),
}


def available_profiles() -> dict[str, ProfileSpec]:
    """Return built-in profiles by name."""

    return dict(_PROFILES)


def resolve_profile(name: str) -> ProfileSpec:
    key = name.strip().lower()
    profile = _PROFILES.get(key)
    if profile is None:
        known = ", ".join(sorted(_PROFILES))
        raise ValueError(f"Unknown profile '{name}'. Available profiles: {known}")
    return profile


def apply_profile(config: EngineConfig, profile_name: str) -> ProfileSpec:
    """Overwrite sweep and memory settings on `config` from a profile."""

    profile = resolve_profile(profile_name)
    config.sweep.deadline_per_stage_ms = profile.deadline_per_stage_ms
    config.sweep.interval_ms = profile.sweep_interval_ms
    config.recent_finalized_capacity = profile.recent_finalized_capacity
    return profile


def apply_profile_load(load: SyntheticLoadConfig, profile_name: str) -> ProfileSpec:
    """Overwrite synthetic traffic shape on `load` from a profile."""

    profile = resolve_profile(profile_name)
    load.rate_per_sec = profile.rate_per_sec
    load.drop_rate = profile.drop_rate
    load.delivery_jitter_ms = profile.delivery_jitter_ms
    return profile
