"""Load and validate engine configs."""

from __future__ import annotations

from dataclasses import replace
import importlib
import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any

from pipetrace.config.profiles import apply_profile
from pipetrace.config.schema import (
    EngineConfig,
    HistogramConfig,
    SweepConfig,
)
from pipetrace.metrics.histogram import validate_bucket_bounds
from pipetrace.pipeline.stage import StageDefinition


def _load_module(module_ref: str) -> ModuleType:
    candidate = Path(module_ref).expanduser()
    if candidate.exists():
        spec = importlib.util.spec_from_file_location(f"_pipetrace_cfg_{candidate.stem}", candidate)
        if spec is None or spec.loader is None:
            raise RuntimeError(f"Could not load module from path: {candidate}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(module_ref)


def load_object(reference: str) -> Any:
    """Resolve a `module_or_path:attribute.path` reference."""

    if ":" not in reference:
        raise ValueError("Config reference must be in form 'module_or_path:attribute'.")
    module_ref, attr_path = reference.rsplit(":", maxsplit=1)
    value: Any = _load_module(module_ref)
    for part in attr_path.split("."):
        value = getattr(value, part)
    return value


def validate_engine_config(config: EngineConfig) -> StageDefinition:
    """Check every field and return the resolved stage definition."""

    stages = StageDefinition.of(config.stages)
    sweep = config.sweep
    if int(sweep.deadline_per_stage_ms) <= 0:
        raise ValueError(
            f"sweep.deadline_per_stage_ms must be > 0, got {sweep.deadline_per_stage_ms}"
        )
    if int(sweep.interval_ms) <= 0:
        raise ValueError(f"sweep.interval_ms must be > 0, got {sweep.interval_ms}")
    if sweep.deadline_basis not in ("last_arrival", "started"):
        raise ValueError(
            f"sweep.deadline_basis must be 'last_arrival' or 'started', "
            f"got {sweep.deadline_basis!r}"
        )
    validate_bucket_bounds(config.histogram.bounds_ms)
    if config.shard_count <= 0:
        raise ValueError(f"shard_count must be > 0, got {config.shard_count}")
    if config.recent_finalized_capacity < 0:
        raise ValueError(
            f"recent_finalized_capacity must be >= 0, got {config.recent_finalized_capacity}"
        )
    if config.in_flight_soft_limit is not None and config.in_flight_soft_limit <= 0:
        raise ValueError(
            f"in_flight_soft_limit must be > 0 when set, got {config.in_flight_soft_limit}"
        )
    return stages


def _copy_engine_config(config: EngineConfig) -> EngineConfig:
    """Detach `config` from the object a config module exports."""

    return replace(
        config,
        stages=list(config.stages),
        sweep=replace(config.sweep),
        histogram=replace(config.histogram, bounds_ms=list(config.histogram.bounds_ms)),
    )


def engine_config_from_dict(payload: dict[str, Any]) -> EngineConfig:
    """Reconstruct an EngineConfig from a plain dictionary."""

    base = EngineConfig()
    sweep = payload.get("sweep", {})
    histogram = payload.get("histogram", {})
    if not isinstance(sweep, dict) or not isinstance(histogram, dict):
        raise TypeError("'sweep' and 'histogram' must be objects.")

    soft_limit = payload.get("in_flight_soft_limit")
    config = EngineConfig(
        stages=list(payload.get("stages", base.stages)),
        sweep=SweepConfig(**sweep),
        histogram=HistogramConfig(**histogram) if histogram else HistogramConfig(),
        shard_count=int(payload.get("shard_count", base.shard_count)),
        recent_finalized_capacity=int(
            payload.get("recent_finalized_capacity", base.recent_finalized_capacity)
        ),
        in_flight_soft_limit=None if soft_limit is None else int(soft_limit),
    )
    validate_engine_config(config)
    return config


def load_engine_config(
    config_ref: str | None = None,
    profile: str | None = None,
) -> EngineConfig:
    """Load an EngineConfig from a reference (or defaults), then apply a profile."""

    if config_ref is None:
        config = EngineConfig()
    else:
        loaded = load_object(config_ref)
        if isinstance(loaded, dict):
            config = engine_config_from_dict(loaded)
        elif isinstance(loaded, EngineConfig):
            config = _copy_engine_config(loaded)
        else:
            raise TypeError(
                f"Config reference must resolve to EngineConfig or dict, "
                f"got {type(loaded).__name__}."
            )

    if profile is not None:
        apply_profile(config, profile)
    validate_engine_config(config)
    return config

