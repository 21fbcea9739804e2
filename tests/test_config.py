"""Tests for config loading, validation and profiles."""

import sys

import pytest

from pipetrace.config.loader import (
    engine_config_from_dict,
    load_engine_config,
    load_object,
    validate_engine_config,
)
from pipetrace.config.profiles import (
    apply_profile,
    apply_profile_load,
    available_profiles,
    resolve_profile,
)
from pipetrace.config.schema import EngineConfig, HistogramConfig, SweepConfig, SyntheticLoadConfig


CONFIG_MODULE = """
from pipetrace.config.schema import EngineConfig, SweepConfig

ENGINE = EngineConfig(
    stages=["recv", "parse", "store"],
    sweep=SweepConfig(interval_ms=250, deadline_per_stage_ms=2000),
)
RAW = {"stages": ["a", "b"], "sweep": {"interval_ms": 10, "deadline_per_stage_ms": 20}}
NOT_A_CONFIG = 42
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "engine_cfg.py"
    path.write_text(CONFIG_MODULE, encoding="utf-8")
    return path


class TestLoader:
    """Test resolving config references."""

    def test_load_object_from_path(self, config_file):
        engine = load_object(f"{config_file}:ENGINE")
        assert engine.stages == ["recv", "parse", "store"]

    def test_load_object_from_module(self):
        assert load_object("pipetrace.config.schema:SweepConfig") is SweepConfig

    def test_reference_requires_colon(self):
        with pytest.raises(ValueError):
            load_object("pipetrace.config.schema")

    def test_load_engine_config_from_dict(self, config_file):
        config = load_engine_config(f"{config_file}:RAW")
        assert config.stages == ["a", "b"]
        assert config.sweep.deadline_per_stage_ms == 20

    def test_load_engine_config_with_profile(self, config_file):
        config = load_engine_config(f"{config_file}:ENGINE", profile="spike")
        assert config.stages == ["recv", "parse", "store"]
        assert config.sweep.deadline_per_stage_ms == 10_000
        assert config.recent_finalized_capacity == 200_000

    def test_profile_leaves_exported_config_untouched(self, tmp_path, monkeypatch):
        (tmp_path / "shared_engine_cfg.py").write_text(CONFIG_MODULE, encoding="utf-8")
        monkeypatch.syspath_prepend(str(tmp_path))
        monkeypatch.delitem(sys.modules, "shared_engine_cfg", raising=False)

        config = load_engine_config("shared_engine_cfg:ENGINE", profile="spike")
        exported = load_object("shared_engine_cfg:ENGINE")

        assert config is not exported
        assert config.sweep.deadline_per_stage_ms == 10_000
        assert exported.sweep.deadline_per_stage_ms == 2000
        assert exported.sweep.interval_ms == 250
        assert exported.recent_finalized_capacity == 100_000
        sys.modules.pop("shared_engine_cfg", None)

    def test_load_engine_config_rejects_other_types(self, config_file):
        with pytest.raises(TypeError):
            load_engine_config(f"{config_file}:NOT_A_CONFIG")

    def test_defaults(self):
        config = load_engine_config()
        assert config.stages == ["ingest", "transform", "sink"]
        assert config.sweep.deadline_basis == "last_arrival"


class TestValidation:
    """Test engine config validation."""

    def test_from_dict_round_trips_fields(self):
        config = engine_config_from_dict(
            {
                "stages": ["a", "b", "c"],
                "sweep": {"interval_ms": 5, "deadline_per_stage_ms": 50, "deadline_basis": "started"},
                "histogram": {"bounds_ms": [1, 10, 100]},
                "shard_count": 4,
                "in_flight_soft_limit": 10,
            }
        )
        assert config.histogram.bounds_ms == [1, 10, 100]
        assert config.sweep.deadline_basis == "started"
        assert config.shard_count == 4
        assert config.in_flight_soft_limit == 10

    def test_from_dict_rejects_unknown_sweep_field(self):
        with pytest.raises(TypeError):
            engine_config_from_dict({"sweep": {"deadline": 5}})

    @pytest.mark.parametrize(
        "config",
        [
            EngineConfig(stages=["a"]),
            EngineConfig(sweep=SweepConfig(interval_ms=0)),
            EngineConfig(sweep=SweepConfig(deadline_per_stage_ms=-5)),
            EngineConfig(sweep=SweepConfig(deadline_basis="finished")),
            EngineConfig(histogram=HistogramConfig(bounds_ms=[10, 5])),
            EngineConfig(shard_count=0),
            EngineConfig(recent_finalized_capacity=-1),
            EngineConfig(in_flight_soft_limit=0),
        ],
    )
    def test_invalid_configs(self, config):
        with pytest.raises(ValueError):
            validate_engine_config(config)


class TestProfiles:
    """Test built-in run profiles."""

    def test_builtin_profiles(self):
        assert set(available_profiles()) == {"baseline", "spike", "endurance"}
        assert resolve_profile(" Baseline ").thresholds == (
            "p95<100",
            "p99<200",
            "completion_rate>0.99",
        )

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            resolve_profile("soak")

    def test_apply_profile_updates_engine_and_load(self):
        config = EngineConfig()
        load = SyntheticLoadConfig()
        apply_profile(config, "endurance")
        apply_profile_load(load, "spike")

        assert config.sweep.interval_ms == 5_000
        assert config.sweep.deadline_per_stage_ms == 60_000
        assert load.rate_per_sec == 1_000.0
        assert load.drop_rate == 0.05
        assert load.delivery_jitter_ms == 50
