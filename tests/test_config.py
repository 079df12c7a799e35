import pytest

from failure_memory.config import EngineConfig, config_from_mapping, load_config


def test_defaults():
    config = EngineConfig()
    assert config.decay_factor == 0.95
    assert config.history_cap == 30
    assert config.deferral_threshold_generic == 3
    assert config.deferral_threshold_special == 2


def test_load_yaml_with_camel_case_keys(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("decayFactor: 0.9\nwindowDays: 14\ncorrelation_threshold_paired: 80\n")

    config = load_config(str(path))

    assert config.decay_factor == 0.9
    assert config.window_days == 14
    assert config.correlation_threshold_paired == 80
    assert config.history_cap == 30


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("")
    assert load_config(str(path)) == EngineConfig()


def test_unknown_key_is_rejected():
    with pytest.raises(ValueError, match="unknown configuration key"):
        config_from_mapping({"decayFactr": 0.9})


@pytest.mark.parametrize("value", [0.0, 1.0, 1.5])
def test_decay_factor_must_be_a_fraction(value):
    with pytest.raises(ValueError):
        EngineConfig(decay_factor=value)
