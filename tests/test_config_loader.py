import json

import pytest

from blowout.audio.errors import ConfigError
from blowout.config.config_loader import DEFAULT_CONFIG, DetectionSettings, deep_update, load_config


def test_defaults_when_no_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert config == DEFAULT_CONFIG
    config["detection"]["required_frames"] = 99
    assert DEFAULT_CONFIG["detection"]["required_frames"] == 7


def test_yaml_overrides_are_merged(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("detection:\n  required_frames: 5\n  decay_policy: reset\naudio:\n  device_index: 2\n", encoding="utf-8")
    config = load_config(str(path))
    assert config["detection"]["required_frames"] == 5
    assert config["detection"]["min_threshold"] == 0.012
    assert config["audio"]["device_index"] == 2
    assert config["audio"]["frame_size"] == 1024


def test_json_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"detection": {"std_factor": 4.5}}), encoding="utf-8")
    assert load_config(str(path))["detection"]["std_factor"] == 4.5


def test_explicit_missing_file_is_an_error(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_file_is_an_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_deep_update_does_not_mutate_base():
    base = {"a": {"b": 1, "c": 2}}
    merged = deep_update(base, {"a": {"b": 5}})
    assert merged == {"a": {"b": 5, "c": 2}}
    assert base == {"a": {"b": 1, "c": 2}}


def test_settings_defaults():
    s = DetectionSettings.from_config(DEFAULT_CONFIG)
    assert s.baseline_window_ms == 200
    assert s.required_frames == 7
    assert s.min_threshold == 0.012
    assert s.std_factor == 3.0
    assert s.fallback_timeout_ms == 2000
    assert s.decay_policy == "decay"


def test_settings_coerce_strings():
    s = DetectionSettings.from_config({"detection": {"required_frames": "9", "min_threshold": "0.02", "decay_policy": "RESET"}})
    assert s.required_frames == 9
    assert s.min_threshold == 0.02
    assert s.decay_policy == "reset"


@pytest.mark.parametrize(
    "override",
    [
        {"required_frames": 0},
        {"baseline_window_ms": 0},
        {"min_threshold": -0.1},
        {"decay_policy": "halve"},
        {"std_factor": "loud"},
    ],
)
def test_settings_reject_bad_values(override):
    with pytest.raises(ConfigError):
        DetectionSettings.from_config({"detection": override})
