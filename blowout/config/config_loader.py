import copy
import json
import pathlib
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from blowout.audio.errors import ConfigError

DEFAULT_CONFIG: Dict[str, Any] = {
    "audio": {
        "device_index": None,
        "sample_rate": 44100,
        "frame_size": 1024,
        "read_timeout_sec": 0.1,
    },
    "detection": {
        "baseline_window_ms": 200,
        "required_frames": 7,
        "min_threshold": 0.012,
        "std_factor": 3.0,
        "fallback_timeout_ms": 2000,
        "decay_policy": "decay",
        "tick_interval_ms": 1000.0 / 60.0,
    },
    "celebration": {
        "enabled": True,
        "song": "sounds/happy_birthday.ogg",
        "volume": 0.8,
    },
    "logging": {
        "level": "INFO",
    },
}


def deep_update(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_update(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    config_path = pathlib.Path(path or "config.yaml")
    if not config_path.exists():
        if path is not None:
            raise ConfigError(f"Config file not found: {config_path}")
        return copy.deepcopy(DEFAULT_CONFIG)
    with config_path.open("r", encoding="utf-8") as f:
        try:
            if config_path.suffix.lower() in {".yaml", ".yml"}:
                loaded = yaml.safe_load(f) or {}
            else:
                loaded = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot parse {config_path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")
    return deep_update(DEFAULT_CONFIG, loaded)


def _coerce(section: Dict[str, Any], key: str, kind):
    value = section.get(key, DEFAULT_CONFIG["detection"][key])
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"detection.{key} must be {kind.__name__}, got {value!r}") from exc


@dataclass(frozen=True)
class DetectionSettings:
    """Tunables of the calibrate-then-detect pipeline."""

    baseline_window_ms: float = 200.0
    required_frames: int = 7
    min_threshold: float = 0.012
    std_factor: float = 3.0
    fallback_timeout_ms: float = 2000.0
    decay_policy: str = "decay"
    tick_interval_ms: float = 1000.0 / 60.0

    def __post_init__(self):
        if self.baseline_window_ms <= 0:
            raise ConfigError("baseline_window_ms must be positive")
        if self.required_frames < 1:
            raise ConfigError("required_frames must be at least 1")
        if self.min_threshold < 0:
            raise ConfigError("min_threshold must not be negative")
        if self.std_factor < 0:
            raise ConfigError("std_factor must not be negative")
        if self.fallback_timeout_ms <= 0:
            raise ConfigError("fallback_timeout_ms must be positive")
        if self.decay_policy not in ("decay", "reset"):
            raise ConfigError(f"decay_policy must be 'decay' or 'reset', got {self.decay_policy!r}")
        if self.tick_interval_ms < 0:
            raise ConfigError("tick_interval_ms must not be negative")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectionSettings":
        det = dict(config.get("detection") or {})
        # YAML/env values may arrive as strings.
        return cls(
            baseline_window_ms=_coerce(det, "baseline_window_ms", float),
            required_frames=_coerce(det, "required_frames", int),
            min_threshold=_coerce(det, "min_threshold", float),
            std_factor=_coerce(det, "std_factor", float),
            fallback_timeout_ms=_coerce(det, "fallback_timeout_ms", float),
            decay_policy=str(det.get("decay_policy", "decay")).lower(),
            tick_interval_ms=_coerce(det, "tick_interval_ms", float),
        )
