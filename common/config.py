from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

# Built-in defaults; a params.yaml only needs to carry the keys it changes.
DEFAULTS: Dict[str, Dict[str, Any]] = {
    "estimator": {
        "seed_lat": 43.2965,
        "seed_lon": 5.3698,
        "seed_alt_m": 0.0,
        "ref_lat": None,              # None -> seed_lat
        "initial_variance": 1e-5,
        "process_noise": 1e-4,        # per-second diagonal Q
        "fix_variance_m2": 25.0,
        "baro_gain": 0.2,
        "zupt_window_s": 2.0,         # stillness needed before the zero-velocity lock
        "zupt_speed_mps": 0.05,
        "coast_drag": 0.0,            # quadratic coasting loss (1/m); 0 keeps velocity
        "accel_bias": [0.0, 0.0, 0.0],
        "gyro_bias": [0.0, 0.0, 0.0],
    },
    "ingest": {
        "dead_zone_mps2": 0.005,
        "default_dt_s": 0.010,
    },
    "metrics": {
        "air_density": 1.225,
        "cd_area_m2": 0.3,
        "sound_speed_kmh": 1234.8,
    },
    "audit": {
        "bias_error": 0.001,
        "threshold": 0.005,
    },
    "session": {
        "tick_s": 0.010,
        "temperature_c": 15.0,
        "ephemeris_period_s": 60.0,
        "event_jerk_mps3": 5.0,
        "event_g": 1.5,
        "max_events": 1000,
        "export_dir": "logs",
    },
    "timesync": {
        "enabled": True,
        "url": "https://worldtimeapi.org/api/timezone/Etc/UTC",
        "timeout_s": 5.0,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8000,
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Optional[str] = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load params.yaml over the built-in defaults.
    A missing file (or path=None) yields the defaults unchanged.
    """
    if path is None or not Path(path).exists():
        return copy.deepcopy(DEFAULTS)
    with open(path, "r") as f:
        user = yaml.safe_load(f) or {}
    if not isinstance(user, dict):
        raise ValueError(f"config root must be a mapping: {path}")
    return _merge(DEFAULTS, user)
