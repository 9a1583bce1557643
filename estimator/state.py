"""
Navigation state layout (version 1) and its read-only view.

    idx    name                                   units
    0-2    lat, lon, alt                          deg, deg, m
    3-5    v_east (along-track), v_north, v_up    m/s
    6-9    quaternion w, x, y, z                  body -> local level, unit norm
    10-12  accelerometer bias                     m/s^2
    13-15  gyroscope bias                         rad/s
    16-21  scale factors ax, ay, az, gx, gy, gz   -
    22     barometric climb rate                  m/s
    23     barometric reference pressure          hPa (0 = none yet)
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Tuple

import numpy as np

from common.geo import lla_to_ecef


LAYOUT_VERSION = 1
N_STATES = 24

POS = slice(0, 3)
VEL = slice(3, 6)
QUAT = slice(6, 10)
ACC_BIAS = slice(10, 13)
GYRO_BIAS = slice(13, 16)
ACC_SCALE = slice(16, 19)
GYRO_SCALE = slice(19, 22)
BARO_CLIMB = 22
BARO_REF = 23

LAT, LON, ALT = 0, 1, 2
V_EAST, V_NORTH, V_UP = 3, 4, 5


def initial_vector(lat: float, lon: float, alt: float) -> np.ndarray:
    x = np.zeros(N_STATES, dtype=float)
    x[POS] = (lat, lon, alt)
    x[QUAT] = (1.0, 0.0, 0.0, 0.0)
    x[ACC_SCALE] = 1.0
    x[GYRO_SCALE] = 1.0
    return x


def quat_mul(p: np.ndarray, q: np.ndarray) -> np.ndarray:
    """Hamilton product p ⊗ q, both (w, x, y, z)."""
    pw, px, py, pz = p
    qw, qx, qy, qz = q
    return np.array(
        [
            pw * qw - px * qx - py * qy - pz * qz,
            pw * qx + px * qw + py * qz - pz * qy,
            pw * qy - px * qz + py * qw + pz * qx,
            pw * qz + px * qy - py * qx + pz * qw,
        ],
        dtype=float,
    )


def quat_normalize(q: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(q))
    if not np.isfinite(n) or n == 0.0:
        return np.array([1.0, 0.0, 0.0, 0.0])
    return q / n


def rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate body-frame v into the local east/north/up frame by unit quaternion q."""
    w, x, y, z = q
    R = np.array(
        [
            [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - z * w), 2.0 * (x * z + y * w)],
            [2.0 * (x * y + z * w), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - x * w)],
            [2.0 * (x * z - y * w), 2.0 * (y * z + x * w), 1.0 - 2.0 * (x * x + y * y)],
        ],
        dtype=float,
    )
    return R @ np.asarray(v, dtype=float)


def _t(a: np.ndarray) -> Tuple[float, ...]:
    return tuple(float(v) for v in a)


@dataclass(frozen=True, slots=True)
class NavigationState:
    """Immutable copy of the estimator state vector, decoded by layout v1."""
    lat: float
    lon: float
    alt: float
    velocity: Tuple[float, float, float]
    quaternion: Tuple[float, float, float, float]
    accel_bias: Tuple[float, float, float]
    gyro_bias: Tuple[float, float, float]
    scale_factors: Tuple[float, ...]
    baro_climb_mps: float
    baro_ref_hpa: float
    layout_version: int = LAYOUT_VERSION

    @classmethod
    def from_vector(cls, x: np.ndarray) -> "NavigationState":
        if x.shape != (N_STATES,):
            raise ValueError(f"state vector must have shape ({N_STATES},)")
        return cls(
            lat=float(x[LAT]),
            lon=float(x[LON]),
            alt=float(x[ALT]),
            velocity=_t(x[VEL]),  # type: ignore[arg-type]
            quaternion=_t(x[QUAT]),  # type: ignore[arg-type]
            accel_bias=_t(x[ACC_BIAS]),  # type: ignore[arg-type]
            gyro_bias=_t(x[GYRO_BIAS]),  # type: ignore[arg-type]
            scale_factors=_t(x[16:22]),
            baro_climb_mps=float(x[BARO_CLIMB]),
            baro_ref_hpa=float(x[BARO_REF]),
        )

    @property
    def position(self) -> Tuple[float, float, float]:
        return (self.lat, self.lon, self.alt)

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))

    @property
    def ecef(self) -> Tuple[float, float, float]:
        e = lla_to_ecef(self.lat, self.lon, self.alt)
        return (float(e[0]), float(e[1]), float(e[2]))

    def to_vector(self) -> np.ndarray:
        x = np.empty(N_STATES, dtype=float)
        x[POS] = self.position
        x[VEL] = self.velocity
        x[QUAT] = self.quaternion
        x[ACC_BIAS] = self.accel_bias
        x[GYRO_BIAS] = self.gyro_bias
        x[16:22] = self.scale_factors
        x[BARO_CLIMB] = self.baro_climb_mps
        x[BARO_REF] = self.baro_ref_hpa
        return x

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["ecef"] = list(self.ecef)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NavigationState":
        return cls(
            lat=float(d["lat"]),
            lon=float(d["lon"]),
            alt=float(d["alt"]),
            velocity=tuple(float(v) for v in d["velocity"]),  # type: ignore[arg-type]
            quaternion=tuple(float(v) for v in d["quaternion"]),  # type: ignore[arg-type]
            accel_bias=tuple(float(v) for v in d["accel_bias"]),  # type: ignore[arg-type]
            gyro_bias=tuple(float(v) for v in d["gyro_bias"]),  # type: ignore[arg-type]
            scale_factors=tuple(float(v) for v in d["scale_factors"]),
            baro_climb_mps=float(d["baro_climb_mps"]),
            baro_ref_hpa=float(d["baro_ref_hpa"]),
            layout_version=int(d.get("layout_version", LAYOUT_VERSION)),
        )
