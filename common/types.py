from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, ClassVar, Dict, Optional, Tuple, Union
import math


Vec3 = Tuple[float, float, float]


class FixStatus:
    """Positional-fix acquisition status exposed to the rendering side."""
    ACQUIRED = "acquired"
    ERROR = "error"
    UNAVAILABLE = "unavailable"


# -------------------------
# Sensor samples (tagged variant)
# -------------------------
@dataclass(frozen=True, slots=True)
class Accelerometer:
    """
    Linear acceleration (gravity removed), already dead-zoned by SensorIngest.

    Attributes:
        x, y, z: m/s^2 in the body frame.
        t: producer monotonic time (s).
        dt: delta to the previous accelerometer sample (s).
    """
    SOURCE: ClassVar[str] = "accelerometer"
    x: float
    y: float
    z: float
    t: float
    dt: float

    @property
    def vector(self) -> Vec3:
        return (self.x, self.y, self.z)

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)


@dataclass(frozen=True, slots=True)
class Gyroscope:
    """Angular rate (rad/s) in the body frame."""
    SOURCE: ClassVar[str] = "gyroscope"
    x: float
    y: float
    z: float
    t: float
    dt: float

    @property
    def vector(self) -> Vec3:
        return (self.x, self.y, self.z)


@dataclass(frozen=True, slots=True)
class GPSFix:
    """WGS84 fix: lat/lon in degrees, alt in meters."""
    SOURCE: ClassVar[str] = "gps"
    lat: float
    lon: float
    alt: float
    t: float
    dt: float


@dataclass(frozen=True, slots=True)
class Barometer:
    SOURCE: ClassVar[str] = "barometer"
    hpa: float
    t: float
    dt: float


@dataclass(frozen=True, slots=True)
class Ambient:
    """Illuminance (lux) and sound level (dB); either may be None."""
    SOURCE: ClassVar[str] = "ambient"
    lux: Optional[float]
    db: Optional[float]
    t: float
    dt: float


SensorSample = Union[Accelerometer, Gyroscope, GPSFix, Barometer, Ambient]


# -------------------------
# Derived telemetry
# -------------------------
@dataclass(frozen=True, slots=True)
class DerivedMetrics:
    """
    Physical / relativistic quantities recomputed on every publish.

    Attributes:
        speed_mps, speed_kmh: |v|
        gamma: Lorentz factor
        proper_time_s: elapsed / gamma
        dilation_ns_per_s: (gamma - 1) * 1e9
        g_force, peak_g_force: |a|/g0 + 1 and its session maximum
        drag_n: 0.5 * rho * v^2 * CdA
        percent_sound_speed: speed_kmh / sound_speed_kmh * 100
        distance_m: integrated path length
        elapsed_s: active session wallclock
        sound_speed_kmh: speed of sound used for the percentage
    """
    speed_mps: float
    speed_kmh: float
    gamma: float
    proper_time_s: float
    dilation_ns_per_s: float
    g_force: float
    peak_g_force: float
    drag_n: float
    percent_sound_speed: float
    distance_m: float
    elapsed_s: float
    sound_speed_kmh: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def display(self) -> Dict[str, str]:
        """Fixed-decimal strings for the presentation boundary."""
        return {
            "speed_kmh": f"{self.speed_kmh:.3f}",
            "gamma": f"{self.gamma:.15f}",
            "proper_time_s": f"{self.proper_time_s:.6f}",
            "dilation_ns_per_s": f"{self.dilation_ns_per_s:.6f}",
            "g_force": f"{self.g_force:.3f}",
            "peak_g_force": f"{self.peak_g_force:.3f}",
            "drag_n": f"{self.drag_n:.2f}",
            "percent_sound_speed": f"{self.percent_sound_speed:.2f}",
            "distance_m": f"{self.distance_m:.2f}",
        }


@dataclass(frozen=True, slots=True)
class AuditVerdict:
    """
    Coherence audit result.

    `uncertainty` is the bias-error heuristic compared against `threshold`;
    `position_sigma` is sqrt(trace) of the position covariance block when known.
    """
    coherent: bool
    uncertainty: float
    threshold: float
    position_sigma: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
