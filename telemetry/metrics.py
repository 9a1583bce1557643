from __future__ import annotations

import math
from typing import Dict, Optional, Sequence

import numpy as np

from common.errors import DomainError
from common.geo import G0
from common.types import DerivedMetrics
from estimator.state import NavigationState


C_LIGHT = 299_792_458.0        # m/s
KMH_PER_MPS = 3.6
NOMINAL_SOUND_KMH = 1234.8


def lorentz_factor(v: float) -> float:
    """
    gamma = 1 / sqrt(1 - (v/c)^2), defined only for 0 <= |v| < c.
    Anything else is a DomainError (never clamped): it means corrupted
    velocity or a unit error upstream.
    """
    v = abs(float(v))
    if not math.isfinite(v) or v >= C_LIGHT:
        raise DomainError("speed outside the domain of the Lorentz factor", detail={"speed_mps": v})
    beta = v / C_LIGHT
    return 1.0 / math.sqrt(1.0 - beta * beta)


def gamma_minus_one(v: float) -> float:
    """gamma - 1 without the cancellation of 1/sqrt(1 - b^2) - 1 at low speed."""
    gamma = lorentz_factor(v)
    beta2 = (abs(float(v)) / C_LIGHT) ** 2
    root = math.sqrt(1.0 - beta2)
    return gamma * beta2 / (1.0 + root)


class DerivedMetricsEngine:
    """
    Physical / relativistic telemetry from a NavigationState.

    Never mutates the state. Holds only the session accumulators (peak g-force,
    integrated distance, previous speed for the trapezoid).
    """

    def __init__(
        self,
        air_density: float = 1.225,
        cd_area_m2: float = 0.3,
        sound_speed_kmh: float = NOMINAL_SOUND_KMH,
    ):
        self.air_density = float(air_density)
        self.cd_area_m2 = float(cd_area_m2)
        self.nominal_sound_kmh = float(sound_speed_kmh)
        self.reset()

    @classmethod
    def from_config(cls, P: Dict) -> "DerivedMetricsEngine":
        c = P.get("metrics", {})
        return cls(
            air_density=float(c.get("air_density", 1.225)),
            cd_area_m2=float(c.get("cd_area_m2", 0.3)),
            sound_speed_kmh=float(c.get("sound_speed_kmh", NOMINAL_SOUND_KMH)),
        )

    def reset(self) -> None:
        self.peak_g = 1.0
        self.distance_m = 0.0
        self._prev_speed: Optional[float] = None

    def compute(
        self,
        state: NavigationState,
        accel: Sequence[float],
        elapsed_s: float,
        dt: float = 0.0,
        sound_speed_kmh: Optional[float] = None,
    ) -> DerivedMetrics:
        speed = state.speed
        gamma = lorentz_factor(speed)  # raises before any accumulator moves

        a_mag = float(np.linalg.norm(np.asarray(accel, dtype=float)))
        g_force = a_mag / G0 + 1.0
        if math.isfinite(g_force) and g_force > self.peak_g:
            self.peak_g = g_force

        if dt > 0:
            prev = speed if self._prev_speed is None else self._prev_speed
            self.distance_m += 0.5 * (prev + speed) * dt
        self._prev_speed = speed

        sound = self.nominal_sound_kmh
        if sound_speed_kmh is not None and math.isfinite(sound_speed_kmh) and sound_speed_kmh > 0:
            sound = float(sound_speed_kmh)

        speed_kmh = speed * KMH_PER_MPS
        elapsed_s = max(0.0, float(elapsed_s))
        return DerivedMetrics(
            speed_mps=speed,
            speed_kmh=speed_kmh,
            gamma=gamma,
            proper_time_s=elapsed_s / gamma,
            dilation_ns_per_s=gamma_minus_one(speed) * 1e9,
            g_force=g_force,
            peak_g_force=self.peak_g,
            drag_n=0.5 * self.air_density * speed * speed * self.cd_area_m2,
            percent_sound_speed=100.0 * speed_kmh / sound,
            distance_m=self.distance_m,
            elapsed_s=elapsed_s,
            sound_speed_kmh=sound,
        )
