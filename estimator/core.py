"""
Navigation state estimator: inertial prediction with direct-injection corrections.

This is not a gain-weighted Kalman update. GPS fixes overwrite the position
components outright and the barometer nudges vertical velocity with a fixed
gain; the covariance is still propagated and kept symmetric PSD so that an
innovation/gain update can replace the injection without changing callers.
"""
from __future__ import annotations

import math
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from common.geo import EARTH_RADIUS_M, OMEGA_EARTH, advance_on_sphere, hypsometric_thickness_m
from common.logging_setup import get_logger
from estimator.state import (
    ACC_BIAS,
    ACC_SCALE,
    ALT,
    BARO_CLIMB,
    BARO_REF,
    GYRO_BIAS,
    GYRO_SCALE,
    LAT,
    LON,
    N_STATES,
    POS,
    QUAT,
    V_NORTH,
    V_UP,
    VEL,
    NavigationState,
    initial_vector,
    quat_mul,
    quat_normalize,
    rotate_vector,
)
from ingest.normalize import DEAD_ZONE_MPS2


log = get_logger("estimator")


def _vec3(v) -> Optional[np.ndarray]:
    if v is None:
        return None
    try:
        a = np.asarray(v, dtype=float).reshape(-1)
    except (TypeError, ValueError):
        return None
    if a.shape != (3,) or not np.all(np.isfinite(a)):
        return None
    return a


class StateEstimator:
    """
    Owns the 24-element navigation state and its covariance.

    Single writer: only the session consumer calls predict/correct. Bad sensor
    input is logged and dropped (methods return False), the previous state is
    kept and nothing is raised.
    """

    def __init__(
        self,
        seed_lla: Tuple[float, float, float],
        *,
        ref_lat: Optional[float] = None,
        initial_variance: float = 1e-5,
        process_noise: float = 1e-4,
        fix_variance_m2: float = 25.0,
        baro_gain: float = 0.2,
        dead_zone_mps2: float = DEAD_ZONE_MPS2,
        zupt_window_s: float = 2.0,
        zupt_speed_mps: float = 0.05,
        coast_drag: float = 0.0,
        accel_bias: Sequence[float] = (0.0, 0.0, 0.0),
        gyro_bias: Sequence[float] = (0.0, 0.0, 0.0),
        initial: Optional[NavigationState] = None,
    ):
        if initial is not None:
            self.x = initial.to_vector()
        else:
            self.x = initial_vector(*seed_lla)
            self.x[ACC_BIAS] = accel_bias
            self.x[GYRO_BIAS] = gyro_bias
        self.P = np.eye(N_STATES) * float(initial_variance)
        self.Q = np.eye(N_STATES) * float(process_noise)
        self.ref_lat = float(seed_lla[0] if ref_lat is None else ref_lat)
        self.fix_variance_m2 = float(fix_variance_m2)
        self.baro_gain = float(min(1.0, max(0.0, baro_gain)))
        self.dead_zone_mps2 = float(dead_zone_mps2)
        self.zupt_window_s = float(zupt_window_s)
        self.zupt_speed_mps = float(zupt_speed_mps)
        self.coast_drag = max(0.0, float(coast_drag))
        self.still_s = 0.0
        self.zupt_locks = 0
        self.rejected = 0
        self._coriolis_k = 2.0 * OMEGA_EARTH * math.sin(math.radians(self.ref_lat))
        self._last_accel = np.zeros(3)
        self._baro_t: Optional[float] = None

    @classmethod
    def from_config(cls, P: Dict, initial: Optional[NavigationState] = None) -> "StateEstimator":
        c = P.get("estimator", {})
        return cls(
            (float(c.get("seed_lat", 0.0)), float(c.get("seed_lon", 0.0)), float(c.get("seed_alt_m", 0.0))),
            ref_lat=c.get("ref_lat"),
            initial_variance=float(c.get("initial_variance", 1e-5)),
            process_noise=float(c.get("process_noise", 1e-4)),
            fix_variance_m2=float(c.get("fix_variance_m2", 25.0)),
            baro_gain=float(c.get("baro_gain", 0.2)),
            dead_zone_mps2=float(P.get("ingest", {}).get("dead_zone_mps2", DEAD_ZONE_MPS2)),
            zupt_window_s=float(c.get("zupt_window_s", 2.0)),
            zupt_speed_mps=float(c.get("zupt_speed_mps", 0.05)),
            coast_drag=float(c.get("coast_drag", 0.0)),
            accel_bias=c.get("accel_bias", (0.0, 0.0, 0.0)),
            gyro_bias=c.get("gyro_bias", (0.0, 0.0, 0.0)),
            initial=initial,
        )

    # ----------------------------
    # Read side
    # ----------------------------
    def state(self) -> NavigationState:
        return NavigationState.from_vector(self.x)

    def covariance(self) -> np.ndarray:
        return self.P.copy()

    def position_sigma(self) -> float:
        """sqrt(trace) of the position block (m)."""
        return float(math.sqrt(max(0.0, float(np.trace(self.P[POS, POS])))))

    @property
    def last_accel(self) -> np.ndarray:
        """Bias/scale corrected, dead-zoned acceleration used by the last predict."""
        return self._last_accel.copy()

    def _drop(self, what: str, **fields) -> bool:
        self.rejected += 1
        log.warning("Dropped %s input", what, extra={"extra": fields})
        return False

    # ----------------------------
    # Prediction
    # ----------------------------
    def predict(self, accel, gyro, dt: float) -> bool:
        """
        Advance the state by dt seconds.

        accel: linear acceleration (m/s^2), body axes; rotated into east/north/up by q
        gyro: angular rate (rad/s), body axes

        With no sensed acceleration the platform coasts (optional quadratic drag)
        until it has been still for zupt_window_s below zupt_speed_mps, at which
        point velocity is locked to zero.
        """
        a_raw = _vec3(accel)
        w_raw = _vec3(gyro)
        if a_raw is None or w_raw is None:
            return self._drop("inertial", accel=repr(accel), gyro=repr(gyro))
        try:
            dt = float(dt)
        except (TypeError, ValueError):
            return self._drop("inertial", dt=repr(dt))
        if not math.isfinite(dt) or dt <= 0:
            return self._drop("inertial", dt=dt)

        x = self.x
        a = x[ACC_SCALE] * a_raw - x[ACC_BIAS]
        a[np.abs(a) < self.dead_zone_mps2] = 0.0
        q = x[QUAT]
        a = rotate_vector(q, a)
        self._last_accel = a.copy()

        # Coriolis on the along-track axis from the lateral (north) velocity
        a_int = a.copy()
        a_int[0] += self._coriolis_k * x[V_NORTH]

        v_new = x[VEL] + a_int * dt
        still_s = self.still_s + dt if not a.any() else 0.0
        zupt = False
        if still_s > 0.0:
            speed = float(np.linalg.norm(v_new))
            if still_s >= self.zupt_window_s and speed < self.zupt_speed_mps:
                zupt = speed > 0.0
                v_new = np.zeros(3)
            elif self.coast_drag > 0.0:
                v_new = v_new * max(0.0, 1.0 - self.coast_drag * speed * dt)

        lat, lon = advance_on_sphere(
            float(x[LAT]), float(x[LON]), float(v_new[1] * dt), float(v_new[0] * dt), EARTH_RADIUS_M
        )
        alt = float(x[ALT] + v_new[2] * dt)

        w = x[GYRO_SCALE] * w_raw - x[GYRO_BIAS]
        q_new = quat_normalize(q + 0.5 * dt * quat_mul(q, np.array([0.0, w[0], w[1], w[2]])))

        if not (np.all(np.isfinite(v_new)) and math.isfinite(lat) and math.isfinite(lon) and math.isfinite(alt)):
            return self._drop("inertial", reason="non-finite result", dt=dt)

        x[VEL] = v_new
        x[LAT], x[LON], x[ALT] = lat, lon, alt
        x[QUAT] = q_new
        self.still_s = still_s
        if zupt:
            self.zupt_locks += 1
            log.debug("Zero-velocity lock", extra={"extra": {"still_s": still_s}})

        self.P = self.P + self.Q * dt
        self._symmetrize()
        return True

    # ----------------------------
    # Corrections
    # ----------------------------
    def correct_with_fix(self, lat: float, lon: float, alt: float) -> bool:
        """Direct injection: position := fix, exactly."""
        try:
            z = (float(lat), float(lon), float(alt))
        except (TypeError, ValueError):
            return self._drop("fix", lat=repr(lat), lon=repr(lon), alt=repr(alt))
        if not all(math.isfinite(v) for v in z) or not (-90.0 <= z[0] <= 90.0) or not (-180.0 <= z[1] <= 180.0):
            return self._drop("fix", lat=z[0], lon=z[1], alt=z[2])

        self.x[LAT], self.x[LON], self.x[ALT] = z
        # Position block becomes the fix noise; zero cross terms keep P PSD
        self.P[POS, :] = 0.0
        self.P[:, POS] = 0.0
        self.P[POS, POS] = np.eye(3) * self.fix_variance_m2
        return True

    def correct_with_pressure(self, hpa: float, t: float, temperature_c: float = 15.0) -> bool:
        """
        Barometric vertical-velocity adjustment.

        The hypsometric thickness between the reference pressure and this reading,
        over the time between them, is a climb rate; v_up moves toward it by
        `baro_gain`. The first reading only sets the reference.
        """
        try:
            hpa = float(hpa)
            t = float(t)
        except (TypeError, ValueError):
            return self._drop("pressure", hpa=repr(hpa), t=repr(t))
        if not (math.isfinite(hpa) and math.isfinite(t)) or hpa <= 0:
            return self._drop("pressure", hpa=hpa, t=t)

        ref = float(self.x[BARO_REF])
        if ref <= 0.0 or self._baro_t is None or t <= self._baro_t:
            self.x[BARO_REF] = hpa
            self._baro_t = t if self._baro_t is None else max(t, self._baro_t)
            return True

        climb = hypsometric_thickness_m(ref, hpa, temperature_c) / (t - self._baro_t)
        if not math.isfinite(climb):
            return self._drop("pressure", hpa=hpa, reason="non-finite climb rate")

        k = self.baro_gain
        self.x[BARO_CLIMB] = climb
        self.x[V_UP] += k * (climb - self.x[V_UP])
        self.x[BARO_REF] = hpa
        self._baro_t = t

        # Congruence scaling of the v_up row/column keeps P PSD
        s = math.sqrt(1.0 - k)
        self.P[V_UP, :] *= s
        self.P[:, V_UP] *= s
        self._symmetrize()
        return True

    def _symmetrize(self) -> None:
        self.P = 0.5 * (self.P + self.P.T)
