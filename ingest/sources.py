from __future__ import annotations

import csv
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

import numpy as np

from common.errors import SensorUnavailable


RawEvent = Tuple[str, Dict[str, Any], float]

CSV_HEADER = ["t", "ax", "ay", "az", "gx", "gy", "gz", "lat", "lon", "alt", "hpa"]


def _opt(row: Dict[str, str], key: str) -> Optional[str]:
    v = row.get(key)
    return v if v not in (None, "") else None


@dataclass
class CSVReplaySource:
    """
    Replay sensor rows from a CSV file with columns:
        t, ax, ay, az, gx, gy, gz [, lat, lon, alt] [, hpa]
    Empty GPS/barometer cells mean "no reading on this row".
    If realtime=True, sleeps the row-to-row interval; else yields as fast as possible.
    """
    path: str
    realtime: bool = False
    scale_dt: float = 1.0  # multiply intervals by this factor (e.g., 0.5 = 2x speed)

    def events(self) -> Iterator[RawEvent]:
        if not Path(self.path).exists():
            raise SensorUnavailable(f"sensor replay file not found: {self.path}", source="replay")
        last_t: Optional[float] = None
        with open(self.path, newline="") as f:
            r = csv.DictReader(f)
            for row in r:
                t = float(row.get("t") or 0.0)
                if self.realtime and last_t is not None and t > last_t:
                    time.sleep((t - last_t) * float(self.scale_dt))
                last_t = t
                if _opt(row, "ax") is not None:
                    yield ("accelerometer", {"x": row["ax"], "y": row.get("ay"), "z": row.get("az")}, t)
                if _opt(row, "gx") is not None:
                    yield ("gyroscope", {"x": row["gx"], "y": row.get("gy"), "z": row.get("gz")}, t)
                if _opt(row, "lat") is not None:
                    yield ("gps", {"lat": row["lat"], "lon": row.get("lon"), "alt": row.get("alt") or 0.0}, t)
                if _opt(row, "hpa") is not None:
                    yield ("barometer", {"hpa": row["hpa"]}, t)


@dataclass
class SyntheticSource:
    """
    Procedural sensor generator: a gentle along-track acceleration pulse with
    lateral sway, plus periodic GPS fixes and barometer readings.

    Args:
        rate_hz: inertial sample rate
        accel_mps2: along-track acceleration amplitude
        accel_hz: frequency of the acceleration modulation
        yaw_rate_dps: yaw rate amplitude (deg/s)
        accel_noise_mps2: accelerometer white noise std (m/s^2)
        gyro_noise_dps: gyro white noise std (deg/s)
        gps_period_s: seconds between synthetic fixes (0 disables)
        baro_period_s: seconds between barometer readings (0 disables)
        origin: (lat, lon, alt) of the synthetic track
        seed: RNG seed (the stream is reproducible)
    """
    rate_hz: int = 100
    accel_mps2: float = 0.5
    accel_hz: float = 0.05
    yaw_rate_dps: float = 5.0
    accel_noise_mps2: float = 0.01
    gyro_noise_dps: float = 0.1
    gps_period_s: float = 1.0
    baro_period_s: float = 0.5
    origin: Tuple[float, float, float] = (43.2965, 5.3698, 10.0)
    seed: int = 1234

    def events(self, duration_s: Optional[float] = None, realtime: bool = False, t0: float = 0.0) -> Iterator[RawEvent]:
        dt = 1.0 / max(1, self.rate_hz)
        rng = np.random.default_rng(self.seed)
        lat, lon, alt = self.origin
        v_e = 0.0
        k = 0
        start = time.perf_counter()
        next_gps = 0.0
        next_baro = 0.0
        while duration_s is None or k * dt < duration_s:
            ts = k * dt
            t = t0 + ts
            ax = self.accel_mps2 * math.sin(2 * math.pi * self.accel_hz * ts)
            ay = 0.1 * self.accel_mps2 * math.cos(2 * math.pi * self.accel_hz * 0.8 * ts)
            wz = math.radians(self.yaw_rate_dps) * math.sin(2 * math.pi * self.accel_hz * ts)

            accel = np.array([ax, ay, 0.0]) + rng.normal(0.0, self.accel_noise_mps2, size=3)
            gyro = np.array([0.0, 0.0, wz]) + rng.normal(0.0, math.radians(self.gyro_noise_dps), size=3)
            yield ("accelerometer", {"x": float(accel[0]), "y": float(accel[1]), "z": float(accel[2])}, t)
            yield ("gyroscope", {"x": float(gyro[0]), "y": float(gyro[1]), "z": float(gyro[2])}, t)

            # Truth track for the aiding sensors (flat-earth is fine at these speeds)
            v_e += ax * dt
            lon += math.degrees(v_e * dt / (6371000.0 * math.cos(math.radians(lat))))
            if self.gps_period_s > 0 and ts >= next_gps:
                yield ("gps", {"lat": lat, "lon": lon, "alt": alt}, t)
                next_gps += self.gps_period_s
            if self.baro_period_s > 0 and ts >= next_baro:
                hpa = 1013.25 * (1.0 - 2.25577e-5 * alt) ** 5.25588 + float(rng.normal(0.0, 0.01))
                yield ("barometer", {"hpa": hpa}, t)
                next_baro += self.baro_period_s

            k += 1
            if realtime:
                sleep_s = k * dt - (time.perf_counter() - start)
                if sleep_s > 0:
                    time.sleep(sleep_s)


def write_sensor_csv(path: str, events: Iterable[RawEvent], max_rows: int = 0) -> int:
    """
    Write a raw event stream to the replay CSV format, one row per timestamp.
    If max_rows > 0, stops after that many rows. Returns the number of rows.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    rows: Dict[float, Dict[str, Any]] = {}
    for source, fields, t in events:
        row = rows.setdefault(t, {"t": t})
        if source == "accelerometer":
            row.update(ax=fields["x"], ay=fields["y"], az=fields["z"])
        elif source == "gyroscope":
            row.update(gx=fields["x"], gy=fields["y"], gz=fields["z"])
        elif source == "gps":
            row.update(lat=fields["lat"], lon=fields["lon"], alt=fields["alt"])
        elif source == "barometer":
            row.update(hpa=fields["hpa"])
        if max_rows > 0 and len(rows) > max_rows:
            rows.pop(t)
            break
    with open(p, "w", newline="") as f:
        w = csv.DictWriter(f, fieldnames=CSV_HEADER)
        w.writeheader()
        for t in sorted(rows):
            w.writerow(rows[t])
    return len(rows)
