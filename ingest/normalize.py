from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from common.errors import InvalidSample, NonPositiveTimestep
from common.logging_setup import get_logger
from common.types import Accelerometer, Ambient, Barometer, GPSFix, Gyroscope, SensorSample


log = get_logger("ingest")

DEAD_ZONE_MPS2 = 0.005
DEFAULT_DT_S = 0.010

SOURCES = ("accelerometer", "gyroscope", "gps", "barometer", "ambient")


def dead_zone(values: Sequence[float], threshold: float = DEAD_ZONE_MPS2) -> Tuple[float, ...]:
    """Clamp every component with |v| < threshold to exactly 0.0."""
    return tuple(0.0 if abs(v) < threshold else float(v) for v in values)


def _number(fields: Mapping[str, Any], key: str, source: str, required: bool = True) -> Optional[float]:
    v = fields.get(key)
    if v is None:
        if required:
            raise InvalidSample(f"missing field '{key}'", source=source)
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        raise InvalidSample(f"field '{key}' is not numeric: {v!r}", source=source) from None
    if not math.isfinite(f):
        raise InvalidSample(f"field '{key}' is not finite", source=source)
    return f


class SensorIngest:
    """
    Turns raw platform events into typed SensorSamples.

    Keeps one time baseline per source to compute dt; never touches estimator
    state. A non-positive (or first) dt is replaced by `default_dt` so a noisy
    clock cannot stall estimation.
    """

    def __init__(self, dead_zone_mps2: float = DEAD_ZONE_MPS2, default_dt: float = DEFAULT_DT_S):
        self.dead_zone_mps2 = float(dead_zone_mps2)
        self.default_dt = float(default_dt)
        self._last_t: Dict[str, float] = {}
        self.substituted_dt = 0
        # True when the last accepted sample carries default_dt in place of its own
        self.last_substituted = False

    @classmethod
    def from_config(cls, P: Dict) -> "SensorIngest":
        c = P.get("ingest", {})
        return cls(
            dead_zone_mps2=float(c.get("dead_zone_mps2", DEAD_ZONE_MPS2)),
            default_dt=float(c.get("default_dt_s", DEFAULT_DT_S)),
        )

    def reset(self) -> None:
        """Forget every per-source baseline (after a pause)."""
        self._last_t.clear()

    def _delta(self, source: str, t: float) -> float:
        last = self._last_t.get(source)
        if last is None:
            raise NonPositiveTimestep("no previous sample", source=source)
        dt = t - last
        if dt <= 0:
            raise NonPositiveTimestep(f"dt={dt:.6f}s", source=source, detail={"dt": dt})
        return dt

    def normalize(self, source: str, fields: Mapping[str, Any], t: Any) -> SensorSample:
        """
        Validate one raw event and return its typed sample.

        Raises InvalidSample for unknown sources, missing/non-finite fields,
        out-of-range fixes or a bad timestamp. The per-source baseline only
        advances for accepted samples.
        """
        if source not in SOURCES:
            raise InvalidSample(f"unknown source '{source}'", source=source)
        if not isinstance(fields, Mapping):
            raise InvalidSample("event fields must be a mapping", source=source)
        ts = _number({"t": t}, "t", source)

        substituted = False
        try:
            dt = self._delta(source, ts)
        except NonPositiveTimestep as e:
            dt = self.default_dt
            if source in self._last_t:
                self.substituted_dt += 1
                substituted = True
                log.debug("Default timestep substituted", extra={"extra": e.to_dict()})

        sample = self._build(source, fields, ts, dt)
        self.last_substituted = substituted
        # Monotonic per source: a late sample never moves the baseline back
        self._last_t[source] = max(ts, self._last_t.get(source, ts))
        return sample

    def _build(self, source: str, fields: Mapping[str, Any], t: float, dt: float) -> SensorSample:
        if source == "accelerometer":
            x, y, z = dead_zone(
                [_number(fields, k, source) for k in ("x", "y", "z")],  # type: ignore[misc]
                self.dead_zone_mps2,
            )
            return Accelerometer(x=x, y=y, z=z, t=t, dt=dt)
        if source == "gyroscope":
            x, y, z = (_number(fields, k, source) for k in ("x", "y", "z"))
            return Gyroscope(x=x, y=y, z=z, t=t, dt=dt)  # type: ignore[arg-type]
        if source == "gps":
            lat = _number(fields, "lat", source)
            lon = _number(fields, "lon", source)
            alt = _number(fields, "alt", source)
            if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):  # type: ignore[operator]
                raise InvalidSample("lat/lon out of range", source=source, detail={"lat": lat, "lon": lon})
            return GPSFix(lat=lat, lon=lon, alt=alt, t=t, dt=dt)  # type: ignore[arg-type]
        if source == "barometer":
            hpa = _number(fields, "hpa", source)
            if hpa <= 0:  # type: ignore[operator]
                raise InvalidSample("pressure must be > 0", source=source, detail={"hpa": hpa})
            return Barometer(hpa=hpa, t=t, dt=dt)  # type: ignore[arg-type]
        # ambient
        lux = _number(fields, "lux", source, required=False)
        db = _number(fields, "db", source, required=False)
        if lux is None and db is None:
            raise InvalidSample("ambient event carries neither lux nor db", source=source)
        return Ambient(lux=lux, db=db, t=t, dt=dt)
