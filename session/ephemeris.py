from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict

from common.errors import EphemerisUnavailable


R2D = 180.0 / math.pi
D2R = math.pi / 180.0

JD_UNIX_EPOCH = 2440587.5
JD_J2000 = 2451545.0
GAMMA_AIR = 1.4
R_AIR = 287.058


@dataclass(frozen=True, slots=True)
class Celestial:
    sun_altitude: float          # deg, refracted
    sun_azimuth: float           # deg from north, clockwise
    local_sidereal_time: float   # hours
    local_sound_speed: float     # m/s
    julian_date: float

    @property
    def local_sound_speed_kmh(self) -> float:
        return self.local_sound_speed * 3.6

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def julian_date(timestamp_ms: float) -> float:
    return timestamp_ms / 86400000.0 + JD_UNIX_EPOCH


def sound_speed_mps(temperature_c: float) -> float:
    """Ideal-gas speed of sound in dry air."""
    t_k = temperature_c + 273.15
    if t_k <= 0:
        raise EphemerisUnavailable("temperature below absolute zero", source="ephemeris")
    return math.sqrt(GAMMA_AIR * R_AIR * t_k)


def local_sidereal_hours(jd: float, lon: float) -> float:
    """Mean local sidereal time (hours) from the IAU GMST polynomial."""
    d = jd - JD_J2000
    T = d / 36525.0
    gmst = 280.46061837 + 360.98564736629 * d + 0.000387933 * T * T - T ** 3 / 38710000.0
    return ((gmst + lon) % 360.0) / 15.0


def _refraction_deg(alt_deg: float, temperature_c: float, pressure_hpa: float) -> float:
    # Bennett (1982), scaled for local pressure and temperature
    if alt_deg < -1.0:
        return 0.0
    r_arcmin = 1.0 / math.tan(D2R * (alt_deg + 7.31 / (alt_deg + 4.4)))
    r_arcmin *= (pressure_hpa / 1010.0) * (283.0 / (273.0 + temperature_c))
    return r_arcmin / 60.0


def compute_celestial(
    timestamp_ms: float,
    lat: float,
    lon: float,
    temperature_c: float = 15.0,
    pressure_hpa: float = 1013.25,
) -> Celestial:
    """
    Low-precision solar position (about 0.01 deg) plus sidereal time, Julian
    date and local speed of sound. Raises EphemerisUnavailable on unusable input.
    """
    vals = (timestamp_ms, lat, lon, temperature_c, pressure_hpa)
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in vals):
        raise EphemerisUnavailable("non-finite ephemeris input", source="ephemeris")
    if not (-90.0 <= lat <= 90.0) or pressure_hpa <= 0:
        raise EphemerisUnavailable("observer out of range", source="ephemeris")

    jd = julian_date(timestamp_ms)
    n = jd - JD_J2000
    L = (280.460 + 0.9856474 * n) % 360.0
    g = D2R * ((357.528 + 0.9856003 * n) % 360.0)
    lam = D2R * (L + 1.915 * math.sin(g) + 0.020 * math.sin(2.0 * g))
    eps = D2R * (23.439 - 0.0000004 * n)

    ra = math.atan2(math.cos(eps) * math.sin(lam), math.cos(lam))
    dec = math.asin(math.sin(eps) * math.sin(lam))

    lst_h = local_sidereal_hours(jd, lon)
    H = D2R * (lst_h * 15.0) - ra
    phi = D2R * lat

    sin_alt = math.sin(phi) * math.sin(dec) + math.cos(phi) * math.cos(dec) * math.cos(H)
    alt = R2D * math.asin(max(-1.0, min(1.0, sin_alt)))
    az = R2D * math.atan2(
        -math.sin(H) * math.cos(dec),
        math.sin(dec) * math.cos(phi) - math.cos(dec) * math.sin(phi) * math.cos(H),
    )

    return Celestial(
        sun_altitude=alt + _refraction_deg(alt, temperature_c, pressure_hpa),
        sun_azimuth=az % 360.0,
        local_sidereal_time=lst_h,
        local_sound_speed=sound_speed_mps(temperature_c),
        julian_date=jd,
    )
