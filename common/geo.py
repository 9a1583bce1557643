from __future__ import annotations

from typing import Tuple
import math
import numpy as np


# --- Earth / atmosphere constants ---
EARTH_RADIUS_M = 6371000.0            # spherical Earth used for curvature integration
OMEGA_EARTH = 7.292115e-5             # Earth rotation rate (rad/s)
G0 = 9.80665                          # standard gravity (m/s^2)
R_DRY_AIR = 287.05                    # specific gas constant, dry air (J/(kg K))
P0_HPA = 1013.25                      # ISA sea-level pressure

_WGS84_A = 6378137.0              # semi-major axis (m)
_WGS84_F = 1.0 / 298.257223563    # flattening
_WGS84_E2 = _WGS84_F * (2.0 - _WGS84_F)  # first eccentricity squared


# -------------------------
# Great-circle
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on the spherical Earth."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


# -------------------------
# Spherical position vector (curvature integration)
# -------------------------
def geodetic_to_vector(lat: float, lon: float, radius: float) -> np.ndarray:
    """Geocentric position vector (x, y, z) on a sphere of the given radius."""
    phi = math.radians(lat)
    lam = math.radians(lon)
    cp = math.cos(phi)
    return np.array([radius * cp * math.cos(lam), radius * cp * math.sin(lam), radius * math.sin(phi)], dtype=float)


def vector_to_geodetic(v: np.ndarray) -> Tuple[float, float, float]:
    """Inverse of geodetic_to_vector: returns (lat_deg, lon_deg, radius)."""
    x, y, z = float(v[0]), float(v[1]), float(v[2])
    rho = math.hypot(x, y)
    return (math.degrees(math.atan2(z, rho)), math.degrees(math.atan2(y, x)), math.sqrt(rho * rho + z * z))


def rotate2d(a: float, b: float, theta: float) -> Tuple[float, float]:
    """Standard counter-clockwise 2D rotation of (a, b) by theta radians."""
    c, s = math.cos(theta), math.sin(theta)
    return (c * a - s * b, s * a + c * b)


def advance_on_sphere(
    lat: float, lon: float, north_m: float, east_m: float, radius: float = EARTH_RADIUS_M
) -> Tuple[float, float]:
    """
    Move a point by a local north/east displacement while following the sphere.

    The local tangent frame rotates by theta_n = north_m / radius in the meridian
    plane (rho, z) and by theta_e = east_m / (radius cos lat) in the equatorial
    plane (x, y). Both are plain 2D rotations of the geocentric vector, so the
    point never leaves the sphere however long the session runs.
    """
    v = geodetic_to_vector(lat, lon, radius)
    rho = math.hypot(v[0], v[1])
    rho2, z2 = rotate2d(rho, v[2], north_m / radius)
    lam = math.atan2(v[1], v[0])
    x1, y1 = rho2 * math.cos(lam), rho2 * math.sin(lam)
    cos_lat = max(1e-12, abs(math.cos(math.radians(lat))))
    x2, y2 = rotate2d(x1, y1, east_m / (radius * cos_lat))
    lat2, lon2, _ = vector_to_geodetic(np.array([x2, y2, z2]))
    return lat2, lon2


# -------------------------
# LLA -> ECEF
# -------------------------
def lla_to_ecef(lat: float, lon: float, alt_m: float) -> np.ndarray:
    """WGS84 geodetic to ECEF (x,y,z) meters."""
    phi = math.radians(lat)
    lam = math.radians(lon)
    sinp = math.sin(phi)
    cosp = math.cos(phi)
    N = _WGS84_A / math.sqrt(1.0 - _WGS84_E2 * sinp * sinp)
    x = (N + alt_m) * cosp * math.cos(lam)
    y = (N + alt_m) * cosp * math.sin(lam)
    z = (N * (1.0 - _WGS84_E2) + alt_m) * sinp
    return np.array([x, y, z], dtype=float)


# -------------------------
# Barometry
# -------------------------
def hypsometric_thickness_m(p_ref_hpa: float, p_hpa: float, temperature_c: float = 15.0) -> float:
    """
    Height gained going from pressure p_ref to p (hypsometric equation):
        dh = (Rd * T / g) * ln(p_ref / p)
    Positive when pressure falls.
    """
    if p_ref_hpa <= 0 or p_hpa <= 0:
        raise ValueError("pressures must be > 0")
    t_k = temperature_c + 273.15
    return (R_DRY_AIR * t_k / G0) * math.log(p_ref_hpa / p_hpa)
