from __future__ import annotations

import math
from math import asin, cos, radians, sin, sqrt
from typing import Protocol

"""
Geospatial helpers.

A spherical-Earth distance plus the one place that decides how distances are worded
for shoppers. Result sets are small, so callers do linear scans over these helpers.
"""

EARTH_RADIUS_KM = 6371.0


class HasLatLon(Protocol):
    latitude: float
    longitude: float


def _checked(point: HasLatLon) -> tuple[float, float]:
    lat = float(point.latitude)
    lon = float(point.longitude)
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValueError(f"Coordinates must be finite, got ({lat}, {lon})")
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise ValueError(f"Coordinates out of range: ({lat}, {lon})")
    return lat, lon


def distance_km(a: HasLatLon, b: HasLatLon) -> float:
    """Great-circle distance in kilometers between two points (Haversine)."""
    lat1, lon1 = _checked(a)
    lat2, lon2 = _checked(b)

    phi1 = radians(lat1)
    phi2 = radians(lat2)
    dlat = phi2 - phi1
    dlon = radians(lon2 - lon1)

    h = sin(dlat / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlon / 2) ** 2
    # Float error can push h a hair above 1 for antipodal points.
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, h)))


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def format_distance(km: float) -> str:
    """Render a distance for display.

    - under 1 km: whole meters, e.g. `"500m away"`
    - 1 km up to 10 km: one decimal, e.g. `"2.3km away"`
    - 10 km and beyond: whole kilometers, e.g. `"42km away"`
    """
    km = float(km)
    if not math.isfinite(km) or km < 0:
        raise ValueError(f"Distance must be a finite, non-negative number, got {km}")
    if km < 1:
        return f"{_round_half_up(km * 1000)}m away"
    if km < 10:
        return f"{km:.1f}km away"
    return f"{_round_half_up(km)}km away"
