"""Geofence validation.

Persisted locations are strings in ``"longitude,latitude"`` order. Only
``format_location`` and ``parse_location`` touch that representation; every
other function in the engine works with ``Coordinate`` (latitude first).
"""

from __future__ import annotations

from dataclasses import dataclass
from math import atan2, cos, radians, sin, sqrt

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class GeofenceCheck:
    within: bool
    distance_m: float
    radius_m: float

    def to_flags(self) -> dict[str, float | bool]:
        return {
            "within": self.within,
            "distance_m": round(self.distance_m, 2),
            "radius_m": self.radius_m,
        }


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = radians(lat2 - lat1)
    delta_lon = radians(lon2 - lon1)

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Rounding can push a a hair above 1.0 for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_M * c


def coordinate_distance_m(first: Coordinate, second: Coordinate) -> float:
    return distance_m(first.latitude, first.longitude, second.latitude, second.longitude)


def check_geofence(center: Coordinate, point: Coordinate, radius_m: float) -> GeofenceCheck:
    distance_value = coordinate_distance_m(center, point)
    return GeofenceCheck(
        within=distance_value <= radius_m,
        distance_m=distance_value,
        radius_m=float(radius_m),
    )


def _validate_range(latitude: float, longitude: float) -> None:
    if not -90.0 <= latitude <= 90.0:
        raise ValueError(f"latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError(f"longitude out of range: {longitude}")


def format_location(latitude: float, longitude: float) -> str:
    _validate_range(latitude, longitude)
    return f"{longitude},{latitude}"


def parse_location(raw: str) -> Coordinate:
    parts = [part.strip() for part in (raw or "").split(",")]
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"location must be 'longitude,latitude': {raw!r}")
    try:
        longitude = float(parts[0])
        latitude = float(parts[1])
    except ValueError as exc:
        raise ValueError(f"location must be numeric: {raw!r}") from exc
    _validate_range(latitude, longitude)
    return Coordinate(latitude=latitude, longitude=longitude)
