"""Geofence evaluation for worksite check-ins.

Distances are great-circle distances from the haversine formula on a sphere
with the mean Earth radius. Altitude is ignored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the distance in meters between two points given in decimal degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # clamp guards asin against rounding just above 1.0 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


@dataclass(frozen=True)
class GeofenceResult:
    distance_meters: float | None
    within_fence: bool
    radius_meters: float
    evaluated: bool

    @property
    def violated(self) -> bool:
        return self.evaluated and not self.within_fence


class GeofenceEvaluator:
    def __init__(self, default_radius_m: float = 100.0) -> None:
        self.default_radius_m = default_radius_m

    def effective_radius(self, radius_m: float | None) -> float:
        if radius_m is None or radius_m <= 0:
            return self.default_radius_m
        return float(radius_m)

    def evaluate(
        self,
        worker_lat: float | None,
        worker_lng: float | None,
        site_lat: float | None,
        site_lng: float | None,
        radius_m: float | None = None,
    ) -> GeofenceResult:
        radius = self.effective_radius(radius_m)
        if worker_lat is None or worker_lng is None or site_lat is None or site_lng is None:
            # A site without an anchor, or a client without a fix, cannot be rejected on GPS grounds.
            return GeofenceResult(distance_meters=None, within_fence=False, radius_meters=radius, evaluated=False)

        distance = haversine_distance(worker_lat, worker_lng, site_lat, site_lng)
        return GeofenceResult(
            distance_meters=distance,
            within_fence=distance <= radius,
            radius_meters=radius,
            evaluated=True,
        )


def validate_coordinates(latitude: float | None, longitude: float | None) -> None:
    """Raise ValueError when a supplied coordinate is outside the valid range."""
    if latitude is not None and not -90.0 <= latitude <= 90.0:
        raise ValueError("Latitude must be between -90 and 90")
    if longitude is not None and not -180.0 <= longitude <= 180.0:
        raise ValueError("Longitude must be between -180 and 180")
    if (latitude is None) != (longitude is None):
        raise ValueError("Latitude and longitude must be provided together")
