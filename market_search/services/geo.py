from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence, TypeVar

from market_search.models import GeoFilter, MarketRecord, RankedResult

EARTH_RADIUS_MILES = 3959.0

T = TypeVar("T")


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles between two WGS84 coords."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push a just past 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


def bounding_box(geo: GeoFilter) -> BoundingBox:
    """Lat/lng box that contains every point within the radius.

    Falls back to the full longitude range near the poles and across the
    antimeridian, so the box is always a superset of the circle.
    """
    # Small margin so points sitting exactly on the radius survive float rounding.
    angular = geo.radius_miles / EARTH_RADIUS_MILES * (1 + 1e-9)
    dlat = math.degrees(angular)
    min_lat = max(-90.0, geo.lat - dlat)
    max_lat = min(90.0, geo.lat + dlat)

    sin_ratio = math.sin(min(angular, math.pi / 2)) / max(math.cos(math.radians(geo.lat)), 1e-12)
    if angular >= math.pi / 2 or sin_ratio >= 1 or min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    dlng = math.degrees(math.asin(sin_ratio))
    min_lng = geo.lng - dlng
    max_lng = geo.lng + dlng
    if min_lng < -180.0 or max_lng > 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    return BoundingBox(min_lat, max_lat, min_lng, max_lng)


def apply_geo(rows: Iterable[MarketRecord], geo: GeoFilter, *, sort_by_distance: bool) -> List[RankedResult]:
    """Keep the rows within ``geo.radius_miles`` of the center, tagging each with its distance.

    Rows without coordinates never match. When ``sort_by_distance`` is false the
    incoming order is kept, so an explicit store-side sort survives.
    """
    ranked: list[RankedResult] = []
    for row in rows:
        if row.latitude is None or row.longitude is None:
            continue
        dist = haversine_miles(geo.lat, geo.lng, row.latitude, row.longitude)
        if dist > geo.radius_miles:
            continue
        ranked.append(RankedResult(market=row, distance_miles=dist))

    if sort_by_distance:
        # list.sort is stable: equal distances keep the store's rating/name order.
        ranked.sort(key=lambda r: r.distance_miles)
    return ranked


def paginate(items: Sequence[T], *, offset: int, limit: int) -> List[T]:
    return list(items[offset : offset + limit])
