"""
Great-circle distance and bounding-box math for DPCMatch.

Pure functions over WGS84 coordinates, shared by the match classifier and
by proximity search callers. Nothing in this module performs I/O.
"""

import math
from dataclasses import dataclass
from typing import Any, Optional

EARTH_RADIUS_MILES = 3959.0
MILES_PER_DEGREE_LATITUDE = 69.0

# Keeps the longitude span finite at the poles.
_MIN_COSINE = 1e-12


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 latitude/longitude pair in degrees."""
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return is_valid_coordinate(self)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon rectangle approximating a search radius."""
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, coordinate: Coordinate) -> bool:
        return (
            self.min_lat <= coordinate.latitude <= self.max_lat
            and self.min_lon <= coordinate.longitude <= self.max_lon
        )


def is_valid_coordinate(coordinate: Optional[Coordinate]) -> bool:
    """
    Check that both axes are finite numbers within their legal range.

    Args:
        coordinate: Coordinate to check (None is accepted and invalid)

    Returns:
        True if latitude is in [-90, 90] and longitude in [-180, 180]
    """
    if coordinate is None:
        return False

    try:
        lat = float(coordinate.latitude)
        lon = float(coordinate.longitude)
    except (TypeError, ValueError):
        return False

    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False

    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def coordinate_or_none(latitude: Any, longitude: Any) -> Optional[Coordinate]:
    """Build a Coordinate from raw values, or None when either axis is unusable."""
    if latitude is None or longitude is None:
        return None

    try:
        coordinate = Coordinate(latitude=float(latitude), longitude=float(longitude))
    except (TypeError, ValueError):
        return None

    return coordinate if is_valid_coordinate(coordinate) else None


def haversine_miles(p1: Coordinate, p2: Coordinate) -> float:
    """
    Compute the great-circle distance in miles between two points.

    Args:
        p1: First coordinate
        p2: Second coordinate

    Returns:
        Distance in miles (exactly 0.0 for identical points)
    """
    lat1 = math.radians(p1.latitude)
    lat2 = math.radians(p2.latitude)
    dlat = math.radians(p2.latitude - p1.latitude)
    dlon = math.radians(p2.longitude - p1.longitude)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_MILES * c


def bounding_box(center: Coordinate, radius_miles: float) -> BoundingBox:
    """
    Derive the lat/lon box enclosing a circle of the given radius.

    Useful for pre-filtering provider rows with a plain range query before
    running the exact haversine check.

    Args:
        center: Center of the search circle
        radius_miles: Search radius in miles

    Returns:
        BoundingBox around the center

    Raises:
        ValueError: If the radius is negative or not finite, or the center is invalid
    """
    if radius_miles is None or not math.isfinite(radius_miles) or radius_miles < 0:
        raise ValueError(f"radius_miles must be a non-negative finite number, got {radius_miles!r}")
    if not is_valid_coordinate(center):
        raise ValueError(f"Invalid bounding box center: {center!r}")

    lat_degrees = radius_miles / MILES_PER_DEGREE_LATITUDE
    cosine = max(math.cos(math.radians(center.latitude)), _MIN_COSINE)
    lon_degrees = radius_miles / (MILES_PER_DEGREE_LATITUDE * cosine)

    return BoundingBox(
        min_lat=center.latitude - lat_degrees,
        max_lat=center.latitude + lat_degrees,
        min_lon=center.longitude - lon_degrees,
        max_lon=center.longitude + lon_degrees,
    )
