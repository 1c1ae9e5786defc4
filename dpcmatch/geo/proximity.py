"""
Proximity search over provider records.

Bounding-box pre-filter followed by an exact haversine check. Records are
duck-typed: anything with ``provider_id`` and ``coordinate`` attributes works,
so ProviderIdentity instances can be searched directly.
"""

import logging
from typing import Any, Iterable, List, Tuple

from .distance import BoundingBox, Coordinate, bounding_box, haversine_miles, is_valid_coordinate

logger = logging.getLogger(__name__)


def _in_prefilter(box: BoundingBox, coordinate: Coordinate) -> bool:
    if not box.min_lat <= coordinate.latitude <= box.max_lat:
        return False
    # Boxes that wrap the antimeridian only filter on latitude
    if box.min_lon < -180.0 or box.max_lon > 180.0:
        return True
    return box.min_lon <= coordinate.longitude <= box.max_lon


def find_nearby_providers(center: Coordinate, providers: Iterable[Any],
                          radius_miles: float) -> List[Tuple[Any, float]]:
    """
    Find providers within a radius of a point.

    Args:
        center: Search center
        providers: Records exposing ``provider_id`` and ``coordinate``
        radius_miles: Search radius in miles (inclusive)

    Returns:
        (provider, distance_miles) pairs sorted by distance, then provider_id

    Raises:
        ValueError: If the radius is negative or the center is invalid
    """
    box = bounding_box(center, radius_miles)

    nearby = []
    skipped = 0
    for provider in providers:
        coordinate = getattr(provider, "coordinate", None)
        if not is_valid_coordinate(coordinate):
            skipped += 1
            continue
        if not _in_prefilter(box, coordinate):
            continue

        distance = haversine_miles(center, coordinate)
        if distance <= radius_miles:
            nearby.append((provider, distance))

    if skipped:
        logger.debug(f"Skipped {skipped} providers without valid coordinates")

    nearby.sort(key=lambda pair: (pair[1], str(pair[0].provider_id)))
    return nearby
