"""Bounding box parsing and validation in WGS84 (EPSG:4326).

A bbox is ``(min_lon, min_lat, max_lon, max_lat)``. The query-string form
accepted by ``GET /features`` is four comma-separated numbers.

Example:
    >>> from app.utils.bbox import parse_bbox
    >>> parse_bbox("-1, -1, 1, 1")
    (-1.0, -1.0, 1.0, 1.0)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

from app.core import errors

BBox = tuple[float, float, float, float]

MIN_LON, MAX_LON = -180.0, 180.0
MIN_LAT, MAX_LAT = -90.0, 90.0


def validate_bbox(values: Sequence[object]) -> BBox:
    """Check a bbox sequence and return it as a float tuple.

    Args:
        values: Four numbers ``[min_lon, min_lat, max_lon, max_lat]``.

    Returns:
        The bbox as a tuple of floats.

    Raises:
        ValidationError: If the bbox does not have four finite numbers,
            does not define a positive area, or leaves the WGS84 bounds.
    """
    if isinstance(values, (str, bytes)) or len(values) != 4:
        raise errors.ValidationError(
            "bbox must contain four numbers",
            {"field": "bbox", "value": values},
        )

    numbers: list[float] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise errors.ValidationError(
                "bbox values must be valid numbers",
                {"field": "bbox", "value": list(values)},
            )
        if not math.isfinite(value):
            raise errors.ValidationError(
                "bbox values must be valid numbers",
                {"field": "bbox", "value": list(values)},
            )
        numbers.append(float(value))

    min_lon, min_lat, max_lon, max_lat = numbers
    if min_lon >= max_lon or min_lat >= max_lat:
        raise errors.ValidationError(
            "bbox coordinates must define a valid area",
            {"field": "bbox", "value": numbers},
        )

    if (
        min_lon < MIN_LON
        or max_lon > MAX_LON
        or min_lat < MIN_LAT
        or max_lat > MAX_LAT
    ):
        raise errors.ValidationError(
            "bbox coordinates must be within WGS84 bounds",
            {"field": "bbox", "value": numbers},
        )

    return (min_lon, min_lat, max_lon, max_lat)


def parse_bbox(raw: str) -> BBox:
    """Parse the ``minLon,minLat,maxLon,maxLat`` query-string form.

    Raises:
        ValidationError: If the string is not four comma-separated numbers
            or the numbers fail ``validate_bbox``.
    """
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 4:
        raise errors.ValidationError(
            "bbox must contain four comma-separated numbers",
            {"field": "bbox", "value": raw},
        )

    try:
        numbers = [float(part) for part in parts]
    except ValueError:
        raise errors.ValidationError(
            "bbox values must be valid numbers",
            {"field": "bbox", "value": raw},
        ) from None

    return validate_bbox(numbers)


def _walk_positions(coordinates: Any) -> list[tuple[float, float]]:
    if (
        isinstance(coordinates, (list, tuple))
        and len(coordinates) >= 2
        and all(isinstance(v, (int, float)) for v in coordinates[:2])
    ):
        return [(float(coordinates[0]), float(coordinates[1]))]
    positions: list[tuple[float, float]] = []
    if isinstance(coordinates, (list, tuple)):
        for item in coordinates:
            positions.extend(_walk_positions(item))
    return positions


def geometry_bounds(geometry: dict[str, Any]) -> BBox | None:
    """Return the envelope of a GeoJSON geometry, or None if it is empty."""
    positions = _walk_positions(geometry.get("coordinates"))
    if not positions:
        return None
    lons = [lon for lon, _ in positions]
    lats = [lat for _, lat in positions]
    return (min(lons), min(lats), max(lons), max(lats))


def intersects(first: BBox, second: BBox) -> bool:
    """Envelope overlap test, matching PostGIS ``&&``."""
    return not (
        first[2] < second[0]
        or second[2] < first[0]
        or first[3] < second[1]
        or second[3] < first[1]
    )
