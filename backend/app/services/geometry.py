"""GeoJSON geometry validation against feature kinds.

This module checks that a submitted geometry is a structurally valid
GeoJSON geometry object and that its type is allowed for the feature kind
it is attached to. Only coordinate structure is checked: ring closure,
self-intersection and coordinate ranges are left to PostGIS.

Allowed geometry types per kind:

============  =====================================
kind          geometry types
============  =====================================
point         Point, MultiPoint
line          LineString, MultiLineString
polygon       Polygon, MultiPolygon
road          LineString, MultiLineString
lanelet       MultiLineString (exactly 3 lines)
============  =====================================

Example:
    >>> from app.services.geometry import validate_geometry
    >>> validate_geometry({"type": "Point", "coordinates": [0, 0]}, "point")
    {'type': 'Point', 'coordinates': [0.0, 0.0]}
"""

from __future__ import annotations

import math
from typing import Any, Literal, get_args

from app.core import errors

FeatureKind = Literal["point", "line", "polygon", "road", "lanelet"]
GeometryType = Literal[
    "Point",
    "MultiPoint",
    "LineString",
    "MultiLineString",
    "Polygon",
    "MultiPolygon",
]

FEATURE_KINDS: tuple[FeatureKind, ...] = get_args(FeatureKind)
SUPPORTED_GEOMETRY_TYPES: frozenset[str] = frozenset(get_args(GeometryType))

GEOMETRY_BY_KIND: dict[FeatureKind, tuple[GeometryType, ...]] = {
    "point": ("Point", "MultiPoint"),
    "line": ("LineString", "MultiLineString"),
    "polygon": ("Polygon", "MultiPolygon"),
    "road": ("LineString", "MultiLineString"),
    "lanelet": ("MultiLineString",),
}

LANELET_LINE_COUNT = 3

Position = list[float]


class _MalformedGeometry(Exception):
    """Internal signal for a structural GeoJSON violation."""


def _position(value: Any) -> Position:
    if not isinstance(value, (list, tuple)) or len(value) not in (2, 3):
        raise _MalformedGeometry("position must have 2 or 3 numbers")
    position: Position = []
    for number in value:
        if isinstance(number, bool) or not isinstance(number, (int, float)):
            raise _MalformedGeometry("position values must be numbers")
        if not math.isfinite(number):
            raise _MalformedGeometry("position values must be finite")
        position.append(float(number))
    return position


def _positions(value: Any, minimum: int) -> list[Position]:
    if not isinstance(value, (list, tuple)):
        raise _MalformedGeometry("expected an array of positions")
    positions = [_position(item) for item in value]
    if len(positions) < minimum:
        raise _MalformedGeometry(f"expected at least {minimum} positions")
    return positions


def _polygon(value: Any) -> list[list[Position]]:
    if not isinstance(value, (list, tuple)) or not value:
        raise _MalformedGeometry("polygon needs at least one ring")
    return [_positions(ring, 4) for ring in value]


def _parts(value: Any) -> list[Any]:
    if not isinstance(value, (list, tuple)):
        raise _MalformedGeometry("expected an array of parts")
    return list(value)


def _coordinates(geometry_type: str, value: Any) -> list[Any]:
    match geometry_type:
        case "Point":
            return _position(value)
        case "MultiPoint":
            return [_position(item) for item in _parts(value)]
        case "LineString":
            return _positions(value, 2)
        case "MultiLineString":
            return [_positions(item, 2) for item in _parts(value)]
        case "Polygon":
            return _polygon(value)
        case "MultiPolygon":
            return [_polygon(item) for item in _parts(value)]
        case _:
            raise _MalformedGeometry(f"unknown geometry type {geometry_type}")


def validate_geometry(geometry: Any, kind: str) -> dict[str, Any]:
    """Validate a GeoJSON geometry for a feature kind.

    Args:
        geometry: Candidate GeoJSON geometry object.
        kind: Feature kind the geometry belongs to.

    Returns:
        Normalised ``{"type", "coordinates"}`` dict with float coordinates.

    Raises:
        ValidationError: If the kind is unknown, the geometry is not a
            well-formed GeoJSON geometry, its type is unsupported
            (GeometryCollection included), or it is incompatible with
            the kind.
    """
    if kind not in GEOMETRY_BY_KIND:
        raise errors.ValidationError(
            "kind is not a supported feature kind",
            {"kind": kind, "allowed": list(FEATURE_KINDS)},
        )

    if not isinstance(geometry, dict) or not isinstance(
        geometry.get("type"), str
    ):
        raise errors.ValidationError(
            "geometry must be a valid GeoJSON geometry object"
        )

    geometry_type = geometry["type"]
    if geometry_type not in SUPPORTED_GEOMETRY_TYPES:
        raise errors.ValidationError(
            "geometry type is not supported",
            {"geometryType": geometry_type},
        )

    try:
        coordinates = _coordinates(geometry_type, geometry.get("coordinates"))
    except _MalformedGeometry as exc:
        raise errors.ValidationError(
            "geometry must be a valid GeoJSON geometry object",
            {"geometryType": geometry_type, "reason": str(exc)},
        ) from None

    allowed = GEOMETRY_BY_KIND[kind]  # type: ignore[index]
    if geometry_type not in allowed:
        raise errors.ValidationError(
            "geometry type is incompatible with feature kind",
            {"kind": kind, "geometryType": geometry_type},
        )

    if kind == "lanelet" and len(coordinates) != LANELET_LINE_COUNT:
        raise errors.ValidationError(
            "lanelet geometry must contain exactly 3 lines "
            "ordered [left, center, right]",
            {"kind": kind, "lineCount": len(coordinates)},
        )

    return {"type": geometry_type, "coordinates": coordinates}


def is_supported_geometry_type(geometry_type: object) -> bool:
    """Return True if ``geometry_type`` is one of the six stored types."""
    return geometry_type in SUPPORTED_GEOMETRY_TYPES
