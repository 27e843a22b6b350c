"""Lanelet geometry derivation from a drawn centerline.

A lanelet is stored as a MultiLineString ``[left, center, right]``. The
client only draws the centerline; the two outer lines are parallel copies
offset by the lane half-width in metres.

The offset is computed in a local azimuthal equidistant projection centred
on the centerline (via pyproj), so distances are metre-accurate at any
latitude, then projected back to WGS84 (EPSG:4326). Every vertex is moved
along the bisector of its adjoining segment normals (mitred join), which
keeps the vertex count of the outer lines equal to the centerline's.

Line index is load-bearing: 0 is left, 1 is center, 2 is right, where left
is the left-hand side when travelling from the first to the last vertex.

Example:
    >>> from app.utils import lanelet
    >>> segments = lanelet.compute_lanelet_segments([[0, 0], [0.001, 0]], 3.5)
    >>> len(segments.left) == len(segments.center) == 2
    True
"""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Sequence
from typing import Any, Literal

import pyproj
from shapely import geometry as shapely_geometry

logger = logging.getLogger(__name__)

MIN_OFFSET = 1.5
MAX_OFFSET = 10.0
DEFAULT_OFFSET = 3.5
OFFSET_STEP = 0.5

# Upper bound on mitre length as a multiple of the offset at sharp turns.
MITER_LIMIT = 4.0

LaneletRole = Literal["left", "center", "right"]
LANELET_ROLES: tuple[LaneletRole, ...] = ("left", "center", "right")

Coordinate = list[float]
Line = list[Coordinate]


@dataclasses.dataclass(frozen=True)
class LaneletSegments:
    """Left, center and right lines of a lanelet as ``[lon, lat]`` lists."""

    left: Line
    center: Line
    right: Line

    def as_lines(self) -> list[Line]:
        return [self.left, self.center, self.right]


def clamp_offset(value: float) -> float:
    """Clamp a half-width into ``[MIN_OFFSET, MAX_OFFSET]``."""
    return min(max(value, MIN_OFFSET), MAX_OFFSET)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def sanitize_centerline(coordinates: Any) -> Line:
    """Drop malformed or non-finite vertices, keeping ``[lon, lat]`` pairs."""
    if not isinstance(coordinates, (list, tuple)):
        return []
    line: Line = []
    for vertex in coordinates:
        if (
            isinstance(vertex, (list, tuple))
            and len(vertex) >= 2
            and _is_number(vertex[0])
            and _is_number(vertex[1])
        ):
            line.append([float(vertex[0]), float(vertex[1])])
    return line


def _local_transformers(
    line: Line,
) -> tuple[pyproj.Transformer, pyproj.Transformer]:
    lon_0 = sum(vertex[0] for vertex in line) / len(line)
    lat_0 = sum(vertex[1] for vertex in line) / len(line)
    local_crs = pyproj.CRS.from_proj4(
        f"+proj=aeqd +lat_0={lat_0} +lon_0={lon_0} "
        "+datum=WGS84 +units=m +no_defs"
    )
    forward = pyproj.Transformer.from_crs("EPSG:4326", local_crs, always_xy=True)
    inverse = pyproj.Transformer.from_crs(local_crs, "EPSG:4326", always_xy=True)
    return forward, inverse


def _segment_normals(
    xs: Sequence[float], ys: Sequence[float]
) -> list[tuple[float, float] | None]:
    normals: list[tuple[float, float] | None] = []
    for i in range(len(xs) - 1):
        dx = xs[i + 1] - xs[i]
        dy = ys[i + 1] - ys[i]
        length = math.hypot(dx, dy)
        normals.append((-dy / length, dx / length) if length > 0 else None)
    return normals


def _fill_degenerate(
    normals: list[tuple[float, float] | None],
) -> list[tuple[float, float]] | None:
    """Give zero-length segments the normal of their nearest neighbour."""
    if all(normal is None for normal in normals):
        return None
    filled = list(normals)
    last: tuple[float, float] | None = None
    for i, normal in enumerate(filled):
        if normal is None:
            filled[i] = last
        else:
            last = normal
    following: tuple[float, float] | None = None
    for i in range(len(filled) - 1, -1, -1):
        if filled[i] is None:
            filled[i] = following
        else:
            following = filled[i]
    return filled  # type: ignore[return-value]


def _vertex_offset(
    before: tuple[float, float] | None,
    after: tuple[float, float] | None,
    distance: float,
) -> tuple[float, float]:
    if before is None:
        assert after is not None
        return after[0] * distance, after[1] * distance
    if after is None:
        return before[0] * distance, before[1] * distance

    mx, my = before[0] + after[0], before[1] + after[1]
    norm = math.hypot(mx, my)
    if norm < 1e-12:
        # Line doubles back on itself.
        return before[0] * distance, before[1] * distance
    mx, my = mx / norm, my / norm
    cos_half = mx * after[0] + my * after[1]
    scale = min(1.0 / cos_half, MITER_LIMIT)
    return mx * distance * scale, my * distance * scale


def _offset_line(
    xs: Sequence[float],
    ys: Sequence[float],
    normals: list[tuple[float, float]],
    distance: float,
) -> tuple[list[float], list[float]]:
    out_x: list[float] = []
    out_y: list[float] = []
    for i in range(len(xs)):
        before = normals[i - 1] if i > 0 else None
        after = normals[i] if i < len(normals) else None
        dx, dy = _vertex_offset(before, after, distance)
        out_x.append(xs[i] + dx)
        out_y.append(ys[i] + dy)
    return out_x, out_y


def _usable(xs: Sequence[float], ys: Sequence[float]) -> bool:
    if not all(math.isfinite(v) for v in (*xs, *ys)):
        return False
    line = shapely_geometry.LineString(list(zip(xs, ys, strict=True)))
    return not line.is_empty and line.length > 0


def compute_lanelet_segments(
    centerline: Any, half_width: float
) -> LaneletSegments | None:
    """Derive left/center/right lines from a centerline.

    Args:
        centerline: Sequence of ``[lon, lat]`` vertices. Malformed or
            non-finite vertices are dropped before any check.
        half_width: Offset of the outer lines from the center, in metres.

    Returns:
        ``LaneletSegments`` where ``center`` is the sanitized input and
        ``left``/``right`` have the same vertex count, or None if the
        half-width is below ``MIN_OFFSET``, fewer than two vertices remain,
        or the offset lines are degenerate.
    """
    if not _is_number(half_width) or half_width < MIN_OFFSET:
        return None

    center = sanitize_centerline(centerline)
    if len(center) < 2:
        return None

    forward, inverse = _local_transformers(center)
    xs, ys = forward.transform(
        [vertex[0] for vertex in center], [vertex[1] for vertex in center]
    )
    xs, ys = list(xs), list(ys)

    normals = _fill_degenerate(_segment_normals(xs, ys))
    if normals is None:
        logger.debug("Lanelet centerline has no length; offset skipped")
        return None

    lines: list[Line] = []
    for distance in (half_width, -half_width):
        off_x, off_y = _offset_line(xs, ys, normals, distance)
        if not _usable(off_x, off_y):
            return None
        lons, lats = inverse.transform(off_x, off_y)
        line = [[float(lon), float(lat)] for lon, lat in zip(lons, lats, strict=True)]
        if not all(_is_number(v) for vertex in line for v in vertex):
            return None
        lines.append(line)

    return LaneletSegments(left=lines[0], center=center, right=lines[1])


def create_lanelet_geometry(
    centerline: Any, half_width: float
) -> dict[str, Any] | None:
    """Build the lanelet MultiLineString ``[left, center, right]``."""
    segments = compute_lanelet_segments(centerline, half_width)
    if segments is None:
        return None
    return {"type": "MultiLineString", "coordinates": segments.as_lines()}


def split_lanelet_roles(feature: dict[str, Any]) -> list[dict[str, Any]]:
    """Split a lanelet feature into one LineString feature per role.

    Roles are assigned by position in the MultiLineString. Non-lanelet
    features and empty component lines produce nothing.
    """
    properties = feature.get("properties") or {}
    geometry = feature.get("geometry") or {}
    if properties.get("kind") != "lanelet":
        return []
    if geometry.get("type") != "MultiLineString":
        return []

    feature_id = str(feature.get("id"))
    segments: list[dict[str, Any]] = []
    for index, coordinates in enumerate(geometry.get("coordinates") or []):
        if not isinstance(coordinates, list) or not coordinates:
            continue
        role = LANELET_ROLES[index] if index < len(LANELET_ROLES) else "left"
        segments.append(
            {
                "type": "Feature",
                "id": f"{feature_id}::{role}",
                "geometry": {"type": "LineString", "coordinates": coordinates},
                "properties": {
                    **properties,
                    "featureId": feature_id,
                    "laneletRole": role,
                },
            }
        )
    return segments


def lanelet_preview(centerline: Any, half_width: float) -> dict[str, Any]:
    """Return a role-tagged FeatureCollection previewing a lanelet draft.

    The collection is empty when the segments cannot be computed.
    """
    segments = compute_lanelet_segments(centerline, half_width)
    features: list[dict[str, Any]] = []
    if segments is not None:
        for role, coordinates in zip(LANELET_ROLES, segments.as_lines(), strict=True):
            features.append(
                {
                    "type": "Feature",
                    "geometry": {"type": "LineString", "coordinates": coordinates},
                    "properties": {"laneletRole": role},
                }
            )
    return {"type": "FeatureCollection", "features": features}
