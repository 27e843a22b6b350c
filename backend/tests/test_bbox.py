"""Tests for bbox parsing, validation and envelope helpers."""

from __future__ import annotations

import pytest

from app.core import errors
from app.utils import bbox as bbox_utils


def test_parse_bbox_trims_and_converts() -> None:
    """Test parsing the query-string form."""
    assert bbox_utils.parse_bbox("-1, -1, 1, 1") == (-1.0, -1.0, 1.0, 1.0)


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("1,2,3", "bbox must contain four comma-separated numbers"),
        ("a,b,c,d", "bbox values must be valid numbers"),
        ("nan,0,1,1", "bbox values must be valid numbers"),
        ("1,0,0,1", "bbox coordinates must define a valid area"),
        ("0,0,1,0", "bbox coordinates must define a valid area"),
        ("-181,0,0,1", "bbox coordinates must be within WGS84 bounds"),
        ("0,-91,1,0", "bbox coordinates must be within WGS84 bounds"),
    ],
)
def test_parse_bbox_rejects(raw: str, message: str) -> None:
    """Test that malformed or out-of-range boxes are rejected."""
    with pytest.raises(errors.ValidationError) as excinfo:
        bbox_utils.parse_bbox(raw)
    assert excinfo.value.message == message
    assert excinfo.value.details["field"] == "bbox"


def test_validate_bbox_rejects_booleans() -> None:
    """Test that booleans do not count as numbers."""
    with pytest.raises(errors.ValidationError):
        bbox_utils.validate_bbox([True, 0, 1, 1])


def test_validate_bbox_accepts_world() -> None:
    """Test the full WGS84 extent."""
    assert bbox_utils.validate_bbox([-180, -90, 180, 90]) == (
        -180.0,
        -90.0,
        180.0,
        90.0,
    )


def test_geometry_bounds_nested() -> None:
    """Test envelope computation on polygon rings."""
    polygon = {
        "type": "Polygon",
        "coordinates": [[[0, 0], [2, 0], [2, 3], [0, 3], [0, 0]]],
    }
    assert bbox_utils.geometry_bounds(polygon) == (0.0, 0.0, 2.0, 3.0)


def test_geometry_bounds_empty() -> None:
    """Test that geometries without positions have no envelope."""
    assert bbox_utils.geometry_bounds({"type": "MultiPoint", "coordinates": []}) is None


def test_intersects_edges_and_disjoint() -> None:
    """Test that touching envelopes intersect and separate ones do not."""
    assert bbox_utils.intersects((0, 0, 1, 1), (1, 1, 2, 2))
    assert not bbox_utils.intersects((0, 0, 1, 1), (1.5, 1.5, 2, 2))
