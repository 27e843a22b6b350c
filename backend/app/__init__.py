"""App package for the map feature editor backend.

This package contains a REST API persisting geospatial features (points,
lines, polygons, roads and lanelets) in PostGIS, and a Python client
library that tracks the drawing/editing state of a map UI and turns
drawing-tool events into feature mutations.

- Validates GeoJSON geometry against the feature kind and tag syntax rules
  before anything is written
- Stores features in WGS84 (EPSG:4326) with a GIST index for bbox queries
- Derives lanelet left/center/right lines from a drawn centerline
- Designed for FastAPI dependency injection, testability, and an
  explicitly owned client-side drawing state container

See DESIGN.md and the module docstrings for architecture and usage.
"""
