"""Feature CRUD and tag mutation API endpoints.

This module provides the REST surface of the map feature editor. Features
are exchanged as GeoJSON Feature objects whose ``properties`` carry the
feature ``kind``, its ``tags`` and the ``createdAt``/``updatedAt``
timestamps. All coordinates are WGS84 (EPSG:4326) longitude/latitude.

Domain errors raised by the service are turned into ``{message, details}``
bodies by the handlers registered in ``app.main``.

Example:
    Create a point feature:
        >>> response = client.post(
        ...     "/features",
        ...     json={
        ...         "kind": "point",
        ...         "geometry": {"type": "Point", "coordinates": [0, 0]},
        ...         "tags": {"name": "Null Island"},
        ...     },
        ... )
        >>> response.status_code
        201

    List features inside a bounding box:
        >>> response = client.get("/features", params={"bbox": "-1,-1,1,1"})
        >>> response.json()["pagination"]
        {'total': 1, 'limit': 50, 'offset': 0}
"""

from __future__ import annotations

import logging
from typing import Any

import fastapi
import pydantic

from app.core import config
from app.db import database
from app.services import features as feature_service
from app.services import geometry as geometry_rules
from app.utils import bbox as bbox_utils

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(prefix="/features", tags=["features"])


class FeaturePayload(pydantic.BaseModel):
    """Body of ``POST /features`` and ``PUT /features/{id}``."""

    kind: geometry_rules.FeatureKind
    geometry: dict[str, Any]
    tags: dict[str, Any] | None = None


def _get_repo(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.FeatureRepositoryProtocol:
    """Resolve the feature repository dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        FeatureRepositoryProtocol implementation selected by settings.
    """
    return database.get_feature_repository(settings)


def _get_service(
    repo: database.FeatureRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> feature_service.FeatureService:
    return feature_service.FeatureService(repo)


@router.get("")
def list_features(
    bbox: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    service: feature_service.FeatureService = fastapi.Depends(_get_service),  # noqa: B008
) -> dict[str, Any]:
    """List features, newest first, optionally inside a bounding box.

    Args:
        bbox: ``minLon,minLat,maxLon,maxLat`` in WGS84.
        limit: Page size, 1 to 100 (default 50).
        offset: Number of features to skip (default 0).
        service: Feature service (injected via FastAPI Depends).

    Returns:
        GeoJSON FeatureCollection with a ``pagination`` member.
    """
    parsed_bbox = bbox_utils.parse_bbox(bbox) if bbox is not None else None
    if parsed_bbox is not None:
        logger.debug("Requested bbox: %s", parsed_bbox)
    return service.list(bbox=parsed_bbox, limit=limit, offset=offset)


@router.get("/{feature_id}")
def get_feature(
    feature_id: str,
    service: feature_service.FeatureService = fastapi.Depends(_get_service),  # noqa: B008
) -> dict[str, Any]:
    """Retrieve a single feature by id (404 if absent)."""
    return service.get(feature_id)


@router.post("", status_code=201)
def create_feature(
    payload: FeaturePayload,
    service: feature_service.FeatureService = fastapi.Depends(_get_service),  # noqa: B008
) -> dict[str, Any]:
    """Create a feature and return it with its generated id and timestamps.

    Example:
        >>> client.post("/features", json={
        ...     "kind": "line",
        ...     "geometry": {
        ...         "type": "LineString",
        ...         "coordinates": [[-74.00597, 40.71427], [-73.98513, 40.7589]],
        ...     },
        ...     "tags": {"name": "Broadway"},
        ... })
    """
    return service.create(payload.kind, payload.geometry, payload.tags)


@router.put("/{feature_id}")
def replace_feature(
    feature_id: str,
    payload: FeaturePayload,
    service: feature_service.FeatureService = fastapi.Depends(_get_service),  # noqa: B008
) -> dict[str, Any]:
    """Replace a feature's kind, geometry and tags (404 if absent)."""
    return service.update(feature_id, payload.kind, payload.geometry, payload.tags)


@router.patch("/{feature_id}/tags")
def update_feature_tags(
    feature_id: str,
    payload: Any = fastapi.Body(...),  # noqa: B008
    service: feature_service.FeatureService = fastapi.Depends(_get_service),  # noqa: B008
) -> dict[str, Any]:
    """Apply ``{set?, delete?}`` tag changes; deletions happen first.

    Example:
        >>> client.patch(f"/features/{feature_id}/tags", json={
        ...     "set": {"description": "Updated description"},
        ...     "delete": ["note"],
        ... })
    """
    return service.update_tags(feature_id, payload)


@router.delete("/{feature_id}", status_code=204)
def delete_feature(
    feature_id: str,
    service: feature_service.FeatureService = fastapi.Depends(_get_service),  # noqa: B008
) -> fastapi.Response:
    """Delete a feature (204, or 404 if nothing was removed)."""
    service.delete(feature_id)
    return fastapi.Response(status_code=204)
