"""Feature domain service.

Orchestrates validation, paging defaults and persistence for map features,
and converts stored rows into GeoJSON Feature dictionaries. Every input is
fully validated before the store is touched, and each operation issues a
single logical read or write. The service holds no state of its own.

Example:
    >>> from app.db import database
    >>> from app.services.features import FeatureService
    >>> service = FeatureService(database.InMemoryFeatureRepository())
    >>> created = service.create(
    ...     "point", {"type": "Point", "coordinates": [0, 0]}, {"name": "X"}
    ... )
    >>> service.get(created["id"])["properties"]["tags"]
    {'name': 'X'}
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from app.core import errors
from app.db import database
from app.db import models as db_models
from app.services import geometry as geometry_rules
from app.services import tags as tag_rules
from app.utils import bbox as bbox_utils

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 100
DEFAULT_OFFSET = 0


def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_limit(limit: object | None) -> int:
    """Return the page size, defaulting to 50; must be in (0, 100]."""
    if limit is None:
        return DEFAULT_LIMIT
    if not _is_integer(limit):
        raise errors.ValidationError(
            "limit must be an integer", {"field": "limit", "value": limit}
        )
    limit = int(limit)  # type: ignore[call-overload]
    if limit <= 0:
        raise errors.ValidationError(
            "limit must be greater than zero", {"field": "limit", "value": limit}
        )
    if limit > MAX_LIMIT:
        raise errors.ValidationError(
            f"limit must be less than or equal to {MAX_LIMIT}",
            {"field": "limit", "value": limit},
        )
    return limit


def validate_offset(offset: object | None) -> int:
    """Return the page offset, defaulting to 0; must be a non-negative int."""
    if offset is None:
        return DEFAULT_OFFSET
    if not _is_integer(offset):
        raise errors.ValidationError(
            "offset must be an integer", {"field": "offset", "value": offset}
        )
    offset = int(offset)  # type: ignore[call-overload]
    if offset < 0:
        raise errors.ValidationError(
            "offset must be greater than or equal to zero",
            {"field": "offset", "value": offset},
        )
    return offset


class FeatureService:
    """Validation-and-persistence service for map features.

    Args:
        repository: Feature store the service reads from and writes to.
    """

    def __init__(self, repository: database.FeatureRepositoryProtocol) -> None:
        self.repository = repository

    def list(
        self,
        bbox: Sequence[float] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        """List features newest first, optionally filtered by a bbox.

        Args:
            bbox: ``[min_lon, min_lat, max_lon, max_lat]`` in WGS84.
            limit: Page size, 1 to 100 (default 50).
            offset: Number of features to skip (default 0).

        Returns:
            A GeoJSON FeatureCollection dict with a ``pagination`` member
            holding ``total`` (bbox matches, ignoring paging), ``limit``
            and ``offset``; ``bbox`` is echoed when given.

        Raises:
            ValidationError: If any parameter is out of range.
        """
        checked_limit = validate_limit(limit)
        checked_offset = validate_offset(offset)
        checked_bbox = bbox_utils.validate_bbox(bbox) if bbox is not None else None

        page = self.repository.list(
            db_models.FeatureQuery(
                limit=checked_limit, offset=checked_offset, bbox=checked_bbox
            )
        )
        collection: dict[str, Any] = {
            "type": "FeatureCollection",
            "features": [self._to_feature(record) for record in page.records],
            "pagination": {
                "total": page.total,
                "limit": checked_limit,
                "offset": checked_offset,
            },
        }
        if checked_bbox is not None:
            collection["bbox"] = list(checked_bbox)
        return collection

    def get(self, feature_id: str) -> dict[str, Any]:
        """Return one feature.

        Raises:
            NotFoundError: If no feature has this id.
        """
        record = self.repository.get(feature_id)
        if record is None:
            raise errors.NotFoundError("Feature", feature_id)
        return self._to_feature(record)

    def create(
        self,
        kind: str,
        geometry: Any,
        tags: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Validate and persist a new feature.

        Raises:
            ValidationError: If the geometry or tags are invalid.
            InternalServerError: If the store does not return the new row.
        """
        values = self._validated_write(kind, geometry, tags)
        record = self.repository.create(values)
        if record is None:
            raise errors.InternalServerError(
                "Feature could not be loaded after creation"
            )
        logger.info("Created %s feature %s", record.kind, record.id)
        return self._to_feature(record)

    def update(
        self,
        feature_id: str,
        kind: str,
        geometry: Any,
        tags: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Replace kind, geometry and tags of a feature wholesale.

        Tags are not merged: omitted tags leave the feature with none.

        Raises:
            ValidationError: If the geometry or tags are invalid.
            NotFoundError: If no feature has this id.
        """
        values = self._validated_write(kind, geometry, tags)
        record = self.repository.update(feature_id, values)
        if record is None:
            raise errors.NotFoundError("Feature", feature_id)
        logger.info("Replaced feature %s", feature_id)
        return self._to_feature(record)

    def update_tags(self, feature_id: str, mutation: Any) -> dict[str, Any]:
        """Apply a ``{set?, delete?}`` tag mutation, deleting before setting.

        Args:
            feature_id: Feature to mutate.
            mutation: Raw payload or an already validated TagMutation.

        Raises:
            ValidationError: If the mutation is invalid.
            NotFoundError: If no feature has this id.
        """
        if not isinstance(mutation, tag_rules.TagMutation):
            mutation = tag_rules.validate_mutation(mutation)

        current = self.repository.get(feature_id)
        if current is None:
            raise errors.NotFoundError("Feature", feature_id)
        self._stored_tags(current)

        # The merge itself runs inside the store as one row update.
        record = self.repository.update_tags(
            feature_id, dict(mutation.set), list(mutation.delete)
        )
        if record is None:
            raise errors.NotFoundError("Feature", feature_id)
        logger.info(
            "Updated tags on feature %s (set=%d, delete=%d)",
            feature_id,
            len(mutation.set),
            len(mutation.delete),
        )
        return self._to_feature(record)

    def delete(self, feature_id: str) -> None:
        """Delete a feature.

        Raises:
            NotFoundError: If nothing was removed, including repeat deletes.
        """
        if not self.repository.delete(feature_id):
            raise errors.NotFoundError("Feature", feature_id)
        logger.info("Deleted feature %s", feature_id)

    @staticmethod
    def _validated_write(
        kind: str, geometry: Any, tags: Mapping[str, Any] | None
    ) -> db_models.FeatureWrite:
        normalized = geometry_rules.validate_geometry(geometry, kind)
        record = tag_rules.validate_tags(tags)
        return db_models.FeatureWrite(kind=kind, geometry=normalized, tags=record)

    def _to_feature(self, record: db_models.FeatureRecord) -> dict[str, Any]:
        return {
            "type": "Feature",
            "id": record.id,
            "geometry": self._stored_geometry(record),
            "properties": {
                "kind": record.kind,
                "tags": self._stored_tags(record),
                "createdAt": record.created_at.isoformat(),
                "updatedAt": record.updated_at.isoformat(),
            },
        }

    @staticmethod
    def _stored_geometry(record: db_models.FeatureRecord) -> dict[str, Any]:
        geometry: Any = record.geometry
        if isinstance(geometry, str):
            try:
                geometry = json.loads(geometry)
            except ValueError as exc:
                raise errors.InternalServerError(
                    "Stored geometry is malformed",
                    {"featureId": record.id, "error": str(exc)},
                ) from exc

        if not isinstance(geometry, dict):
            raise errors.InternalServerError(
                "Stored geometry is missing or invalid", {"featureId": record.id}
            )

        if not geometry_rules.is_supported_geometry_type(geometry.get("type")):
            raise errors.InternalServerError(
                "Stored geometry type is unsupported",
                {"featureId": record.id, "geometryType": geometry.get("type")},
            )
        return {"type": geometry["type"], "coordinates": geometry.get("coordinates")}

    @staticmethod
    def _stored_tags(record: db_models.FeatureRecord) -> dict[str, str]:
        if record.tags is None:
            return {}
        if not isinstance(record.tags, Mapping):
            raise errors.InternalServerError(
                "Stored tags are invalid", {"featureId": record.id}
            )
        return dict(record.tags)
