"""Data models for persisted map features.

This module defines the row-level representation of a feature as the
feature store hands it to the domain service. Geometry is kept exactly as
the store returned it: PostGIS yields GeoJSON text from ``ST_AsGeoJSON``
while the in-memory store keeps a mapping, so ``geometry`` is either a
JSON string or a dict and the service is responsible for decoding it.

Example:
    Creating a FeatureRecord for a point:
        >>> import datetime
        >>> from app.db.models import FeatureRecord
        >>> now = datetime.datetime.now(datetime.UTC)
        >>> record = FeatureRecord(
        ...     id="8d91a8c9-9a73-4f25-bfe1-2eac898d0c04",
        ...     kind="point",
        ...     geometry='{"type": "Point", "coordinates": [0, 0]}',
        ...     tags={"name": "Null Island"},
        ...     created_at=now,
        ...     updated_at=now,
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, NamedTuple

from app.utils import bbox as bbox_utils


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass
class FeatureRecord:
    """A feature row as stored.

    Attributes:
        id: Feature UUID string, generated by the store.
        kind: Feature kind (``point``, ``line``, ``polygon``, ``road``,
            ``lanelet``).
        geometry: GeoJSON geometry as a JSON string or a mapping.
        tags: Stored tag object; expected to be a ``dict[str, str]``.
        created_at: Creation timestamp, set once.
        updated_at: Timestamp of the last mutation.
    """

    id: str
    kind: str
    geometry: str | dict[str, Any]
    tags: Any
    created_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)
    updated_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)


@dataclasses.dataclass
class FeatureWrite:
    """Validated values for an insert or a full replace."""

    kind: str
    geometry: dict[str, Any]
    tags: dict[str, str]


class FeaturePage(NamedTuple):
    records: list[FeatureRecord]
    total: int


@dataclasses.dataclass
class FeatureQuery:
    """Paging and spatial filter for a list query."""

    limit: int
    offset: int
    bbox: bbox_utils.BBox | None = None
