"""Seed the feature store with a couple of demo features.

Run with ``python -m app.db.seed``; the backend is chosen by
``REPOSITORY_BACKEND`` and ``DATABASE_URL`` like the API itself.
"""

from __future__ import annotations

import logging
from typing import Any

from app.core import config
from app.core import logging as app_logging
from app.db import database
from app.services import features as feature_service

logger = logging.getLogger(__name__)

SEED_FEATURES: list[dict[str, Any]] = [
    {
        "kind": "point",
        "geometry": {"type": "Point", "coordinates": [0, 0]},
        "tags": {"name": "Null Island"},
    },
    {
        "kind": "line",
        "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
        "tags": {"name": "Test Line"},
    },
]


def seed(repository: database.FeatureRepositoryProtocol) -> list[dict[str, Any]]:
    """Insert every seed feature through the validating service.

    Returns:
        The created GeoJSON features.
    """
    service = feature_service.FeatureService(repository)
    created = [
        service.create(item["kind"], item["geometry"], item["tags"])
        for item in SEED_FEATURES
    ]
    logger.info("Seeded %d features", len(created))
    return created


def main() -> None:
    settings = config.get_settings()
    app_logging.configure_logging(settings.log_level)
    seed(database.get_feature_repository(settings))


if __name__ == "__main__":
    main()
