"""Database interface and repository abstractions.

This package holds the feature store contract and its implementations:
an in-memory store for tests and local development, and a PostGIS store
for production. Repository construction goes through
``app.db.database.get_feature_repository`` so that FastAPI dependencies
and tests can swap backends.

Example:
    Use in a service or FastAPI dependency:
        >>> from app.db import database
        >>> repo = database.get_feature_repository(settings)
"""
