"""Feature store contract and its in-memory and PostGIS implementations."""

from __future__ import annotations

import contextlib
import datetime
import functools
import itertools
import json
import logging
import threading
import uuid
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from app.core import config
from app.db import models as db_models
from app.utils import bbox as bbox_utils

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

logger = logging.getLogger(__name__)

FEATURE_KINDS_SQL = "'point','line','polygon','road','lanelet'"


def _parse_uuid(value: str) -> str | None:
    """Return the canonical UUID string, or None if ``value`` is not one."""
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        return None


class FeatureRepositoryProtocol(Protocol):
    """Protocol interface for storing and querying features.

    Implementations provide persistence for FeatureRecord objects,
    supporting both in-memory (testing) and PostGIS (production) backends.
    Every method is a single logical read or write.
    """

    def list(self, query: db_models.FeatureQuery) -> db_models.FeaturePage: ...

    def get(self, feature_id: str) -> db_models.FeatureRecord | None: ...

    def create(
        self, values: db_models.FeatureWrite
    ) -> db_models.FeatureRecord | None: ...

    def update(
        self, feature_id: str, values: db_models.FeatureWrite
    ) -> db_models.FeatureRecord | None: ...

    def update_tags(
        self, feature_id: str, set_tags: dict[str, str], delete: Sequence[str]
    ) -> db_models.FeatureRecord | None: ...

    def delete(self, feature_id: str) -> bool: ...


class InMemoryFeatureRepository(FeatureRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Stores features in a dictionary guarded by a lock. Data is lost when
    the process exits. Geometry is kept as a mapping, the way a structured
    geometry column would hand it back.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._store: dict[str, db_models.FeatureRecord] = {}
        self._order: dict[str, int] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    @staticmethod
    def _now_after(previous: datetime.datetime | None) -> datetime.datetime:
        now = datetime.datetime.now(tz=datetime.UTC)
        if previous is not None and now <= previous:
            now = previous + datetime.timedelta(microseconds=1)
        return now

    @staticmethod
    def _copy(record: db_models.FeatureRecord) -> db_models.FeatureRecord:
        geometry = record.geometry
        if isinstance(geometry, dict):
            geometry = json.loads(json.dumps(geometry))
        tags = dict(record.tags) if isinstance(record.tags, dict) else record.tags
        return db_models.FeatureRecord(
            id=record.id,
            kind=record.kind,
            geometry=geometry,
            tags=tags,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def put(self, record: db_models.FeatureRecord) -> db_models.FeatureRecord:
        """Store a record verbatim, bypassing id and timestamp generation.

        Used to seed fixtures, including deliberately corrupt rows.
        """
        with self._lock:
            self._store[record.id] = record
            self._order.setdefault(record.id, next(self._sequence))
        return self._copy(record)

    def list(self, query: db_models.FeatureQuery) -> db_models.FeaturePage:
        with self._lock:
            records = list(self._store.values())
            order = dict(self._order)

        if query.bbox is not None:
            matching = []
            for record in records:
                geometry = record.geometry
                if isinstance(geometry, str):
                    try:
                        geometry = json.loads(geometry)
                    except ValueError:
                        continue
                if not isinstance(geometry, dict):
                    continue
                bounds = bbox_utils.geometry_bounds(geometry)
                if bounds is not None and bbox_utils.intersects(bounds, query.bbox):
                    matching.append(record)
            records = matching

        records.sort(
            key=lambda record: (record.created_at, order[record.id]),
            reverse=True,
        )
        page = records[query.offset : query.offset + query.limit]
        return db_models.FeaturePage(
            records=[self._copy(record) for record in page],
            total=len(records),
        )

    def get(self, feature_id: str) -> db_models.FeatureRecord | None:
        with self._lock:
            record = self._store.get(feature_id)
        return self._copy(record) if record else None

    def create(
        self, values: db_models.FeatureWrite
    ) -> db_models.FeatureRecord | None:
        now = self._now_after(None)
        record = db_models.FeatureRecord(
            id=str(uuid.uuid4()),
            kind=values.kind,
            geometry=json.loads(json.dumps(values.geometry)),
            tags=dict(values.tags),
            created_at=now,
            updated_at=now,
        )
        return self.put(record)

    def update(
        self, feature_id: str, values: db_models.FeatureWrite
    ) -> db_models.FeatureRecord | None:
        with self._lock:
            record = self._store.get(feature_id)
            if record is None:
                return None
            record.kind = values.kind
            record.geometry = json.loads(json.dumps(values.geometry))
            record.tags = dict(values.tags)
            record.updated_at = self._now_after(record.updated_at)
            return self._copy(record)

    def update_tags(
        self, feature_id: str, set_tags: dict[str, str], delete: Sequence[str]
    ) -> db_models.FeatureRecord | None:
        """Remove ``delete`` keys, then upsert ``set_tags``, under the lock."""
        with self._lock:
            record = self._store.get(feature_id)
            if record is None:
                return None
            tags = dict(record.tags) if isinstance(record.tags, dict) else {}
            for key in delete:
                tags.pop(key, None)
            tags.update(set_tags)
            record.tags = tags
            record.updated_at = self._now_after(record.updated_at)
            return self._copy(record)

    def delete(self, feature_id: str) -> bool:
        with self._lock:
            self._order.pop(feature_id, None)
            return self._store.pop(feature_id, None) is not None


class PostgresFeatureRepository(FeatureRepositoryProtocol):
    """PostgreSQL/PostGIS-backed feature store.

    Persists features in a single ``features`` table with a
    ``geometry(Geometry, 4326)`` column and a GIST index supporting the
    bbox filter. The table is created on initialization if missing.
    Geometry is read back through ``ST_AsGeoJSON`` as GeoJSON text.
    """

    CREATE_TABLE_SQL = f"""
    CREATE TABLE IF NOT EXISTS features (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      kind TEXT NOT NULL CONSTRAINT features_kind_check
        CHECK (kind IN ({FEATURE_KINDS_SQL})),
      geom geometry(Geometry, 4326) NOT NULL,
      tags JSONB NOT NULL DEFAULT '{{}}'::jsonb,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    CREATE INDEX IF NOT EXISTS idx_features_geom ON features USING GIST (geom);
    """

    SELECT_COLUMNS = """
        id::text AS id, kind, ST_AsGeoJSON(geom) AS geometry, tags,
        created_at, updated_at
    """

    BBOX_CLAUSE = (
        "geom && ST_MakeEnvelope(%(west)s, %(south)s, %(east)s, %(north)s, 4326)"
    )

    NEXT_UPDATED_AT = "GREATEST(now(), updated_at + interval '1 microsecond')"

    def __init__(self, settings: config.Settings) -> None:
        """Initialize repository with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        """Create a new database connection."""
        return psycopg2.connect(self.settings.database_url)

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[psycopg2.extensions.cursor]:
        """Yield a dict cursor inside one transaction, then close."""
        with contextlib.closing(self._connection()) as conn:
            with conn, conn.cursor(
                cursor_factory=psycopg2.extras.RealDictCursor
            ) as cur:
                yield cur

    def _ensure_schema(self) -> None:
        """Ensure PostGIS, pgcrypto and the features table exist."""
        with self._cursor() as cur:
            cur.execute("CREATE EXTENSION IF NOT EXISTS postgis;")
            cur.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
            cur.execute(self.CREATE_TABLE_SQL)

    def list(self, query: db_models.FeatureQuery) -> db_models.FeaturePage:
        params: dict[str, object] = {"limit": query.limit, "offset": query.offset}
        where = ""
        if query.bbox is not None:
            west, south, east, north = query.bbox
            params.update(west=west, south=south, east=east, north=north)
            where = f"WHERE {self.BBOX_CLAUSE}"

        with self._cursor() as cur:
            cur.execute(f"SELECT count(*) AS total FROM features {where}", params)
            total_row = cur.fetchone()
            cur.execute(
                f"""
                SELECT {self.SELECT_COLUMNS} FROM features {where}
                ORDER BY created_at DESC, id
                LIMIT %(limit)s OFFSET %(offset)s
                """,
                params,
            )
            rows = cur.fetchall()

        total = int(cast(dict[str, Any], total_row)["total"]) if total_row else 0
        return db_models.FeaturePage(
            records=[self._from_row(cast(dict[str, object], row)) for row in rows],
            total=total,
        )

    def get(self, feature_id: str) -> db_models.FeatureRecord | None:
        canonical = _parse_uuid(feature_id)
        if canonical is None:
            return None
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {self.SELECT_COLUMNS} FROM features WHERE id = %s",
                (canonical,),
            )
            row = cur.fetchone()
        return self._from_row(cast(dict[str, object], row)) if row else None

    def create(
        self, values: db_models.FeatureWrite
    ) -> db_models.FeatureRecord | None:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO features (kind, geom, tags)
                VALUES (
                    %(kind)s,
                    ST_SetSRID(ST_GeomFromGeoJSON(%(geometry)s), 4326),
                    %(tags)s
                )
                RETURNING {self.SELECT_COLUMNS}
                """,
                self._to_row(values),
            )
            row = cur.fetchone()
        return self._from_row(cast(dict[str, object], row)) if row else None

    def update(
        self, feature_id: str, values: db_models.FeatureWrite
    ) -> db_models.FeatureRecord | None:
        canonical = _parse_uuid(feature_id)
        if canonical is None:
            return None
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE features SET
                    kind = %(kind)s,
                    geom = ST_SetSRID(ST_GeomFromGeoJSON(%(geometry)s), 4326),
                    tags = %(tags)s,
                    updated_at = {self.NEXT_UPDATED_AT}
                WHERE id = %(id)s
                RETURNING {self.SELECT_COLUMNS}
                """,
                {**self._to_row(values), "id": canonical},
            )
            row = cur.fetchone()
        return self._from_row(cast(dict[str, object], row)) if row else None

    def update_tags(
        self, feature_id: str, set_tags: dict[str, str], delete: Sequence[str]
    ) -> db_models.FeatureRecord | None:
        """Merge a tag delta into the stored JSONB in one statement.

        ``jsonb - text[]`` drops the deleted keys and ``||`` upserts the
        set keys, so concurrent deltas on different keys both survive.
        """
        canonical = _parse_uuid(feature_id)
        if canonical is None:
            return None
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE features SET
                    tags = (tags - %(delete)s::text[]) || %(set)s::jsonb,
                    updated_at = {self.NEXT_UPDATED_AT}
                WHERE id = %(id)s
                RETURNING {self.SELECT_COLUMNS}
                """,
                {
                    "delete": list(delete),
                    "set": psycopg2.extras.Json(set_tags),
                    "id": canonical,
                },
            )
            row = cur.fetchone()
        return self._from_row(cast(dict[str, object], row)) if row else None

    def delete(self, feature_id: str) -> bool:
        canonical = _parse_uuid(feature_id)
        if canonical is None:
            return False
        with self._cursor() as cur:
            cur.execute("DELETE FROM features WHERE id = %s", (canonical,))
            return cur.rowcount > 0

    @staticmethod
    def _to_row(values: db_models.FeatureWrite) -> dict[str, object]:
        """Convert validated write values to query parameters.

        Args:
            values: Kind, geometry and tags to persist.

        Returns:
            Dictionary suitable for parameterized SQL execution, with the
            geometry serialised as GeoJSON text and tags wrapped for JSONB.
        """
        return {
            "kind": values.kind,
            "geometry": json.dumps(values.geometry),
            "tags": psycopg2.extras.Json(values.tags),
        }

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.FeatureRecord:
        """Convert a database row dictionary to a FeatureRecord.

        Geometry and tags are passed through undecoded so that the domain
        service can tell malformed stored data apart from input errors.
        """
        return db_models.FeatureRecord(
            id=str(row["id"]),
            kind=str(row["kind"]),
            geometry=cast(str | dict[str, Any], row["geometry"]),
            tags=row.get("tags"),
            created_at=cast(datetime.datetime, row["created_at"]),
            updated_at=cast(datetime.datetime, row["updated_at"]),
        )


@functools.lru_cache
def _shared_memory_repository() -> InMemoryFeatureRepository:
    return InMemoryFeatureRepository()


@functools.lru_cache
def _postgres_repository(database_url: str) -> PostgresFeatureRepository:
    logger.info("Connecting feature store to PostGIS")
    return PostgresFeatureRepository(config.Settings(database_url=database_url))


def get_feature_repository(
    settings: config.Settings,
) -> FeatureRepositoryProtocol:
    """Factory function to create a feature repository.

    Repositories are cached per backend so the schema check runs once and
    the in-memory store is shared between requests.

    Args:
        settings: Application settings selecting the backend.

    Returns:
        PostgresFeatureRepository for ``repository_backend="postgres"``,
        otherwise the process-wide InMemoryFeatureRepository.
    """
    if settings.repository_backend == "memory":
        return _shared_memory_repository()
    return _postgres_repository(settings.database_url)

