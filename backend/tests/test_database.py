"""Tests for the feature repositories and their row mapping.

This module contains unit tests for the feature store abstractions:
- InMemoryFeatureRepository: CRUD, ordering, paging and bbox filtering.
- PostgresFeatureRepository: row conversion and the SQL it issues,
  exercised against a recording cursor so no database is required.
"""

from __future__ import annotations

import contextlib
import datetime
import json
import threading
from collections.abc import Iterator
from typing import Any

import psycopg2.extras
import pytest

from app.core import config
from app.db import database
from app.db import models as db_models


def _write(kind: str = "point", lon: float = 0.0, lat: float = 0.0) -> db_models.FeatureWrite:
    return db_models.FeatureWrite(
        kind=kind,
        geometry={"type": "Point", "coordinates": [lon, lat]},
        tags={"name": "Null Island"},
    )


def test_in_memory_create_and_get() -> None:
    """Test that created records get an id and equal timestamps."""
    repo = database.InMemoryFeatureRepository()
    created = repo.create(_write())
    assert created is not None
    assert database._parse_uuid(created.id) == created.id
    assert created.created_at == created.updated_at
    assert repo.get(created.id) == created


def test_in_memory_returns_copies() -> None:
    """Test that callers cannot mutate stored records."""
    repo = database.InMemoryFeatureRepository()
    created = repo.create(_write())
    assert created is not None
    fetched = repo.get(created.id)
    assert fetched is not None
    fetched.tags["name"] = "changed"
    fetched.geometry["coordinates"][0] = 99  # type: ignore[index]
    again = repo.get(created.id)
    assert again is not None
    assert again.tags == {"name": "Null Island"}
    assert again.geometry["coordinates"] == [0.0, 0.0]  # type: ignore[index]


def test_in_memory_update_advances_updated_at() -> None:
    """Test that every mutation moves updated_at strictly forward."""
    repo = database.InMemoryFeatureRepository()
    created = repo.create(_write())
    assert created is not None
    replaced = repo.update(created.id, _write(kind="point", lon=1.0))
    assert replaced is not None
    assert replaced.created_at == created.created_at
    assert replaced.updated_at > created.updated_at
    retagged = repo.update_tags(created.id, {"ref": "A1"}, ["name"])
    assert retagged is not None
    assert retagged.tags == {"ref": "A1"}
    assert retagged.updated_at > replaced.updated_at


def test_in_memory_missing_records() -> None:
    """Test that missing ids yield None or False."""
    repo = database.InMemoryFeatureRepository()
    assert repo.get("missing") is None
    assert repo.update("missing", _write()) is None
    assert repo.update_tags("missing", {}, []) is None
    assert repo.delete("missing") is False


def test_in_memory_delete_once() -> None:
    """Test that a record can only be deleted once."""
    repo = database.InMemoryFeatureRepository()
    created = repo.create(_write())
    assert created is not None
    assert repo.delete(created.id) is True
    assert repo.delete(created.id) is False
    assert repo.get(created.id) is None


def test_in_memory_list_newest_first_with_paging() -> None:
    """Test ordering, paging and the total count."""
    repo = database.InMemoryFeatureRepository()
    ids = []
    for index in range(5):
        created = repo.create(_write(lon=float(index)))
        assert created is not None
        ids.append(created.id)

    page = repo.list(db_models.FeatureQuery(limit=2, offset=1))
    assert page.total == 5
    assert [record.id for record in page.records] == [ids[3], ids[2]]


def test_in_memory_list_ties_on_created_at() -> None:
    """Test that identical creation times fall back to insertion order."""
    repo = database.InMemoryFeatureRepository()
    stamp = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)
    for feature_id in ("a", "b", "c"):
        repo.put(
            db_models.FeatureRecord(
                id=feature_id,
                kind="point",
                geometry={"type": "Point", "coordinates": [0, 0]},
                tags={},
                created_at=stamp,
                updated_at=stamp,
            )
        )
    page = repo.list(db_models.FeatureQuery(limit=10, offset=0))
    assert [record.id for record in page.records] == ["c", "b", "a"]


def test_in_memory_bbox_filter() -> None:
    """Test that only intersecting features are listed and counted."""
    repo = database.InMemoryFeatureRepository()
    inside = repo.create(_write(lon=0.5, lat=0.5))
    repo.create(_write(lon=10.0, lat=10.0))
    repo.put(
        db_models.FeatureRecord(
            id="corrupt", kind="point", geometry="{not json", tags={}
        )
    )
    assert inside is not None

    page = repo.list(db_models.FeatureQuery(limit=10, offset=0, bbox=(0, 0, 1, 1)))
    assert page.total == 1
    assert [record.id for record in page.records] == [inside.id]


def test_in_memory_bbox_accepts_geojson_text() -> None:
    """Test that geometry stored as GeoJSON text is filtered too."""
    repo = database.InMemoryFeatureRepository()
    repo.put(
        db_models.FeatureRecord(
            id="text",
            kind="line",
            geometry=json.dumps(
                {"type": "LineString", "coordinates": [[-5, -5], [5, 5]]}
            ),
            tags={},
        )
    )
    page = repo.list(db_models.FeatureQuery(limit=10, offset=0, bbox=(1, 1, 2, 2)))
    assert page.total == 1


def test_parse_uuid() -> None:
    """Test UUID canonicalisation."""
    value = "8D91A8C9-9A73-4F25-BFE1-2EAC898D0C04"
    assert database._parse_uuid(value) == value.lower()
    assert database._parse_uuid("not-a-uuid") is None


def test_postgres_repository_to_row() -> None:
    """Test conversion of write values to query parameters."""
    row = database.PostgresFeatureRepository._to_row(_write())
    assert row["kind"] == "point"
    assert json.loads(str(row["geometry"])) == {
        "type": "Point",
        "coordinates": [0.0, 0.0],
    }
    assert isinstance(row["tags"], psycopg2.extras.Json)
    assert row["tags"].adapted == {"name": "Null Island"}


def test_postgres_repository_from_row() -> None:
    """Test that geometry text and tags pass through undecoded."""
    now = datetime.datetime.now(tz=datetime.UTC)
    record = database.PostgresFeatureRepository._from_row(
        {
            "id": "8d91a8c9-9a73-4f25-bfe1-2eac898d0c04",
            "kind": "line",
            "geometry": '{"type":"LineString","coordinates":[[0,0],[1,1]]}',
            "tags": {"name": "Test Line"},
            "created_at": now,
            "updated_at": now,
        }
    )
    assert record.geometry == '{"type":"LineString","coordinates":[[0,0],[1,1]]}'
    assert record.tags == {"name": "Test Line"}
    assert record.created_at == now


class RecordingCursor:
    """Stand-in for a RealDictCursor that records executed statements."""

    def __init__(self, one: Any = None, many: list[Any] | None = None) -> None:
        self.executed: list[tuple[str, Any]] = []
        self.one = one
        self.many = many or []
        self.rowcount = 0

    def execute(self, sql: str, params: Any = None) -> None:
        self.executed.append((sql, params))

    def fetchone(self) -> Any:
        return self.one

    def fetchall(self) -> list[Any]:
        return self.many


def _postgres_repo(
    monkeypatch: pytest.MonkeyPatch, cursor: RecordingCursor
) -> database.PostgresFeatureRepository:
    repo = database.PostgresFeatureRepository.__new__(database.PostgresFeatureRepository)

    @contextlib.contextmanager
    def fake_cursor() -> Iterator[RecordingCursor]:
        yield cursor

    monkeypatch.setattr(repo, "_cursor", fake_cursor)
    return repo


def test_postgres_list_applies_bbox(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that list counts and pages with the same envelope filter."""
    cursor = RecordingCursor(one={"total": 0})
    repo = _postgres_repo(monkeypatch, cursor)

    page = repo.list(db_models.FeatureQuery(limit=5, offset=10, bbox=(0, 1, 2, 3)))

    assert page == db_models.FeaturePage(records=[], total=0)
    count_sql, count_params = cursor.executed[0]
    select_sql, select_params = cursor.executed[1]
    assert "count(*)" in count_sql
    assert "ST_MakeEnvelope" in count_sql and "ST_MakeEnvelope" in select_sql
    assert "ORDER BY created_at DESC" in select_sql
    assert select_params == {
        "limit": 5,
        "offset": 10,
        "west": 0,
        "south": 1,
        "east": 2,
        "north": 3,
    }
    assert count_params == select_params


def test_postgres_invalid_uuid_skips_query(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that malformed ids are treated as missing without a query."""
    cursor = RecordingCursor()
    repo = _postgres_repo(monkeypatch, cursor)
    assert repo.get("nope") is None
    assert repo.update("nope", _write()) is None
    assert repo.update_tags("nope", {}, []) is None
    assert repo.delete("nope") is False
    assert cursor.executed == []


def test_postgres_update_tags_bumps_updated_at(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that tag updates move updated_at forward in SQL."""
    cursor = RecordingCursor()
    repo = _postgres_repo(monkeypatch, cursor)
    feature_id = "8d91a8c9-9a73-4f25-bfe1-2eac898d0c04"
    assert repo.update_tags(feature_id, {"a": "1"}, ["b"]) is None
    sql, params = cursor.executed[0]
    assert database.PostgresFeatureRepository.NEXT_UPDATED_AT in sql
    assert params["id"] == feature_id


def test_postgres_update_tags_merges_in_one_statement(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test that the tag delta is applied by the UPDATE itself."""
    cursor = RecordingCursor()
    repo = _postgres_repo(monkeypatch, cursor)
    feature_id = "8d91a8c9-9a73-4f25-bfe1-2eac898d0c04"

    repo.update_tags(feature_id, {"name": "B"}, ("note", "name"))

    assert len(cursor.executed) == 1
    sql, params = cursor.executed[0]
    assert "SELECT" not in sql.split("RETURNING")[0]
    assert "(tags - %(delete)s::text[]) || %(set)s::jsonb" in sql
    assert params["delete"] == ["note", "name"]
    assert isinstance(params["set"], psycopg2.extras.Json)
    assert params["set"].adapted == {"name": "B"}


def test_get_feature_repository_memory_is_shared() -> None:
    """Test that the memory backend is one process-wide store."""
    settings = config.Settings(repository_backend="memory")
    first = database.get_feature_repository(settings)
    assert isinstance(first, database.InMemoryFeatureRepository)
    assert database.get_feature_repository(settings) is first


def test_get_feature_repository_postgres(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that the postgres backend is built once per database URL."""

    class FakeRepo:
        def __init__(self, settings: config.Settings) -> None:
            self.settings = settings

    monkeypatch.setattr(database, "PostgresFeatureRepository", FakeRepo)
    database._postgres_repository.cache_clear()
    try:
        settings = config.Settings(
            repository_backend="postgres",
            database_url="postgresql://u:p@localhost:5432/test",
        )
        repo = database.get_feature_repository(settings)
        assert isinstance(repo, FakeRepo)
        assert repo.settings.database_url == settings.database_url
        assert database.get_feature_repository(settings) is repo
    finally:
        database._postgres_repository.cache_clear()


def test_in_memory_update_tags_keeps_concurrent_keys() -> None:
    """Test that deltas on different keys from many threads all land."""
    repo = database.InMemoryFeatureRepository()
    created = repo.create(_write())
    assert created is not None

    def add(index: int) -> None:
        repo.update_tags(created.id, {f"k{index}": str(index)}, [])

    threads = [threading.Thread(target=add, args=(i,)) for i in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stored = repo.get(created.id)
    assert stored is not None
    assert stored.tags == {
        "name": "Null Island",
        **{f"k{i}": str(i) for i in range(20)},
    }


def test_in_memory_update_tags_delete_then_set() -> None:
    """Test that a key both deleted and set keeps the new value."""
    repo = database.InMemoryFeatureRepository()
    created = repo.create(_write())
    assert created is not None
    updated = repo.update_tags(created.id, {"name": "New"}, ["name", "missing"])
    assert updated is not None
    assert updated.tags == {"name": "New"}
