"""Tests for the demo data seeder."""

from __future__ import annotations

import pytest

from app.core import config
from app.db import database, seed
from app.db import models as db_models


def test_seed_inserts_demo_features(repo: database.InMemoryFeatureRepository) -> None:
    """Test that both demo features are stored with their names."""
    created = seed.seed(repo)
    assert [feature["properties"]["tags"]["name"] for feature in created] == [
        "Null Island",
        "Test Line",
    ]
    page = repo.list(db_models.FeatureQuery(limit=10, offset=0))
    assert page.total == 2


def test_main_uses_configured_backend(
    monkeypatch: pytest.MonkeyPatch, repo: database.InMemoryFeatureRepository
) -> None:
    """Test that the entry point seeds the repository chosen by settings."""
    requested: list[config.Settings] = []

    def get_repo(settings: config.Settings) -> database.FeatureRepositoryProtocol:
        requested.append(settings)
        return repo

    monkeypatch.setattr(database, "get_feature_repository", get_repo)
    seed.main()
    assert len(requested) == 1
    assert repo.list(db_models.FeatureQuery(limit=10, offset=0)).total == 2
