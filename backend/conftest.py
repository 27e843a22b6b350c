"""Pytest configuration to expose the ``app`` package and shared fixtures."""

from __future__ import annotations

import pathlib
import sys
from collections.abc import Iterator

import pytest

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from fastapi import testclient  # noqa: E402

from app import main  # noqa: E402
from app.api import features as api_features  # noqa: E402
from app.db import database  # noqa: E402


@pytest.fixture
def repo() -> database.InMemoryFeatureRepository:
    """A fresh in-memory feature store per test."""
    return database.InMemoryFeatureRepository()


@pytest.fixture
def client(repo: database.InMemoryFeatureRepository) -> Iterator[testclient.TestClient]:
    """TestClient whose feature routes are bound to ``repo``."""
    app = main.create_app()
    app.dependency_overrides[api_features._get_repo] = lambda: repo
    try:
        yield testclient.TestClient(app)
    finally:
        app.dependency_overrides.clear()
