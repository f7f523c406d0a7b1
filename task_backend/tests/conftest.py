import os
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

# Ensure we default to memory backend for tests to avoid filesystem dependencies
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from tasks_api.main import app  # noqa: E402
from tasks_api.models import utcnow  # noqa: E402
from tasks_api.repositories import InMemoryRepository, get_repository  # noqa: E402


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def client(repo):
    # Each test gets its own empty store.
    app.dependency_overrides[get_repository] = lambda: repo
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def past():
    return utcnow() - timedelta(days=1)


@pytest.fixture
def future():
    return utcnow() + timedelta(days=7)
