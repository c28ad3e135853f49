"""Fixtures for HTTP-level tests against the real app (lifespan included)."""

from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sse_starlette.sse import AppStatus

from tvcurator.config import Settings
from tvcurator.main import create_app


@pytest.fixture(autouse=True)
def reset_sse_exit_event() -> None:
    """sse-starlette keeps its shutdown event on the class, bound to the first loop it saw."""
    AppStatus.should_exit_event = None


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    """App wired to the temp database and library."""
    return create_app(settings)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """Client with the lifespan running (registry, dispatcher, services on app.state)."""
    with TestClient(app) as test_client:
        yield test_client
