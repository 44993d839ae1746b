"""Shared fixtures: an isolated in-memory database per test."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

import tracker.models.tracker_models  # noqa: F401
from tracker.database import build_engine, get_session
from tracker.main import app


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(engine):
    def _session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def project(client):
    resp = client.post(
        "/projects",
        json={"name": "Apollo", "description": "Moonshot", "initiative_manager": "Ada"},
        headers={"X-User-Id": "1", "X-User-Email": "ada@example.com"},
    )
    assert resp.status_code == 200
    return resp.json()


@pytest.fixture
def metric(client, project):
    resp = client.post(
        f"/projects/{project['id']}/metrics",
        json={
            "name": "Signups",
            "start_date": "2024-01-01",
            "end_date": "2024-04-01",
            "frequency": "monthly",
            "progression_type": "linear",
            "final_target": 100,
        },
    )
    assert resp.status_code == 200
    return resp.json()
