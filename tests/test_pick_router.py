"""
HTTP tests for the pick lifecycle router
"""

from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pick_router import pick_router, set_pick_engine
from conftest import START, FakeResults, make_event, make_result


@pytest.fixture
def engine(make_engine):
    events = [
        make_event("MLB:MLB_STATS:1", "New York Mets", "Cincinnati Reds", price=-215),
        make_event("MLB:MLB_STATS:2", "Colorado Rockies", "Los Angeles Dodgers", price=590),
    ]
    return make_engine(events, result_feeds=[FakeResults([make_result("MLB:MLB_STATS:1", 5, 3)])])


@pytest.fixture
def client(engine):
    app = FastAPI()
    app.include_router(pick_router)
    set_pick_engine(engine)
    yield TestClient(app)
    set_pick_engine(None)


def test_engine_not_initialized():
    app = FastAPI()
    app.include_router(pick_router)
    set_pick_engine(None)

    response = TestClient(app).get("/picks/general/current")
    assert response.status_code == 503


def test_generate_and_current(client):
    response = client.post("/picks/general/generate")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["scope"] == "general"
    assert body["pick"]["grade"] == "B+"
    assert body["pick"]["matchup"] == "Cincinnati Reds @ New York Mets"

    current = client.get("/picks/general/current").json()
    assert current["pick"]["id"] == body["pick"]["id"]


def test_current_before_generation_is_null(client):
    response = client.get("/picks/authenticated-premium/current")
    assert response.status_code == 200
    assert response.json()["pick"] is None


def test_unknown_scope(client):
    assert client.get("/picks/vip/current").status_code == 404


def test_rotate_limit_returns_409(client, clock):
    client.post("/picks/general/generate")

    clock.advance(minutes=5)
    assert client.post("/picks/general/rotate").status_code == 200
    clock.advance(minutes=5)
    assert client.post("/picks/general/rotate").status_code == 200
    clock.advance(minutes=5)

    response = client.post("/picks/general/rotate")
    assert response.status_code == 409
    assert "limit" in response.json()["detail"]


def test_grade_endpoint(client, clock):
    client.post("/picks/general/generate")
    clock.set(START + timedelta(hours=5))

    response = client.post("/picks/grade", params={"start": "2026-07-18", "end": "2026-07-18"})
    assert response.status_code == 200
    assert response.json()["settled"] == 1


def test_grade_rejects_reversed_range(client):
    response = client.post("/picks/grade", params={"start": "2026-07-18", "end": "2026-07-10"})
    assert response.status_code == 400


def test_stability_stats_and_status(client):
    client.post("/picks/general/generate")

    stats = client.get("/picks/stability/stats").json()
    assert stats["stability"]["count"] == 1

    status = client.get("/picks/status").json()
    assert status["engine"]["current_picks"]["general"]["grade"] == "B+"
    assert "scheduler" in status
