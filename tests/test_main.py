"""
App bootstrap tests: production wiring and the unauthenticated endpoints
"""

from fastapi.testclient import TestClient

from core.time_et import FixedClock
from database import Database, SqlPickStore, SqlStabilityStore
from main import app, build_engine
from services import MLBStatsService, OddsAPIService
from conftest import NOW


def test_build_engine_wires_sql_stores_and_feeds():
    database = Database("sqlite://")
    database.create_all()
    clock = FixedClock(NOW)

    engine = build_engine(database, clock=clock)

    assert isinstance(engine.store, SqlPickStore)
    assert isinstance(engine.guard.store, SqlStabilityStore)
    assert isinstance(engine.catalog, MLBStatsService)
    assert isinstance(engine.quotes, OddsAPIService)
    assert engine.enrichment is engine.catalog
    assert len(engine.settlement.result_feeds) == 2
    assert engine.clock is clock
    database.dispose()


def test_root_and_health():
    client = TestClient(app)

    root = client.get("/").json()
    assert root["status"] == "online"

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert "scheduler_running" in health
