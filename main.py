"""
Pick Lifecycle Engine - application entry point

Boot order: logging -> config status -> database -> feeds -> engine ->
scheduler. Shutdown stops the scheduler (waiting for a running tick) before
the database is disposed.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.structured_logging import configure_structured_logging
from core.time_et import SystemClock
from database import SqlPickStore, SqlStabilityStore, init_database
from env_config import Config
from factor_scorer import FactorScorer
from identity.event_resolver import get_event_resolver
from pick_engine import PickEngine
from pick_router import pick_router, set_pick_engine
from rotation_scheduler import get_scheduler, init_scheduler
from services import MLBStatsService, OddsAPIService
from stability_guard import StabilityGuard

logger = logging.getLogger(__name__)


def build_engine(database, clock=None) -> PickEngine:
    """Production wiring: MLB Stats for schedule/form/finals, Odds API for prices."""
    clock = clock or SystemClock()
    resolver = get_event_resolver()
    mlb = MLBStatsService(resolver=resolver, clock=clock)
    odds = OddsAPIService(resolver=resolver, clock=clock)
    store = SqlPickStore(database)
    return PickEngine(
        catalog=mlb,
        quotes=odds,
        enrichment=mlb,
        result_feeds=[mlb, odds],
        scorer=FactorScorer(),
        guard=StabilityGuard(SqlStabilityStore(database), clock=clock),
        store=store,
        clock=clock,
        resolver=resolver,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_structured_logging()
    Config.log_status()
    Config.validate_required()

    database = init_database()
    engine = build_engine(database)
    set_pick_engine(engine)

    if Config.ENABLE_SCHEDULER:
        init_scheduler(engine).start()
    else:
        logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")

    yield

    scheduler = get_scheduler()
    if scheduler:
        scheduler.stop()
    set_pick_engine(None)
    database.dispose()


app = FastAPI(title="Pick Lifecycle Engine", version=Config.ENGINE_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pick_router)


@app.get("/")
def root():
    return {
        "status": "online",
        "message": "Pick Lifecycle Engine",
        "version": Config.ENGINE_VERSION,
    }


@app.get("/health")
def health():
    scheduler = get_scheduler()
    return {
        "status": "healthy",
        "scheduler_running": bool(scheduler and scheduler.running),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
