"""
Pick Lifecycle API Router
=========================
Thin HTTP surface over the PickEngine facade. No auth: mount it behind
whatever the deployment uses.

Endpoints:
- GET  /picks/{scope}/current    - Active pick (today's, else the latest)
- POST /picks/{scope}/generate   - Generate/refresh today's pick
- POST /picks/{scope}/rotate     - Manual rotation (409 when the guard refuses)
- POST /picks/grade              - Settle pending picks (?start=&end= ET days)
- GET  /picks/stability/stats    - Stability cache statistics
- GET  /picks/status             - Engine + scheduler status
"""

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from canonical_schema import DateRange
from core.errors import RegenerationRejected
from pick_engine import PickEngine
from pick_schema import Pick, PickScope
from rotation_scheduler import get_scheduler

logger = logging.getLogger(__name__)

pick_router = APIRouter(prefix="/picks", tags=["Pick Lifecycle"])

# Engine instance (set by main app or tests)
_engine: Optional[PickEngine] = None


def set_pick_engine(engine: Optional[PickEngine]):
    global _engine
    _engine = engine


def get_pick_engine() -> PickEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Pick engine not initialized")
    return _engine


def _scope(value: str) -> PickScope:
    try:
        return PickScope(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown scope '{value}'")


def _pick_response(scope: PickScope, pick: Optional[Pick]) -> Dict[str, Any]:
    return {
        "status": "success",
        "scope": scope.value,
        "pick": pick.to_dict() if pick else None,
    }


# ============================================
# PICKS
# ============================================

@pick_router.get("/status")
async def engine_status():
    engine = get_pick_engine()
    scheduler = get_scheduler()
    return {
        "status": "success",
        "engine": engine.get_status(),
        "scheduler": scheduler.get_status() if scheduler else {"status": "not_initialized"},
    }


@pick_router.get("/stability/stats")
async def stability_stats():
    return {"status": "success", "stability": get_pick_engine().get_stability_stats()}


@pick_router.post("/grade")
def grade_pending(
    start: Optional[date] = Query(None, description="First ET pick day (YYYY-MM-DD)"),
    end: Optional[date] = Query(None, description="Last ET pick day (YYYY-MM-DD)"),
):
    engine = get_pick_engine()
    date_range = None
    if start or end:
        try:
            date_range = DateRange(start=start or end, end=end or start)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    settled = engine.grade_pending(date_range)
    return {"status": "success", "settled": settled}


@pick_router.get("/{scope}/current")
def current_pick(scope: str):
    pick_scope = _scope(scope)
    return _pick_response(pick_scope, get_pick_engine().get_current_pick(pick_scope))


@pick_router.post("/{scope}/generate")
def generate_pick(scope: str):
    pick_scope = _scope(scope)
    return _pick_response(pick_scope, get_pick_engine().generate_today(pick_scope))


@pick_router.post("/{scope}/rotate")
def rotate_pick(scope: str):
    pick_scope = _scope(scope)
    try:
        pick = get_pick_engine().force_rotate(pick_scope)
    except RegenerationRejected as e:
        logger.info("Manual rotation refused for %s: %s", pick_scope.value, e.reason)
        raise HTTPException(status_code=409, detail=e.reason)
    return _pick_response(pick_scope, pick)
