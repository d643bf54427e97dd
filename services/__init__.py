# services/__init__.py
# Feed adapters: MLB Stats API (schedule, form, finals) and The Odds API (quotes, finals fallback)

from .mlb_stats_service import MLBStatsService, team_form_from_record
from .odds_api_service import OddsAPIService

__all__ = [
    "MLBStatsService",
    "team_form_from_record",
    "OddsAPIService",
]
