# Identity Resolution Module
# Canonical event IDs and team-name normalization shared by every feed adapter

from .name_normalizer import (
    normalize_team_name,
    normalize_person_name,
    teams_match,
    pair_key,
    unordered_pair_key,
)
from .event_resolver import (
    ResolvedEvent,
    get_event_resolver,
    EventResolver,
    EventMatchMethod,
)

__all__ = [
    'normalize_team_name',
    'normalize_person_name',
    'teams_match',
    'pair_key',
    'unordered_pair_key',
    'ResolvedEvent',
    'get_event_resolver',
    'EventResolver',
    'EventMatchMethod',
]
