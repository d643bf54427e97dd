"""
Tests for canonical event identity and name normalization
"""

from identity.event_resolver import EventMatchMethod, EventResolver
from identity.name_normalizer import (
    normalize_person_name,
    normalize_team_name,
    pair_key,
    teams_match,
    unordered_pair_key,
)


class TestNameNormalizer:

    def test_aliases_collapse_to_club_name(self):
        assert normalize_team_name("St. Louis Cardinals") == "st louis cardinals"
        assert normalize_team_name("STL") == "st louis cardinals"
        assert normalize_team_name("Cardinals") == "st louis cardinals"

    def test_teams_match(self):
        assert teams_match("NY Mets", "New York Mets")
        assert not teams_match("New York Mets", "New York Yankees")
        assert not teams_match("", "")

    def test_person_name(self):
        assert normalize_person_name("Luis García Jr.") == "luis garcia"

    def test_pair_keys(self):
        assert pair_key("Mets", "Reds") == "cincinnati reds@new york mets"
        assert unordered_pair_key("Mets", "Reds") == unordered_pair_key("Cincinnati Reds", "NYM")


class TestEventResolver:

    def setup_method(self):
        self.resolver = EventResolver()

    def test_provider_id_becomes_canonical(self):
        resolved = self.resolver.resolve_event(
            sport="mlb",
            home_team="New York Mets",
            away_team="Cincinnati Reds",
            commence_time="2026-07-18T23:10:00Z",
            provider="mlb_stats",
            provider_id=777087,
        )
        assert resolved.canonical_event_id == "MLB:MLB_STATS:777087"
        assert resolved.match_method == EventMatchMethod.NEW_EVENT

    def test_second_provider_joins_same_event(self):
        first = self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds",
                                            "2026-07-18T23:10:00Z", provider="mlb_stats", provider_id="777087")
        second = self.resolver.resolve_event("MLB", "NY Mets", "Reds",
                                             "2026-07-18T23:05:00Z", provider="odds_api", provider_id="e91f")

        assert second.canonical_event_id == first.canonical_event_id
        assert second.match_method == EventMatchMethod.TEAM_TIME_MATCH
        assert self.resolver.get_by_provider_id("odds_api", "e91f").canonical_event_id == "MLB:MLB_STATS:777087"

    def test_known_provider_id_is_exact(self):
        self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds",
                                    "2026-07-18T23:10:00Z", provider="mlb_stats", provider_id="777087")
        again = self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds",
                                            "2026-07-18T23:10:00Z", provider="mlb_stats", provider_id="777087")
        assert again.match_method == EventMatchMethod.EXACT_ID

    def test_doubleheader_games_stay_separate(self):
        game1 = self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds",
                                            "2026-07-18T17:10:00Z", provider="mlb_stats", provider_id="1")
        game2 = self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds",
                                            "2026-07-18T23:10:00Z", provider="mlb_stats", provider_id="2")
        assert game1.canonical_event_id != game2.canonical_event_id

    def test_time_based_id_without_provider(self):
        resolved = self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds", "2026-07-18T23:10:00Z")
        assert resolved.canonical_event_id.startswith("MLB:TIME:cincinnati_reds@new_york_mets:")

    def test_update_status(self):
        resolved = self.resolver.resolve_event("MLB", "New York Mets", "Cincinnati Reds",
                                               "2026-07-18T23:10:00Z", provider="mlb_stats", provider_id="9")
        assert self.resolver.update_event_status(resolved.canonical_event_id, "final", 5, 3)
        assert self.resolver.get_by_canonical_id(resolved.canonical_event_id).status == "final"
        assert not self.resolver.update_event_status("MLB:NOPE:1", "final")
