"""
PICK_ENGINE.PY - Pick lifecycle facade
======================================

Wires the pipeline

    catalog + quotes + enrichment -> FactorScorer -> grade_calculator
        -> StabilityGuard (admit / reject) -> PickStore (publish)

and exposes the operations the scheduler and the HTTP layer call:

    generate_today(scope)    reuse, refresh or select today's pick
    get_current_pick(scope)  today's active pick, else the latest one
    force_rotate(scope)      manual rotation (capped per day, still guarded)
    rotate_started(scope)    move off a pick whose event has started
    grade_pending(range)     settlement
    get_stability_stats()    lock-cache observability
    evict_expired()          drop stability records past retention

Rules:
- At most one active pick per (scope, ET day). Regeneration is serialized by
  one lock and the publish is the last step, after the guard's
  compare-and-set succeeded.
- A selection locked yesterday for a scope is not picked again today unless
  nothing else is eligible.
- The premium scope skips any event sharing a team with today's general pick.
- Candidates below MIN_PICK_GRADE are only used when no candidate qualifies;
  the pick is then flagged low_quality.
- A feed outage never clears a pick: the operation logs and returns the
  previous locked pick.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from canonical_schema import CandidateEvent, DateRange, GameStatus, MarketQuote, ParticipantForm, SelectionSide
from core.errors import (
    DataUnavailable,
    ExternalFetchFailure,
    NoEligibleCandidate,
    RegenerationRejected,
)
from core.structured_logging import cycle_context
from core.time_et import Clock, SystemClock, et_date_str, previous_et_date_str
from env_config import Config
from factor_scorer import FactorScorer, ScoredSelection
from feeds import EnrichmentFeed, EventCatalog, QuoteFeed, ResultFeed, guarded_call
from grade_calculator import GradeResult, calculate_grade, grade_meets_minimum
from identity.event_resolver import EventResolver
from identity.name_normalizer import normalize_team_name
from pick_schema import Pick, PickScope, RetireReason
from pick_store import InMemoryPickStore, PickStore, generate_pick_id
from rationale import build_rationale
from settlement_engine import SettlementEngine
from stability_guard import LockDecision, StabilityGuard

logger = logging.getLogger(__name__)


def selection_key(event: CandidateEvent, quote: MarketQuote) -> str:
    """Same identity as Pick.selection_key, computed before a pick exists."""
    if quote.side == SelectionSide.HOME:
        return normalize_team_name(event.home_team)
    if quote.side == SelectionSide.AWAY:
        return normalize_team_name(event.away_team)
    return f"{event.event_ref}:{quote.side.value}"


@dataclass
class RankedOption:
    """One scored + graded selection competing for a scope/day."""
    scored: ScoredSelection
    grade: GradeResult
    key: str

    @property
    def event(self) -> CandidateEvent:
        return self.scored.event

    @property
    def quote(self) -> MarketQuote:
        return self.scored.quote


class PickEngine:
    """
    Pick lifecycle facade.

    Every collaborator is injected; anything omitted gets the in-process
    default (in-memory stores, system clock, config values).
    """

    def __init__(self, catalog: EventCatalog,
                 quotes: Optional[QuoteFeed] = None,
                 enrichment: Optional[EnrichmentFeed] = None,
                 result_feeds: Sequence[ResultFeed] = (),
                 scorer: Optional[FactorScorer] = None,
                 guard: Optional[StabilityGuard] = None,
                 store: Optional[PickStore] = None,
                 clock: Optional[Clock] = None,
                 resolver: Optional[EventResolver] = None,
                 settlement: Optional[SettlementEngine] = None,
                 min_grade: Optional[str] = None,
                 base_unit_size: Optional[float] = None,
                 max_manual_rotations: Optional[int] = None):
        self.catalog = catalog
        self.quotes = quotes
        self.enrichment = enrichment
        self.clock = clock or SystemClock()
        self.scorer = scorer or FactorScorer()
        self.guard = guard or StabilityGuard(clock=self.clock)
        self.store = store or InMemoryPickStore()
        self.resolver = resolver
        self.settlement = settlement or SettlementEngine(self.store, result_feeds, clock=self.clock)

        self.sport = Config.SPORT
        self.min_grade = min_grade or Config.MIN_PICK_GRADE
        self.base_unit_size = Config.BASE_UNIT_SIZE if base_unit_size is None else base_unit_size
        self.max_manual_rotations = (
            Config.MAX_MANUAL_ROTATIONS_PER_DAY if max_manual_rotations is None else max_manual_rotations
        )
        self.lead = timedelta(minutes=Config.CANDIDATE_LEAD_MINUTES)
        self.lookahead = timedelta(hours=Config.CANDIDATE_LOOKAHEAD_HOURS)
        self.complete_after = timedelta(hours=Config.EVENT_COMPLETE_AFTER_HOURS)

        self._lock = threading.Lock()

    # =========================================================================
    # INPUTS
    # =========================================================================

    def _list_events(self, now: datetime) -> List[CandidateEvent]:
        """Everything the catalog lists from now to the lookahead horizon."""
        return guarded_call(
            "event_catalog", self.catalog.list_upcoming_events,
            self.sport, now, now + self.lookahead,
        )

    def _in_window(self, event: CandidateEvent, now: datetime) -> bool:
        lead = event.start_time - now
        return self.lead < lead <= self.lookahead and event.status == GameStatus.SCHEDULED

    def _with_quotes(self, event: CandidateEvent) -> CandidateEvent:
        if self.quotes is None or event.quotes:
            return event
        quotes = guarded_call("quotes", self.quotes.get_quotes, event)
        return event.model_copy(update={"quotes": tuple(quotes)})

    def _form(self, team: str, cache: Dict[str, Optional[ParticipantForm]]) -> Optional[ParticipantForm]:
        if self.enrichment is None:
            return None
        key = normalize_team_name(team)
        if key not in cache:
            try:
                cache[key] = guarded_call("enrichment", self.enrichment.get_participant_form, team)
            except ExternalFetchFailure as e:
                # Neutral defaults; confidence drops
                logger.warning("Enrichment unavailable for %s: %s", team, e)
                cache[key] = None
        return cache[key]

    def _options_for(self, event: CandidateEvent,
                     form_cache: Dict[str, Optional[ParticipantForm]]) -> List[RankedOption]:
        """
        Score and grade every quoted selection on one event.

        Raises:
            DataUnavailable: starters unknown or nothing scorable
            ExternalFetchFailure: quotes could not be fetched
        """
        if not event.participants_confirmed:
            raise DataUnavailable(event.event_ref, "starting pitchers")
        event = self._with_quotes(event)
        scored = self.scorer.score_event(
            event,
            self._form(event.home_team, form_cache),
            self._form(event.away_team, form_cache),
        )
        return [
            RankedOption(s, calculate_grade(s.scores, self.base_unit_size), selection_key(event, s.quote))
            for s in scored
        ]

    # =========================================================================
    # PUBLISH
    # =========================================================================

    def _publish(self, option: RankedOption, decision: LockDecision, scope: PickScope,
                 day: str, now: datetime, replaces: Optional[Pick],
                 retire_reason: Optional[RetireReason], low_quality: bool) -> Pick:
        """Lock (compare-and-set) then publish. Raises RegenerationRejected on a lost race."""
        event, quote, scores = option.event, option.quote, option.scored.scores
        pick_id = generate_pick_id(scope, day, event.event_ref, quote.market_type.value, quote.selection, now)

        record = self.guard.lock(decision, option.grade.grade, pick_id)

        pick = Pick(
            id=pick_id,
            scope=scope,
            day=day,
            event_ref=event.event_ref,
            sport=event.sport,
            home_team=event.home_team,
            away_team=event.away_team,
            selection=quote.selection,
            side=quote.side,
            market_type=quote.market_type,
            price=quote.price,
            line=quote.line,
            reference_unit_size=option.grade.units,
            scores=scores,
            grade=option.grade.grade,
            weighted_sum=option.grade.weighted_sum,
            confidence_value=float(scores.system_confidence),
            rationale=build_rationale(event, quote, scores),
            lock_reason=record.lock_reason,
            locked_at=record.last_update,
            event_start_time=event.start_time,
            created_at=now,
            low_quality=low_quality,
        )

        try:
            self.store.publish(pick, replaces=replaces, retire_reason=retire_reason, now=now)
        except Exception:
            if decision.previous is None:
                self.guard.release(event.event_ref, pick_id=pick_id)
            raise

        if low_quality:
            logger.warning("Low-quality pick published for %s: %s %s grade %s (below %s)",
                           scope.value, event.matchup_label(), quote.selection,
                           option.grade.grade, self.min_grade)
        return pick

    # =========================================================================
    # SELECTION
    # =========================================================================

    def _other_scope_picks(self, scope: PickScope, day: str) -> List[Pick]:
        """Active picks of every other scope for the day."""
        picks = (self.store.current(other, day) for other in PickScope if other != scope)
        return [p for p in picks if p is not None]

    def _select_from_pool(self, scope: PickScope, day: str, now: datetime,
                          exclude_events: Set[str] = frozenset(),
                          manual: bool = False,
                          replaces: Optional[Pick] = None,
                          retire_reason: Optional[RetireReason] = None) -> Pick:
        """
        Pick the best eligible candidate and publish it.

        Raises:
            NoEligibleCandidate: nothing could be scored or locked
            ExternalFetchFailure: the catalog is unreachable
        """
        events = [
            e for e in self._list_events(now)
            if self._in_window(e, now) and e.event_ref not in exclude_events
        ]

        # One scope per event, so the scopes never carry the same game
        others = self._other_scope_picks(scope, day)
        held = {p.event_ref for p in others}
        events = [e for e in events if e.event_ref not in held]

        if scope == PickScope.PREMIUM:
            general = self.store.current(PickScope.GENERAL, day)
            if general is not None:
                events = [e for e in events if not e.shares_participant(general.teams)]
        foreign_ids = {p.id for p in others}

        form_cache: Dict[str, Optional[ParticipantForm]] = {}
        options: List[RankedOption] = []
        skipped = 0
        for event in events:
            try:
                options.extend(self._options_for(event, form_cache))
            except DataUnavailable as e:
                skipped += 1
                logger.debug("Skipping candidate: %s", e)
            except ExternalFetchFailure as e:
                skipped += 1
                logger.error("Candidate %s dropped, feed failure: %s", event.event_ref, e)

        if not options:
            raise NoEligibleCandidate(scope.value, day, skipped)

        yesterday = self.store.selections_for_day(scope, previous_et_date_str(day))
        fresh = [o for o in options if o.key not in yesterday]
        if not fresh:
            logger.warning("Only yesterday's %s selections are eligible for %s; repeating",
                           scope.value, day)
            fresh = options

        # Grades are monotonic in the weighted sum, so every qualifying option
        # is tried before any option below the minimum grade
        fresh.sort(key=lambda o: o.grade.weighted_sum, reverse=True)

        rejected_events: Set[str] = set()
        for option in fresh:
            if option.event.event_ref in rejected_events:
                continue
            below_minimum = not grade_meets_minimum(option.grade.grade, self.min_grade)
            try:
                decision = self.guard.evaluate(option.event, manual=manual, foreign_pick_ids=foreign_ids)
                pick = self._publish(option, decision, scope, day, now, replaces,
                                     retire_reason, low_quality=below_minimum)
            except (RegenerationRejected, DataUnavailable) as e:
                logger.debug("Guard declined %s: %s", option.event.event_ref, e)
                rejected_events.add(option.event.event_ref)
                continue

            logger.info("Selected %s for %s %s: %s grade %s (%.2f) from %d options",
                        pick.id, scope.value, day, pick.selection, pick.grade,
                        pick.weighted_sum, len(fresh))
            return pick

        raise NoEligibleCandidate(scope.value, day, skipped + len(rejected_events))

    def _refresh_existing(self, existing: Pick, now: datetime) -> Pick:
        """
        Re-lock the active pick's event if the guard admits it, else keep it.
        The same selection is kept when it is still quoted.
        """
        event = next((e for e in self._list_events(now) if e.event_ref == existing.event_ref), None)
        if event is None:
            logger.info("Event %s no longer listed; keeping %s", existing.event_ref, existing.id)
            return existing

        foreign_ids = {p.id for p in self._other_scope_picks(existing.scope, existing.day)}
        try:
            decision = self.guard.evaluate(event, foreign_pick_ids=foreign_ids)
        except RegenerationRejected as e:
            logger.debug("Keeping %s: %s", existing.id, e.reason)
            return existing
        except DataUnavailable as e:
            logger.info("Keeping %s: %s", existing.id, e)
            return existing

        try:
            options = self._options_for(event, {})
        except DataUnavailable as e:
            logger.info("Keeping %s, refresh inputs incomplete: %s", existing.id, e)
            return existing

        same = [o for o in options
                if o.quote.market_type == existing.market_type and o.quote.side == existing.side]
        option = max(same or options, key=lambda o: o.grade.weighted_sum)

        try:
            return self._publish(
                option, decision, existing.scope, existing.day, now,
                replaces=existing, retire_reason=RetireReason.SUPERSEDED,
                low_quality=not grade_meets_minimum(option.grade.grade, self.min_grade),
            )
        except RegenerationRejected as e:
            logger.info("Lost lock race on %s; keeping %s", e.event_ref, existing.id)
            return existing

    def _has_started(self, pick: Pick, now: datetime) -> bool:
        if now >= pick.event_start_time:
            return True
        if self.resolver is not None:
            resolved = self.resolver.get_by_canonical_id(pick.event_ref)
            return resolved is not None and resolved.status == "final"
        return False

    def _rotate(self, scope: PickScope, day: str, now: datetime, existing: Pick,
                reason: RetireReason, manual: bool = False) -> Pick:
        pick = self._select_from_pool(
            scope, day, now,
            exclude_events={existing.event_ref},
            manual=manual,
            replaces=existing,
            retire_reason=reason,
        )
        self.guard.release(existing.event_ref, pick_id=existing.id)
        logger.info("Rotated %s %s: %s -> %s (%s)", scope.value, day, existing.id, pick.id, reason.value)
        return pick

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def _today(self, now: datetime) -> str:
        return et_date_str(now)

    def generate_today(self, scope: PickScope) -> Optional[Pick]:
        """
        Today's pick for a scope.

        Returns the active pick unchanged unless the guard admits a refresh of
        its event or the event has started (then rotates). With no active pick,
        selects from the candidate pool.
        """
        with self._lock, cycle_context("generate"):
            now = self.clock.now()
            day = self._today(now)
            existing = self.store.current(scope, day)
            try:
                if existing is None:
                    return self._select_from_pool(scope, day, now)
                if self._has_started(existing, now):
                    return self._rotate(scope, day, now, existing, RetireReason.EVENT_STARTED)
                return self._refresh_existing(existing, now)
            except NoEligibleCandidate as e:
                logger.warning("%s; keeping previous pick", e)
                return existing
            except ExternalFetchFailure as e:
                logger.error("Generation for %s failed, serving stale pick: %s", scope.value, e)
                return existing or self.store.latest(scope)

    def get_current_pick(self, scope: PickScope) -> Optional[Pick]:
        day = self._today(self.clock.now())
        return self.store.current(scope, day) or self.store.latest(scope)

    def force_rotate(self, scope: PickScope) -> Optional[Pick]:
        """
        Manual rotation. Bypasses the refresh interval for the newly chosen
        event (manual lock) but still goes through the guard's compare-and-set.

        Raises:
            RegenerationRejected: daily manual rotation limit reached
        """
        with self._lock, cycle_context("manual"):
            now = self.clock.now()
            day = self._today(now)
            existing = self.store.current(scope, day)

            used = self.store.manual_rotations(scope, day)
            if used >= self.max_manual_rotations:
                ref = existing.event_ref if existing else scope.value
                raise RegenerationRejected(ref, f"manual rotation limit ({self.max_manual_rotations}/day) reached")

            try:
                if existing is None:
                    return self._select_from_pool(scope, day, now, manual=True,
                                                  retire_reason=RetireReason.MANUAL_ROTATION)
                return self._rotate(scope, day, now, existing, RetireReason.MANUAL_ROTATION, manual=True)
            except NoEligibleCandidate as e:
                logger.warning("Manual rotation found nothing: %s", e)
                return existing
            except ExternalFetchFailure as e:
                logger.error("Manual rotation for %s failed: %s", scope.value, e)
                return existing

    def rotate_started(self, scope: PickScope) -> Optional[Pick]:
        """Event-start poll: rotate off today's pick once its event is under way."""
        with self._lock, cycle_context("event-poll"):
            now = self.clock.now()
            day = self._today(now)
            existing = self.store.current(scope, day)
            if existing is None or not self._has_started(existing, now):
                return existing
            try:
                return self._rotate(scope, day, now, existing, RetireReason.EVENT_STARTED)
            except NoEligibleCandidate as e:
                logger.info("No rotation candidate after %s started: %s", existing.event_ref, e)
                return existing
            except ExternalFetchFailure as e:
                logger.error("Rotation for %s failed, keeping %s: %s", scope.value, existing.id, e)
                return existing

    def completed_pending(self) -> List[Pick]:
        """Pending picks whose event should be over by now."""
        now = self.clock.now()
        done = []
        for pick in self.store.pending(started_before=now):
            finished = now >= pick.event_start_time + self.complete_after
            if not finished and self.resolver is not None:
                resolved = self.resolver.get_by_canonical_id(pick.event_ref)
                finished = resolved is not None and resolved.status == "final"
            if finished:
                done.append(pick)
        return done

    def grade_pending(self, date_range: Optional[DateRange] = None) -> int:
        with cycle_context("settlement"):
            return self.settlement.grade_pending(date_range)

    def get_stability_stats(self) -> Dict[str, Any]:
        return self.guard.get_cache_stats()

    def evict_expired(self) -> int:
        with cycle_context("eviction"):
            return self.guard.evict_expired()

    def get_status(self) -> Dict[str, Any]:
        now = self.clock.now()
        day = self._today(now)
        current = {}
        for scope in PickScope:
            pick = self.store.current(scope, day)
            current[scope.value] = pick.to_dict() if pick else None
        return {
            "engine_version": Config.ENGINE_VERSION,
            "day": day,
            "now": now.isoformat(),
            "current_picks": current,
            "stability": self.get_stability_stats(),
            "settlement": self.settlement.get_stats(),
        }
