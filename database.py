# database.py - SQLAlchemy storage for picks and stability records
# Durable implementations of the PickStore and StabilityStore contracts

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from canonical_schema import MarketType, SelectionSide
from data_dir import ensure_dirs, get_default_database_url
from env_config import Config
from pick_schema import (
    FactorScoreSet,
    LockReason,
    Pick,
    PickChange,
    PickScope,
    PickStatus,
    RetireReason,
    StabilityRecord,
)
from pick_store import PickStore, retired_version
from stability_guard import StabilityStore

logger = logging.getLogger("database")

Base = declarative_base()


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    """Store UTC; SQLite drops tzinfo, so keep wall time in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# DATABASE HANDLE
# ============================================================================

class Database:
    """Engine + session factory. One per process (see init_database)."""

    def __init__(self, url: str):
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)

        if url.startswith("sqlite"):
            kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same memory DB
                kwargs["poolclass"] = StaticPool
            self.db_type = "sqlite"
        else:
            kwargs = {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}
            self.db_type = "postgresql"

        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()


_database: Optional[Database] = None


def init_database(url: Optional[str] = None) -> Database:
    """Initialize the process-wide database and create tables."""
    global _database

    url = url or Config.DATABASE_URL
    if not url:
        ensure_dirs()
        url = get_default_database_url()

    database = Database(url)
    database.create_all()
    _database = database
    logger.info("Database initialized (%s)", database.db_type)
    return database


def get_database() -> Optional[Database]:
    return _database


# ============================================================================
# MODELS
# ============================================================================

class PickRecord(Base):
    """Every published pick. Rows are never deleted."""
    __tablename__ = "picks"

    id = Column(String(12), primary_key=True)
    scope = Column(String(32), nullable=False)
    day = Column(String(10), nullable=False)
    event_ref = Column(String(128), nullable=False)
    sport = Column(String(10), nullable=False)
    home_team = Column(String(100), nullable=False)
    away_team = Column(String(100), nullable=False)
    selection = Column(String(100), nullable=False)
    side = Column(String(10), nullable=False)
    market_type = Column(String(20), nullable=False)
    price = Column(Integer, nullable=False)
    line = Column(Float, nullable=True)
    reference_unit_size = Column(Float, nullable=False)
    scores = Column(JSON, nullable=False)
    grade = Column(String(2), nullable=False)
    weighted_sum = Column(Float, nullable=False)
    confidence_value = Column(Float, nullable=False)
    rationale = Column(Text, nullable=False)
    lock_reason = Column(String(32), nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=False)
    event_start_time = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(10), nullable=False, default=PickStatus.PENDING.value)
    low_quality = Column(Boolean, nullable=False, default=False)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    win_amount = Column(Float, nullable=True)
    miss_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('ix_picks_scope_day', 'scope', 'day'),
        Index('ix_picks_event_ref', 'event_ref'),
        Index('ix_picks_pending', 'status', 'event_start_time'),
    )

    @classmethod
    def from_pick(cls, pick: Pick) -> "PickRecord":
        return cls(
            id=pick.id,
            scope=pick.scope.value,
            day=pick.day,
            event_ref=pick.event_ref,
            sport=pick.sport,
            home_team=pick.home_team,
            away_team=pick.away_team,
            selection=pick.selection,
            side=pick.side.value,
            market_type=pick.market_type.value,
            price=pick.price,
            line=pick.line,
            reference_unit_size=pick.reference_unit_size,
            scores=pick.scores.to_dict(),
            grade=pick.grade,
            weighted_sum=pick.weighted_sum,
            confidence_value=pick.confidence_value,
            rationale=pick.rationale,
            lock_reason=pick.lock_reason.value,
            locked_at=_to_db(pick.locked_at),
            event_start_time=_to_db(pick.event_start_time),
            created_at=_to_db(pick.created_at),
            status=pick.status.value,
            low_quality=pick.low_quality,
            settled_at=_to_db(pick.settled_at),
            win_amount=pick.win_amount,
            miss_count=0,
        )

    def to_pick(self) -> Pick:
        return Pick(
            id=self.id,
            scope=PickScope(self.scope),
            day=self.day,
            event_ref=self.event_ref,
            sport=self.sport,
            home_team=self.home_team,
            away_team=self.away_team,
            selection=self.selection,
            side=SelectionSide(self.side),
            market_type=MarketType(self.market_type),
            price=self.price,
            line=self.line,
            reference_unit_size=self.reference_unit_size,
            scores=FactorScoreSet.from_dict(self.scores),
            grade=self.grade,
            weighted_sum=self.weighted_sum,
            confidence_value=self.confidence_value,
            rationale=self.rationale,
            lock_reason=LockReason(self.lock_reason),
            locked_at=_from_db(self.locked_at),
            event_start_time=_from_db(self.event_start_time),
            created_at=_from_db(self.created_at),
            status=PickStatus(self.status),
            low_quality=bool(self.low_quality),
            settled_at=_from_db(self.settled_at),
            win_amount=self.win_amount,
        )


class ActivePickRecord(Base):
    """Pointer to the active pick per (scope, ET day)."""
    __tablename__ = "active_picks"

    scope = Column(String(32), primary_key=True)
    day = Column(String(10), primary_key=True)
    pick_id = Column(String(12), nullable=False)


class PickChangeRecord(Base):
    """Audit log of active-pick moves."""
    __tablename__ = "pick_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scope = Column(String(32), nullable=False)
    day = Column(String(10), nullable=False)
    new_pick_id = Column(String(12), nullable=True)
    previous_pick_id = Column(String(12), nullable=True)
    reason = Column(String(32), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False)
    details = Column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_pick_changes_scope_day', 'scope', 'day'),
    )

    def to_change(self) -> PickChange:
        return PickChange(
            scope=PickScope(self.scope),
            day=self.day,
            new_pick_id=self.new_pick_id,
            previous_pick_id=self.previous_pick_id,
            reason=self.reason,
            changed_at=_from_db(self.changed_at),
            details=self.details or {},
        )


class StabilityRow(Base):
    """Stability record per canonical event."""
    __tablename__ = "stability_records"

    event_ref = Column(String(128), primary_key=True)
    grade = Column(String(2), nullable=False)
    lock_reason = Column(String(32), nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=False, index=True)
    last_update = Column(DateTime(timezone=True), nullable=False)
    pick_id = Column(String(12), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    def to_record(self) -> StabilityRecord:
        return StabilityRecord(
            event_ref=self.event_ref,
            grade=self.grade,
            lock_reason=LockReason(self.lock_reason),
            locked_at=_from_db(self.locked_at),
            last_update=_from_db(self.last_update),
            pick_id=self.pick_id,
            version=self.version,
        )


# ============================================================================
# STORES
# ============================================================================

class SqlPickStore(PickStore):
    """PickStore on SQLAlchemy. Each public call is one transaction."""

    def __init__(self, database: Database):
        self.db = database

    def publish(self, pick: Pick, replaces: Optional[Pick] = None,
                retire_reason: Optional[RetireReason] = None,
                now: Optional[datetime] = None) -> Pick:
        now = now or pick.created_at
        with self.db.session() as s:
            active = s.get(ActivePickRecord, (pick.scope.value, pick.day))
            previous_id = active.pick_id if active else None

            if replaces is not None:
                row = s.get(PickRecord, replaces.id)
                if row is not None:
                    retired = retired_version(row.to_pick(), retire_reason, now)
                    row.status = retired.status.value
                    row.settled_at = _to_db(retired.settled_at)
                    row.win_amount = retired.win_amount
                previous_id = replaces.id

            s.add(PickRecord.from_pick(pick))
            if active is None:
                s.add(ActivePickRecord(scope=pick.scope.value, day=pick.day, pick_id=pick.id))
            else:
                active.pick_id = pick.id

            s.add(PickChangeRecord(
                scope=pick.scope.value,
                day=pick.day,
                new_pick_id=pick.id,
                previous_pick_id=previous_id,
                reason=retire_reason.value if retire_reason else "published",
                changed_at=_to_db(now),
                details={"event_ref": pick.event_ref, "grade": pick.grade},
            ))

        logger.info("Published pick %s scope=%s day=%s grade=%s replaces=%s",
                    pick.id, pick.scope.value, pick.day, pick.grade, previous_id)
        return pick

    def get(self, pick_id: str) -> Optional[Pick]:
        with self.db.session() as s:
            row = s.get(PickRecord, pick_id)
            return row.to_pick() if row else None

    def current(self, scope: PickScope, day: str) -> Optional[Pick]:
        with self.db.session() as s:
            active = s.get(ActivePickRecord, (scope.value, day))
            if active is None:
                return None
            row = s.get(PickRecord, active.pick_id)
            return row.to_pick() if row else None

    def latest(self, scope: PickScope) -> Optional[Pick]:
        with self.db.session() as s:
            active = s.execute(
                select(ActivePickRecord)
                .where(ActivePickRecord.scope == scope.value)
                .order_by(ActivePickRecord.day.desc())
                .limit(1)
            ).scalar_one_or_none()
            if active is None:
                return None
            row = s.get(PickRecord, active.pick_id)
            return row.to_pick() if row else None

    def picks_for_day(self, scope: PickScope, day: str) -> List[Pick]:
        with self.db.session() as s:
            rows = s.execute(
                select(PickRecord)
                .where(PickRecord.scope == scope.value, PickRecord.day == day)
                .order_by(PickRecord.created_at)
            ).scalars().all()
            return [row.to_pick() for row in rows]

    def pending(self, started_before: datetime) -> List[Pick]:
        with self.db.session() as s:
            rows = s.execute(
                select(PickRecord)
                .where(
                    PickRecord.status == PickStatus.PENDING.value,
                    PickRecord.event_start_time <= _to_db(started_before),
                )
                .order_by(PickRecord.event_start_time)
            ).scalars().all()
            return [row.to_pick() for row in rows]

    def settle(self, pick_id: str, status: PickStatus, win_amount: float,
               settled_at: datetime) -> bool:
        with self.db.session() as s:
            result = s.execute(
                update(PickRecord)
                .where(PickRecord.id == pick_id, PickRecord.status == PickStatus.PENDING.value)
                .values(status=status.value, win_amount=win_amount,
                        settled_at=_to_db(settled_at), miss_count=0)
            )
            return result.rowcount == 1

    def record_miss(self, pick_id: str) -> int:
        with self.db.session() as s:
            s.execute(
                update(PickRecord)
                .where(PickRecord.id == pick_id)
                .values(miss_count=PickRecord.miss_count + 1)
            )
            count = s.execute(
                select(PickRecord.miss_count).where(PickRecord.id == pick_id)
            ).scalar_one_or_none()
            return count or 0

    def clear_misses(self, pick_id: str) -> None:
        with self.db.session() as s:
            s.execute(update(PickRecord).where(PickRecord.id == pick_id).values(miss_count=0))

    def miss_counts(self) -> Dict[str, int]:
        with self.db.session() as s:
            rows = s.execute(
                select(PickRecord.id, PickRecord.miss_count).where(
                    PickRecord.miss_count > 0,
                    PickRecord.status == PickStatus.PENDING.value,
                )
            ).all()
            return {pick_id: count for pick_id, count in rows}

    def changes_for_day(self, scope: PickScope, day: str) -> List[PickChange]:
        with self.db.session() as s:
            rows = s.execute(
                select(PickChangeRecord)
                .where(PickChangeRecord.scope == scope.value, PickChangeRecord.day == day)
                .order_by(PickChangeRecord.id)
            ).scalars().all()
            return [row.to_change() for row in rows]


class SqlStabilityStore(StabilityStore):
    """StabilityStore whose compare-and-set is a conditional UPDATE/INSERT."""

    def __init__(self, database: Database):
        self.db = database

    def get(self, event_ref: str) -> Optional[StabilityRecord]:
        with self.db.session() as s:
            row = s.get(StabilityRow, event_ref)
            return row.to_record() if row else None

    def compare_and_set(self, event_ref: str, expected_version: Optional[int],
                        record: StabilityRecord) -> bool:
        values = {
            "grade": record.grade,
            "lock_reason": record.lock_reason.value,
            "locked_at": _to_db(record.locked_at),
            "last_update": _to_db(record.last_update),
            "pick_id": record.pick_id,
            "version": record.version,
        }

        if expected_version is None:
            try:
                with self.db.session() as s:
                    s.add(StabilityRow(event_ref=event_ref, **values))
                    s.flush()
            except IntegrityError:
                return False
            return True

        with self.db.session() as s:
            result = s.execute(
                update(StabilityRow)
                .where(StabilityRow.event_ref == event_ref, StabilityRow.version == expected_version)
                .values(**values)
            )
            return result.rowcount == 1

    def delete(self, event_ref: str) -> bool:
        with self.db.session() as s:
            result = s.execute(delete(StabilityRow).where(StabilityRow.event_ref == event_ref))
            return result.rowcount > 0

    def all(self) -> List[StabilityRecord]:
        with self.db.session() as s:
            return [row.to_record() for row in s.execute(select(StabilityRow)).scalars().all()]

    def evict_older_than(self, cutoff: datetime) -> int:
        with self.db.session() as s:
            result = s.execute(delete(StabilityRow).where(StabilityRow.locked_at < _to_db(cutoff)))
            return result.rowcount
