"""Score store: approvals, bounded history, audit log and campaign records."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import ConflictError
from .history import describe_change
from .models import (
    Actor,
    ApprovalDataPoint,
    Campaign,
    CampaignStatus,
    ChangeSource,
    Endorsement,
    PoliticalPosition,
    ReputationChange,
    ReputationScore,
)

logger = logging.getLogger(__name__)

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS actors (
    id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    position TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS reputation_scores (
    actor_id TEXT NOT NULL,
    segment_id TEXT NOT NULL,
    approval REAL NOT NULL,
    last_decay_turn INTEGER,
    updated_turn INTEGER,
    PRIMARY KEY (actor_id, segment_id)
);
CREATE TABLE IF NOT EXISTS approval_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_id TEXT NOT NULL,
    segment_id TEXT NOT NULL,
    turn INTEGER NOT NULL,
    approval REAL NOT NULL,
    change REAL NOT NULL,
    reason TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_approval_history_score
    ON approval_history (actor_id, segment_id, id);
CREATE TABLE IF NOT EXISTS reputation_changes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_id TEXT NOT NULL,
    segment_id TEXT NOT NULL,
    delta REAL NOT NULL,
    approval REAL NOT NULL,
    source TEXT NOT NULL,
    turn INTEGER NOT NULL,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reputation_changes_actor
    ON reputation_changes (actor_id, turn);
CREATE INDEX IF NOT EXISTS idx_reputation_changes_segment
    ON reputation_changes (segment_id, turn);
CREATE INDEX IF NOT EXISTS idx_reputation_changes_source
    ON reputation_changes (source, turn);
CREATE TABLE IF NOT EXISTS campaigns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_id TEXT NOT NULL,
    segment_id TEXT NOT NULL,
    region TEXT,
    start_turn INTEGER NOT NULL,
    end_turn INTEGER NOT NULL,
    boost INTEGER NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    resolved_turn INTEGER
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_campaigns_one_active
    ON campaigns (actor_id, segment_id) WHERE status = 'active';
CREATE INDEX IF NOT EXISTS idx_campaigns_status_end
    ON campaigns (status, end_turn);
CREATE TABLE IF NOT EXISTS endorsements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    endorser_id TEXT NOT NULL,
    endorsed_id TEXT NOT NULL,
    turn INTEGER NOT NULL,
    tier TEXT NOT NULL,
    representative_approval REAL NOT NULL,
    segments_affected INTEGER NOT NULL DEFAULT 0,
    average_transfer REAL NOT NULL DEFAULT 0,
    positive_transfers INTEGER NOT NULL DEFAULT 0,
    negative_transfers INTEGER NOT NULL DEFAULT 0,
    failed_segments TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    UNIQUE (endorser_id, turn)
);
"""

DeltaFn = Callable[[ReputationScore], Optional[float]]
ClaimFn = Callable[[sqlite3.Connection], bool]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReputationState:
    """High level interface over the persistent approval store.

    Every (actor, segment) read-modify-write runs under a per-record lock and a
    single ``BEGIN IMMEDIATE`` transaction, so the score row, its history point
    and the audit entry land together or not at all.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        neutral_approval: float = 50.0,
        approval_bounds: Tuple[float, float] = (0.0, 100.0),
        history_capacity: int = 50,
        trim_on_write: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._db_path = db_path
        self._neutral = float(neutral_approval)
        self._lower, self._upper = (float(v) for v in approval_bounds)
        self._history_capacity = int(history_capacity)
        self._trim_on_write = trim_on_write
        self._timeout = timeout
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._cached_actors: Dict[str, Actor] = {}
        self._ensure_schema()

    @property
    def history_capacity(self) -> int:
        return self._history_capacity

    @property
    def neutral_approval(self) -> float:
        return self._neutral

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=self._timeout)

    def _ensure_schema(self) -> None:
        with closing(self._connect()) as conn:
            conn.executescript(_DB_SCHEMA)
            conn.commit()
        logger.debug("Approval store ready at %s", self._db_path)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _record_lock(self, actor_id: str, segment_id: str) -> threading.Lock:
        key = (actor_id, segment_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # Actor management --------------------------------------------------
    def upsert_actor(self, actor: Actor) -> None:
        position_json = json.dumps(actor.position.to_dict()) if actor.position else None
        with closing(self._connect()) as conn:
            conn.execute(
                "INSERT INTO actors (id, display_name, position, created_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET display_name = excluded.display_name, "
                "position = excluded.position",
                (actor.id, actor.display_name, position_json, _now()),
            )
            conn.commit()
        self._cached_actors[actor.id] = actor

    def get_actor(self, actor_id: str) -> Optional[Actor]:
        if actor_id in self._cached_actors:
            return self._cached_actors[actor_id]
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT id, display_name, position FROM actors WHERE id = ?",
                (actor_id,),
            ).fetchone()
        if not row:
            return None
        position = PoliticalPosition.from_dict(json.loads(row[2])) if row[2] else None
        actor = Actor(id=row[0], display_name=row[1], position=position)
        self._cached_actors[actor.id] = actor
        return actor

    def all_actors(self) -> Iterable[Actor]:
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT id FROM actors ORDER BY id").fetchall()
        for row in rows:
            actor = self.get_actor(row[0])
            if actor is not None:
                yield actor

    # Scores ------------------------------------------------------------
    def ensure_scores(self, actor_id: str, segment_ids: Iterable[str]) -> int:
        """Create neutral scores for any missing (actor, segment) pair."""

        with closing(self._connect()) as conn:
            cursor = conn.executemany(
                "INSERT OR IGNORE INTO reputation_scores (actor_id, segment_id, approval) "
                "VALUES (?, ?, ?)",
                [(actor_id, segment_id, self._neutral) for segment_id in segment_ids],
            )
            conn.commit()
            return cursor.rowcount

    def get_score(self, actor_id: str, segment_id: str) -> Optional[ReputationScore]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT approval, last_decay_turn, updated_turn FROM reputation_scores "
                "WHERE actor_id = ? AND segment_id = ?",
                (actor_id, segment_id),
            ).fetchone()
        if row is None:
            return None
        return ReputationScore(
            actor_id=actor_id,
            segment_id=segment_id,
            approval=float(row[0]),
            history=self.get_history(actor_id, segment_id),
            last_decay_turn=row[1],
            updated_turn=row[2],
        )

    def get_approvals(self, actor_id: str) -> Dict[str, float]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT segment_id, approval FROM reputation_scores WHERE actor_id = ?",
                (actor_id,),
            ).fetchall()
        return {row[0]: float(row[1]) for row in rows}

    def pending_decay(self, turn: int) -> List[Tuple[str, str]]:
        """Score keys that have not been decayed for ``turn`` yet."""

        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT actor_id, segment_id FROM reputation_scores "
                "WHERE last_decay_turn IS NULL OR last_decay_turn != ? "
                "ORDER BY actor_id, segment_id",
                (turn,),
            ).fetchall()
        return [(row[0], row[1]) for row in rows]

    def apply_change(
        self,
        actor_id: str,
        segment_id: str,
        delta_fn: DeltaFn,
        *,
        source: ChangeSource,
        turn: int,
        metadata: Optional[Dict[str, object]] = None,
        decay_turn: Optional[int] = None,
        claim: Optional[ClaimFn] = None,
    ) -> Optional[ReputationChange]:
        """Read, mutate and persist one score atomically.

        ``delta_fn`` receives the current score (neutral when none exists yet)
        and returns the delta to apply, or ``None`` for no change. With
        ``decay_turn`` the call is a no-op once the score carries that marker,
        and the marker is set whenever the call goes through. ``claim`` runs
        first inside the transaction; returning False aborts without writing.
        """

        with self._record_lock(actor_id, segment_id), self._transaction() as conn:
            if claim is not None and not claim(conn):
                return None
            row = conn.execute(
                "SELECT approval, last_decay_turn, updated_turn FROM reputation_scores "
                "WHERE actor_id = ? AND segment_id = ?",
                (actor_id, segment_id),
            ).fetchone()
            if row is None:
                score = ReputationScore(actor_id, segment_id, self._neutral)
            else:
                score = ReputationScore(
                    actor_id, segment_id, float(row[0]), last_decay_turn=row[1], updated_turn=row[2]
                )
            if decay_turn is not None and score.last_decay_turn == decay_turn:
                return None
            delta = delta_fn(score)
            marker = decay_turn if decay_turn is not None else score.last_decay_turn
            if delta is None:
                if decay_turn is not None:
                    self._write_score(conn, score, score.approval, marker, score.updated_turn)
                return None
            approval = max(self._lower, min(self._upper, score.approval + delta))
            self._write_score(conn, score, approval, marker, turn)
            conn.execute(
                "INSERT INTO approval_history (actor_id, segment_id, turn, approval, change, reason) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (actor_id, segment_id, turn, approval, delta, describe_change(source, delta)),
            )
            if self._trim_on_write:
                self._trim_score_history(conn, actor_id, segment_id)
            change = ReputationChange(
                actor_id=actor_id,
                segment_id=segment_id,
                delta=delta,
                approval=approval,
                source=source,
                turn=turn,
                metadata=dict(metadata or {}),
            )
            cursor = conn.execute(
                "INSERT INTO reputation_changes "
                "(actor_id, segment_id, delta, approval, source, turn, metadata, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    actor_id,
                    segment_id,
                    delta,
                    approval,
                    source.value,
                    turn,
                    json.dumps(change.metadata, default=str),
                    change.created_at.isoformat(),
                ),
            )
        return ReputationChange(
            actor_id=change.actor_id,
            segment_id=change.segment_id,
            delta=change.delta,
            approval=change.approval,
            source=change.source,
            turn=change.turn,
            metadata=change.metadata,
            id=int(cursor.lastrowid),
            created_at=change.created_at,
        )

    @staticmethod
    def _write_score(
        conn: sqlite3.Connection,
        score: ReputationScore,
        approval: float,
        last_decay_turn: Optional[int],
        updated_turn: Optional[int],
    ) -> None:
        conn.execute(
            "INSERT INTO reputation_scores (actor_id, segment_id, approval, last_decay_turn, updated_turn) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(actor_id, segment_id) DO UPDATE SET approval = excluded.approval, "
            "last_decay_turn = excluded.last_decay_turn, updated_turn = excluded.updated_turn",
            (score.actor_id, score.segment_id, approval, last_decay_turn, updated_turn),
        )

    # History -----------------------------------------------------------
    def _trim_score_history(self, conn: sqlite3.Connection, actor_id: str, segment_id: str) -> None:
        conn.execute(
            "DELETE FROM approval_history WHERE actor_id = ? AND segment_id = ? AND id NOT IN ("
            "SELECT id FROM approval_history WHERE actor_id = ? AND segment_id = ? "
            "ORDER BY id DESC LIMIT ?)",
            (actor_id, segment_id, actor_id, segment_id, self._history_capacity),
        )

    def get_history(self, actor_id: str, segment_id: str) -> List[ApprovalDataPoint]:
        """Newest ``history_capacity`` points for a score, oldest first."""

        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT turn, approval, change, reason FROM approval_history "
                "WHERE actor_id = ? AND segment_id = ? ORDER BY id DESC LIMIT ?",
                (actor_id, segment_id, self._history_capacity),
            ).fetchall()
        return [
            ApprovalDataPoint(turn=row[0], approval=float(row[1]), change=float(row[2]), reason=row[3])
            for row in reversed(rows)
        ]

    def trim_history(self) -> int:
        """Trim every score's history to capacity; returns rows removed."""

        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM approval_history WHERE id IN ("
                "SELECT id FROM ("
                "SELECT id, ROW_NUMBER() OVER ("
                "PARTITION BY actor_id, segment_id ORDER BY id DESC) AS position "
                "FROM approval_history) WHERE position > ?)",
                (self._history_capacity,),
            )
            return cursor.rowcount

    # Audit log ---------------------------------------------------------
    def query_changes(
        self,
        *,
        actor_id: Optional[str] = None,
        segment_id: Optional[str] = None,
        turn: Optional[int] = None,
        source: Optional[ChangeSource] = None,
        since_turn: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ReputationChange]:
        clauses: List[str] = []
        params: List[object] = []
        if actor_id is not None:
            clauses.append("actor_id = ?")
            params.append(actor_id)
        if segment_id is not None:
            clauses.append("segment_id = ?")
            params.append(segment_id)
        if turn is not None:
            clauses.append("turn = ?")
            params.append(turn)
        if source is not None:
            clauses.append("source = ?")
            params.append(ChangeSource(source).value)
        if since_turn is not None:
            clauses.append("turn >= ?")
            params.append(since_turn)
        query = (
            "SELECT id, actor_id, segment_id, delta, approval, source, turn, metadata, created_at "
            "FROM reputation_changes"
        )
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            ReputationChange(
                id=int(row[0]),
                actor_id=row[1],
                segment_id=row[2],
                delta=float(row[3]),
                approval=float(row[4]),
                source=ChangeSource(row[5]),
                turn=int(row[6]),
                metadata=json.loads(row[7]),
                created_at=datetime.fromisoformat(row[8]),
            )
            for row in rows
        ]

    # Campaigns ---------------------------------------------------------
    def insert_campaign(self, campaign: Campaign) -> int:
        with closing(self._connect()) as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO campaigns "
                    "(actor_id, segment_id, region, start_turn, end_turn, boost, status, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        campaign.actor_id,
                        campaign.segment_id,
                        campaign.region,
                        campaign.start_turn,
                        campaign.end_turn,
                        campaign.boost,
                        campaign.status.value,
                        _now(),
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    f"{campaign.actor_id} already has an active campaign for {campaign.segment_id}"
                ) from exc
        campaign.id = int(cursor.lastrowid)
        return campaign.id

    @staticmethod
    def _campaign_from_row(row) -> Campaign:
        return Campaign(
            id=int(row[0]),
            actor_id=row[1],
            segment_id=row[2],
            region=row[3],
            start_turn=int(row[4]),
            end_turn=int(row[5]),
            boost=int(row[6]),
            status=CampaignStatus(row[7]),
            resolved_turn=row[8],
        )

    _CAMPAIGN_COLUMNS = (
        "id, actor_id, segment_id, region, start_turn, end_turn, boost, status, resolved_turn"
    )

    def get_campaign(self, campaign_id: int) -> Optional[Campaign]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {self._CAMPAIGN_COLUMNS} FROM campaigns WHERE id = ?",
                (campaign_id,),
            ).fetchone()
        return self._campaign_from_row(row) if row else None

    def find_active_campaign(self, actor_id: str, segment_id: str) -> Optional[Campaign]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {self._CAMPAIGN_COLUMNS} FROM campaigns "
                "WHERE actor_id = ? AND segment_id = ? AND status = 'active'",
                (actor_id, segment_id),
            ).fetchone()
        return self._campaign_from_row(row) if row else None

    def list_campaigns(
        self,
        *,
        actor_id: Optional[str] = None,
        status: Optional[CampaignStatus] = None,
        due_by_turn: Optional[int] = None,
    ) -> List[Campaign]:
        clauses: List[str] = []
        params: List[object] = []
        if actor_id is not None:
            clauses.append("actor_id = ?")
            params.append(actor_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(CampaignStatus(status).value)
        if due_by_turn is not None:
            clauses.append("end_turn <= ?")
            params.append(due_by_turn)
        query = f"SELECT {self._CAMPAIGN_COLUMNS} FROM campaigns"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY start_turn DESC, id DESC"
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._campaign_from_row(row) for row in rows]

    def set_campaign_status(
        self,
        campaign_id: int,
        *,
        expected: CampaignStatus,
        status: CampaignStatus,
        turn: Optional[int],
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Compare-and-set a campaign's status; True when this call won."""

        sql = "UPDATE campaigns SET status = ?, resolved_turn = ? WHERE id = ? AND status = ?"
        params = (status.value, turn, campaign_id, expected.value)
        if conn is not None:
            return conn.execute(sql, params).rowcount == 1
        with closing(self._connect()) as own:
            updated = own.execute(sql, params).rowcount == 1
            own.commit()
        return updated

    # Endorsements ------------------------------------------------------
    def reserve_endorsement(self, endorsement: Endorsement) -> int:
        with closing(self._connect()) as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO endorsements "
                    "(endorser_id, endorsed_id, turn, tier, representative_approval, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        endorsement.endorser_id,
                        endorsement.endorsed_id,
                        endorsement.turn,
                        endorsement.tier,
                        endorsement.representative_approval,
                        _now(),
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    f"{endorsement.endorser_id} has already endorsed in turn {endorsement.turn}"
                ) from exc
        endorsement.id = int(cursor.lastrowid)
        return endorsement.id

    def finalize_endorsement(self, endorsement: Endorsement) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                "UPDATE endorsements SET segments_affected = ?, average_transfer = ?, "
                "positive_transfers = ?, negative_transfers = ?, failed_segments = ? WHERE id = ?",
                (
                    endorsement.segments_affected,
                    endorsement.average_transfer,
                    endorsement.positive_transfers,
                    endorsement.negative_transfers,
                    json.dumps(endorsement.failed_segments),
                    endorsement.id,
                ),
            )
            conn.commit()

    def release_endorsement(self, endorsement_id: int) -> None:
        """Drop a reserved endorsement whose transfers did not complete."""

        with closing(self._connect()) as conn:
            conn.execute("DELETE FROM endorsements WHERE id = ?", (endorsement_id,))
            conn.commit()

    _ENDORSEMENT_COLUMNS = (
        "id, endorser_id, endorsed_id, turn, tier, representative_approval, "
        "segments_affected, average_transfer, positive_transfers, negative_transfers, "
        "failed_segments"
    )

    @staticmethod
    def _endorsement_from_row(row) -> Endorsement:
        return Endorsement(
            id=int(row[0]),
            endorser_id=row[1],
            endorsed_id=row[2],
            turn=int(row[3]),
            tier=row[4],
            representative_approval=float(row[5]),
            segments_affected=int(row[6]),
            average_transfer=float(row[7]),
            positive_transfers=int(row[8]),
            negative_transfers=int(row[9]),
            failed_segments=json.loads(row[10]),
        )

    def get_endorsement(self, endorsement_id: int) -> Optional[Endorsement]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {self._ENDORSEMENT_COLUMNS} FROM endorsements WHERE id = ?",
                (endorsement_id,),
            ).fetchone()
        return self._endorsement_from_row(row) if row else None

    def list_endorsements(
        self,
        *,
        endorser_id: Optional[str] = None,
        endorsed_id: Optional[str] = None,
        involving: Optional[str] = None,
        turn: Optional[int] = None,
    ) -> List[Endorsement]:
        clauses: List[str] = []
        params: List[object] = []
        if endorser_id is not None:
            clauses.append("endorser_id = ?")
            params.append(endorser_id)
        if endorsed_id is not None:
            clauses.append("endorsed_id = ?")
            params.append(endorsed_id)
        if involving is not None:
            clauses.append("(endorser_id = ? OR endorsed_id = ?)")
            params.extend([involving, involving])
        if turn is not None:
            clauses.append("turn = ?")
            params.append(turn)
        query = f"SELECT {self._ENDORSEMENT_COLUMNS} FROM endorsements"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY turn DESC, id DESC"
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._endorsement_from_row(row) for row in rows]


__all__ = ["ReputationState"]
