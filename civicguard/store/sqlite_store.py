"""SQLite-backed record store for issues, status history, flags and the outbox.

Every mutation runs inside :meth:`RecordStore.transaction`, which opens a fresh
connection and issues ``BEGIN IMMEDIATE`` so the write lock is held from the
first read of the unit to its commit. Within a transaction callers get the
plain ``sqlite3.Connection`` and pass it to the helper methods below.

Schema:
  issues          one row per issue, moderation state inline
  status_history  append-only, ordered by ``seq``
  flags           partial unique index: one unresolved flag per
                  (issue_id, flagger_key)
  outbox          events written with the mutation, delivered after commit
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from civicguard.errors import DuplicateFlag, StorageUnavailable
from civicguard.geo.proximity import BoundingBox, Coordinate
from civicguard.identity import Registered, identity_from_key
from civicguard.issues.models import Category, Issue, IssueStatus, StatusHistoryEntry
from civicguard.moderation.models import Flag, FlagReview, FlagType, ReviewAction
from civicguard.notifications import OutboxEvent

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS issues (
    id                  TEXT PRIMARY KEY,
    title               TEXT NOT NULL,
    description         TEXT NOT NULL,
    category            TEXT NOT NULL,
    latitude            REAL NOT NULL,
    longitude           REAL NOT NULL,
    status              TEXT NOT NULL DEFAULT 'reported'
                        CHECK (status IN ('reported', 'in_progress', 'resolved')),
    is_hidden           INTEGER NOT NULL DEFAULT 0,
    flag_count          INTEGER NOT NULL DEFAULT 0 CHECK (flag_count >= 0),
    reporter_key        TEXT,
    marked_for_removal  INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_issues_location ON issues (latitude, longitude);
CREATE INDEX IF NOT EXISTS idx_issues_hidden ON issues (is_hidden, flag_count);

CREATE TABLE IF NOT EXISTS status_history (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT NOT NULL UNIQUE,
    issue_id         TEXT NOT NULL REFERENCES issues (id) ON DELETE CASCADE,
    previous_status  TEXT,
    new_status       TEXT NOT NULL,
    comment          TEXT NOT NULL,
    actor_id         TEXT NOT NULL,
    created_at       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_history_issue ON status_history (issue_id, seq);

CREATE TABLE IF NOT EXISTS flags (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    id              TEXT NOT NULL UNIQUE,
    issue_id        TEXT NOT NULL REFERENCES issues (id) ON DELETE CASCADE,
    flagger_key     TEXT NOT NULL,
    flagged_by      TEXT,
    reason          TEXT NOT NULL,
    flag_type       TEXT NOT NULL
                    CHECK (flag_type IN ('spam', 'inappropriate', 'irrelevant', 'duplicate', 'other')),
    created_at      TEXT NOT NULL,
    review_action   TEXT CHECK (review_action IN ('approve', 'reject', 'delete')),
    review_comment  TEXT,
    reviewed_by     TEXT,
    reviewed_at     TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS uq_open_flag_per_flagger
    ON flags (issue_id, flagger_key) WHERE reviewed_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_flags_flagged_by ON flags (flagged_by, created_at);
CREATE INDEX IF NOT EXISTS idx_flags_issue ON flags (issue_id, reviewed_at);

CREATE TABLE IF NOT EXISTS outbox (
    seq           INTEGER PRIMARY KEY AUTOINCREMENT,
    id            TEXT NOT NULL UNIQUE,
    event         TEXT NOT NULL,
    payload       TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    delivered_at  TEXT,
    attempts      INTEGER NOT NULL DEFAULT 0,
    last_error    TEXT
);
CREATE INDEX IF NOT EXISTS idx_outbox_pending ON outbox (delivered_at, seq);
"""


def utc_now_iso() -> str:
    """Fixed-width UTC timestamp so string comparison matches time order."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class RecordStore:
    """Transactional storage for the engine.

    The database file defaults to ``~/.civicguard/civicguard.db``. A new
    connection is opened per operation so the store is safe to share between
    request-handling threads.
    """

    def __init__(self, db_path: str | Path | None = None, busy_timeout: float = 5.0) -> None:
        if db_path is None:
            db_path = Path.home() / ".civicguard" / "civicguard.db"
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = busy_timeout
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable(str(exc)) from exc
        finally:
            conn.close()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Connections and transactions
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._path),
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic unit under the database write lock.

        Commits on normal exit and rolls back on any exception. Lock timeouts
        and other operational failures surface as :class:`StorageUnavailable`.
        """
        try:
            conn = self._connect()
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable(str(exc)) from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.OperationalError as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StorageUnavailable(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        """A connection for read-only queries."""
        try:
            conn = self._connect()
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable(str(exc)) from exc
        try:
            yield conn
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable(str(exc)) from exc
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _issue_from_row(row: sqlite3.Row) -> Issue:
        return Issue(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            category=Category(row["category"]),
            location=Coordinate(row["latitude"], row["longitude"]),
            status=IssueStatus(row["status"]),
            visible=not row["is_hidden"],
            flag_count=row["flag_count"],
            reporter=identity_from_key(row["reporter_key"]) if row["reporter_key"] else None,
            marked_for_removal=bool(row["marked_for_removal"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _history_from_row(row: sqlite3.Row) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            id=row["id"],
            issue_id=row["issue_id"],
            previous_status=IssueStatus(row["previous_status"]) if row["previous_status"] else None,
            new_status=IssueStatus(row["new_status"]),
            comment=row["comment"],
            actor_id=row["actor_id"],
            timestamp=row["created_at"],
        )

    @staticmethod
    def _flag_from_row(row: sqlite3.Row) -> Flag:
        review = None
        if row["reviewed_at"]:
            review = FlagReview(
                action=ReviewAction(row["review_action"]),
                comment=row["review_comment"] or "",
                reviewer_id=row["reviewed_by"] or "",
                reviewed_at=row["reviewed_at"],
            )
        return Flag(
            id=row["id"],
            issue_id=row["issue_id"],
            flagger=identity_from_key(row["flagger_key"]),
            reason=row["reason"],
            flag_type=FlagType(row["flag_type"]),
            created_at=row["created_at"],
            review=review,
        )

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def insert_issue(self, conn: sqlite3.Connection, issue: Issue) -> None:
        conn.execute(
            """
            INSERT INTO issues
              (id, title, description, category, latitude, longitude, status,
               is_hidden, flag_count, reporter_key, marked_for_removal,
               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                issue.id,
                issue.title,
                issue.description,
                issue.category.value,
                issue.location.latitude,
                issue.location.longitude,
                issue.status.value,
                int(not issue.visible),
                issue.flag_count,
                issue.reporter.key if issue.reporter is not None else None,
                int(issue.marked_for_removal),
                issue.created_at,
                issue.updated_at,
            ),
        )

    def get_issue(self, issue_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Issue]:
        if conn is None:
            with self.reading() as read_conn:
                return self.get_issue(issue_id, read_conn)
        row = conn.execute("SELECT * FROM issues WHERE id=?", (issue_id,)).fetchone()
        return self._issue_from_row(row) if row else None

    def issues_in_box(
        self,
        box: BoundingBox,
        statuses: Optional[list[IssueStatus]] = None,
        categories: Optional[list[Category]] = None,
        include_hidden: bool = False,
    ) -> list[Issue]:
        """Return issues inside *box*; callers apply the exact distance filter."""
        clauses = ["latitude BETWEEN ? AND ?"]
        params: list[Any] = [box.south, box.north]
        if box.crosses_antimeridian:
            clauses.append("(longitude >= ? OR longitude <= ?)")
        else:
            clauses.append("longitude BETWEEN ? AND ?")
        params.extend([box.west, box.east])
        if not include_hidden:
            clauses.append("is_hidden = 0")
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        if categories:
            clauses.append(f"category IN ({', '.join('?' for _ in categories)})")
            params.extend(c.value for c in categories)

        sql = f"SELECT * FROM issues WHERE {' AND '.join(clauses)}"
        with self.reading() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._issue_from_row(r) for r in rows]

    def set_status(
        self, conn: sqlite3.Connection, issue_id: str, status: IssueStatus, updated_at: str
    ) -> None:
        conn.execute(
            "UPDATE issues SET status=?, updated_at=? WHERE id=?",
            (status.value, updated_at, issue_id),
        )

    def increment_flag_count(
        self, conn: sqlite3.Connection, issue_id: str, threshold: int, updated_at: str
    ) -> tuple[int, bool]:
        """Add one flag and hide the issue once it reaches *threshold*.

        A single statement, so concurrent callers never lose an increment and
        re-hiding an already hidden issue is a no-op. Returns the new
        ``(flag_count, visible)`` as seen inside the transaction.
        """
        conn.execute(
            """
            UPDATE issues
               SET flag_count = flag_count + 1,
                   is_hidden = CASE WHEN flag_count + 1 >= ? THEN 1 ELSE is_hidden END,
                   updated_at = ?
             WHERE id = ?
            """,
            (threshold, updated_at, issue_id),
        )
        row = conn.execute(
            "SELECT flag_count, is_hidden FROM issues WHERE id=?", (issue_id,)
        ).fetchone()
        return row["flag_count"], not row["is_hidden"]

    def apply_visibility(
        self,
        conn: sqlite3.Connection,
        issue_id: str,
        visible: bool,
        updated_at: str,
        mark_for_removal: bool = False,
    ) -> None:
        conn.execute(
            """
            UPDATE issues
               SET is_hidden = ?,
                   marked_for_removal = CASE WHEN ? THEN 1 ELSE marked_for_removal END,
                   updated_at = ?
             WHERE id = ?
            """,
            (int(not visible), int(mark_for_removal), updated_at, issue_id),
        )

    def flagged_issues(
        self,
        status: str = "pending",
        flag_type: Optional[FlagType] = None,
        threshold: int = 3,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Issue], int]:
        """Admin review queue. Returns ``(page, total)`` ordered by flag count."""
        clauses = ["flag_count > 0"]
        params: list[Any] = []
        if status == "pending":
            clauses.append("is_hidden = 1 AND flag_count >= ?")
            params.append(threshold)
        elif status == "reviewed":
            clauses.append(
                "EXISTS (SELECT 1 FROM flags f WHERE f.issue_id = issues.id AND f.reviewed_at IS NOT NULL)"
            )
        if flag_type is not None:
            clauses.append(
                "EXISTS (SELECT 1 FROM flags f WHERE f.issue_id = issues.id AND f.flag_type = ?)"
            )
            params.append(flag_type.value)

        where = " AND ".join(clauses)
        with self.reading() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM issues WHERE {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM issues WHERE {where} ORDER BY flag_count DESC, created_at LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
        return [self._issue_from_row(r) for r in rows], total

    # ------------------------------------------------------------------
    # Status history
    # ------------------------------------------------------------------

    def insert_history(self, conn: sqlite3.Connection, entry: StatusHistoryEntry) -> None:
        conn.execute(
            """
            INSERT INTO status_history
              (id, issue_id, previous_status, new_status, comment, actor_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.issue_id,
                entry.previous_status.value if entry.previous_status else None,
                entry.new_status.value,
                entry.comment,
                entry.actor_id,
                entry.timestamp,
            ),
        )

    def list_history(self, issue_id: str) -> list[StatusHistoryEntry]:
        with self.reading() as conn:
            rows = conn.execute(
                "SELECT * FROM status_history WHERE issue_id=? ORDER BY seq",
                (issue_id,),
            ).fetchall()
        return [self._history_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    def insert_flag(self, conn: sqlite3.Connection, flag: Flag) -> None:
        """Insert an unresolved flag.

        The partial unique index is the authority on duplicates; a violation
        raises :class:`DuplicateFlag`.
        """
        try:
            conn.execute(
                """
                INSERT INTO flags
                  (id, issue_id, flagger_key, flagged_by, reason, flag_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    flag.id,
                    flag.issue_id,
                    flag.flagger.key,
                    flag.flagger.user_id if isinstance(flag.flagger, Registered) else None,
                    flag.reason,
                    flag.flag_type.value,
                    flag.created_at,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc).upper():
                raise DuplicateFlag(flag.issue_id) from exc
            raise

    def resolve_open_flags(self, conn: sqlite3.Connection, issue_id: str, review: FlagReview) -> int:
        """Mark every unresolved flag on an issue with *review*; returns the count."""
        cur = conn.execute(
            """
            UPDATE flags
               SET review_action = ?, review_comment = ?, reviewed_by = ?, reviewed_at = ?
             WHERE issue_id = ? AND reviewed_at IS NULL
            """,
            (review.action.value, review.comment, review.reviewer_id, review.reviewed_at, issue_id),
        )
        return cur.rowcount

    def list_flags(self, issue_id: str, unresolved_only: bool = False) -> list[Flag]:
        sql = "SELECT * FROM flags WHERE issue_id=?"
        if unresolved_only:
            sql += " AND reviewed_at IS NULL"
        with self.reading() as conn:
            rows = conn.execute(sql + " ORDER BY seq", (issue_id,)).fetchall()
        return [self._flag_from_row(r) for r in rows]

    def user_flag_counts(self, user_id: str, since: str) -> dict[str, int]:
        """Counts used by the ban heuristic, in one consistent read."""
        with self.reading() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END), 0) AS recent,
                       COALESCE(SUM(CASE WHEN reviewed_at IS NOT NULL THEN 1 ELSE 0 END), 0) AS reviewed,
                       COALESCE(SUM(CASE WHEN reviewed_at IS NOT NULL AND review_action = 'approve'
                                         THEN 1 ELSE 0 END), 0) AS rejected
                  FROM flags
                 WHERE flagged_by = ?
                """,
                (since, user_id),
            ).fetchone()
        return {
            "total": row["total"],
            "recent": row["recent"],
            "reviewed": row["reviewed"],
            "rejected": row["rejected"],
        }

    def user_flag_type_counts(self, user_id: str) -> dict[str, int]:
        with self.reading() as conn:
            rows = conn.execute(
                "SELECT flag_type, COUNT(*) AS n FROM flags WHERE flagged_by=? GROUP BY flag_type",
                (user_id,),
            ).fetchall()
        return {r["flag_type"]: r["n"] for r in rows}

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def enqueue_event(
        self, conn: sqlite3.Connection, event_id: str, event: str, payload: dict[str, Any], created_at: str
    ) -> None:
        conn.execute(
            "INSERT INTO outbox (id, event, payload, created_at) VALUES (?, ?, ?, ?)",
            (event_id, event, json.dumps(payload, default=str), created_at),
        )

    def pending_events(self, limit: int = 100) -> list[OutboxEvent]:
        with self.reading() as conn:
            rows = conn.execute(
                "SELECT * FROM outbox WHERE delivered_at IS NULL ORDER BY seq LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            OutboxEvent(
                id=r["id"],
                event=r["event"],
                payload=json.loads(r["payload"]),
                created_at=r["created_at"],
                delivered_at=r["delivered_at"],
                attempts=r["attempts"],
                last_error=r["last_error"] or "",
            )
            for r in rows
        ]

    def mark_event_delivered(self, event_id: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE outbox SET delivered_at=?, attempts=attempts+1, last_error=NULL WHERE id=?",
                (utc_now_iso(), event_id),
            )

    def mark_event_failed(self, event_id: str, error: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE outbox SET attempts=attempts+1, last_error=? WHERE id=?",
                (error[:2000], event_id),
            )
