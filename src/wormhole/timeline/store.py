"""SQLite timeline storage: events, tags and sessions."""

import logging
import sqlite3
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Literal

from wormhole.config import ARCHIVE_DIR, DB_PATH
from wormhole.timeline.archive import archive_events
from wormhole.timeline.models import QueryResult, Session, TimelineEvent, make_cursor, parse_cursor

logger = logging.getLogger(__name__)

CleanupScope = Literal["all", "project", "session"]

# Stay well under SQLite's host parameter limit when expanding IN (...) lists.
_MAX_IN_PARAMS = 500

SCHEMA = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS timeline (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    action TEXT NOT NULL,
    payload TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    project_path TEXT NOT NULL,
    isolated INTEGER NOT NULL DEFAULT 0,
    session_id TEXT,
    rejected INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS timeline_tags (
    event_id INTEGER NOT NULL REFERENCES timeline(id) ON DELETE CASCADE,
    tag TEXT NOT NULL,
    PRIMARY KEY (event_id, tag)
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    name TEXT,
    project_path TEXT NOT NULL,
    description TEXT,
    started_at INTEGER NOT NULL,
    ended_at INTEGER,
    started_by TEXT NOT NULL,
    summary TEXT,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_timeline_project_timestamp ON timeline(project_path, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_timeline_project_isolated ON timeline(project_path, isolated);
CREATE INDEX IF NOT EXISTS idx_timeline_session ON timeline(session_id);
CREATE INDEX IF NOT EXISTS idx_timeline_tags_tag ON timeline_tags(tag);
CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_path, active);
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _normalize_tags(tags: Iterable[str] | None) -> list[str]:
    seen: list[str] = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _chunks(values: list, size: int = _MAX_IN_PARAMS) -> Iterable[list]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class TimelineStore:
    """SQLite-backed shared timeline."""

    def __init__(self, db_path: Path | None = None, archive_dir: Path | None = None):
        self.db_path = db_path or DB_PATH
        self.archive_dir = archive_dir or ARCHIVE_DIR
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    # ── Row mapping ──────────────────────────────────────────────

    def _load_tags(self, event_ids: list[int]) -> dict[int, list[str]]:
        conn = self._get_conn()
        tags: dict[int, list[str]] = {}
        for chunk in _chunks(event_ids):
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"SELECT event_id, tag FROM timeline_tags WHERE event_id IN ({placeholders}) ORDER BY rowid",
                chunk,
            ).fetchall()
            for row in rows:
                tags.setdefault(row["event_id"], []).append(row["tag"])
        return tags

    def _rows_to_events(self, rows: list[sqlite3.Row]) -> list[TimelineEvent]:
        tags = self._load_tags([row["id"] for row in rows]) if rows else {}
        return [
            TimelineEvent(
                id=row["id"],
                agent_id=row["agent_id"],
                action=row["action"],
                payload=row["payload"],
                timestamp=_from_ms(row["timestamp"]),
                project_path=row["project_path"],
                isolated=bool(row["isolated"]),
                session_id=row["session_id"],
                tags=tags.get(row["id"], []),
                rejected=bool(row["rejected"]),
            )
            for row in rows
        ]

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            project_path=row["project_path"],
            name=row["name"],
            description=row["description"],
            started_at=_from_ms(row["started_at"]),
            ended_at=_from_ms(row["ended_at"]),
            started_by=row["started_by"],
            summary=row["summary"],
            active=bool(row["active"]),
        )

    # ── Events ───────────────────────────────────────────────────

    def add_event(
        self,
        agent_id: str,
        action: str,
        payload: str,
        project_path: str,
        isolated: bool = False,
        session_id: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> int:
        """Append an event and return its id.

        The payload is stored verbatim; its structure is not checked.
        """
        conn = self._get_conn()
        latest = conn.execute("SELECT MAX(timestamp) FROM timeline").fetchone()[0]
        timestamp = max(_now_ms(), latest or 0)

        cursor = conn.execute(
            """INSERT INTO timeline
            (agent_id, action, payload, timestamp, project_path, isolated, session_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (agent_id, action, payload, timestamp, project_path, int(isolated), session_id),
        )
        event_id = cursor.lastrowid
        conn.executemany(
            "INSERT OR IGNORE INTO timeline_tags (event_id, tag) VALUES (?, ?)",
            [(event_id, tag) for tag in _normalize_tags(tags)],
        )
        conn.commit()
        return event_id

    def get_event(self, event_id: int) -> TimelineEvent | None:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM timeline WHERE id = ?", (event_id,)).fetchone()
        return self._rows_to_events([row])[0] if row else None

    def get_isolation_floor(self, project_path: str) -> int | None:
        """Id of the most recent isolation boundary in a project, if any."""
        conn = self._get_conn()
        row = conn.execute(
            """SELECT id FROM timeline
            WHERE project_path = ? AND isolated = 1
            ORDER BY timestamp DESC, id DESC LIMIT 1""",
            (project_path,),
        ).fetchone()
        return row["id"] if row else None

    def get_recent_events(
        self,
        project_path: str,
        limit: int,
        since_cursor: str | None = None,
        action_types: list[str] | None = None,
        tags: list[str] | None = None,
    ) -> QueryResult:
        """Return the most recent events of a project, oldest first.

        Only events at or after the latest isolation boundary are visible.
        A cursor restricts the result to events newer than the one it names;
        a malformed cursor is ignored. Tag filters match whole tags and an
        event qualifies if it carries any of them.
        """
        conn = self._get_conn()

        sql = "SELECT * FROM timeline WHERE project_path = ?"
        params: list = [project_path]

        cursor_id = parse_cursor(since_cursor)
        if cursor_id is not None:
            sql += " AND id > ?"
            params.append(cursor_id)

        if action_types:
            sql += f" AND action IN ({', '.join('?' for _ in action_types)})"
            params.extend(action_types)

        wanted_tags = _normalize_tags(tags)
        if wanted_tags:
            sql += (
                " AND id IN (SELECT event_id FROM timeline_tags"
                f" WHERE tag IN ({', '.join('?' for _ in wanted_tags)}))"
            )
            params.extend(wanted_tags)

        floor = self.get_isolation_floor(project_path)
        if floor is not None:
            sql += " AND id >= ?"
            params.append(floor)

        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        rows = conn.execute(sql, params).fetchall()
        events = self._rows_to_events(rows)
        events.reverse()

        cursor = make_cursor(events[-1].id) if events else None
        return QueryResult(events=events, cursor=cursor)

    def get_file_edits_since(self, project_path: str, cutoff: datetime) -> list[TimelineEvent]:
        """All ``file_edit`` events of a project newer than ``cutoff``, newest first."""
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT * FROM timeline
            WHERE project_path = ? AND timestamp > ? AND action = 'file_edit'
            ORDER BY timestamp DESC, id DESC""",
            (project_path, _to_ms(cutoff)),
        ).fetchall()
        return self._rows_to_events(rows)

    def mark_rejected(self, event_ids: Iterable[int]) -> int:
        """Cache a failed staleness check on the given events."""
        ids = list(event_ids)
        if not ids:
            return 0
        conn = self._get_conn()
        changed = 0
        for chunk in _chunks(ids):
            placeholders = ", ".join("?" for _ in chunk)
            cursor = conn.execute(
                f"UPDATE timeline SET rejected = 1 WHERE id IN ({placeholders})",
                chunk,
            )
            changed += cursor.rowcount
        conn.commit()
        return changed

    def get_tag_counts(self, project_path: str) -> dict[str, int]:
        """Distinct tags used in a project, most frequent first."""
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT tt.tag AS tag, COUNT(*) AS count
            FROM timeline_tags tt JOIN timeline t ON t.id = tt.event_id
            WHERE t.project_path = ?
            GROUP BY tt.tag
            ORDER BY count DESC, tt.tag ASC""",
            (project_path,),
        ).fetchall()
        return {row["tag"]: row["count"] for row in rows}

    def event_count(self) -> int:
        conn = self._get_conn()
        return conn.execute("SELECT COUNT(*) FROM timeline").fetchone()[0]

    def database_size(self) -> int:
        try:
            return self.db_path.stat().st_size
        except OSError:
            return 0

    # ── Cleanup ──────────────────────────────────────────────────

    def _select_events(self, where: str, params: tuple) -> list[TimelineEvent]:
        conn = self._get_conn()
        rows = conn.execute(f"SELECT * FROM timeline WHERE {where} ORDER BY id", params).fetchall()
        return self._rows_to_events(rows)

    def _archive(self, where: str, params: tuple, label: str) -> None:
        events = self._select_events(where, params)
        path = archive_events(events, self.archive_dir, label)
        if path:
            logger.info("Archived %d events to %s", len(events), path)

    def cleanup_old_events(self, retention_hours: int, archive: bool = False) -> int:
        """Delete events older than the retention window and stale ended sessions."""
        conn = self._get_conn()
        cutoff = _to_ms(datetime.now(timezone.utc) - timedelta(hours=retention_hours))

        if archive:
            self._archive("timestamp < ?", (cutoff,), "")

        deleted = conn.execute("DELETE FROM timeline WHERE timestamp < ?", (cutoff,)).rowcount
        conn.execute(
            "DELETE FROM sessions WHERE ended_at IS NOT NULL AND ended_at < ?",
            (cutoff,),
        )
        conn.commit()
        return deleted

    def cleanup_by_scope(
        self,
        scope: CleanupScope,
        project_path: str | None = None,
        session_id: str | None = None,
        archive: bool = False,
    ) -> int:
        """Delete every event (and session) within a scope."""
        conn = self._get_conn()

        if scope == "all":
            if archive:
                self._archive("1 = 1", (), "")
            deleted = conn.execute("DELETE FROM timeline").rowcount
            conn.execute("DELETE FROM sessions")
        elif scope == "project":
            if not project_path:
                raise ValueError("project_path required for project scope")
            if archive:
                self._archive("project_path = ?", (project_path,), project_path)
            deleted = conn.execute(
                "DELETE FROM timeline WHERE project_path = ?", (project_path,)
            ).rowcount
            conn.execute("DELETE FROM sessions WHERE project_path = ?", (project_path,))
        elif scope == "session":
            if not session_id:
                raise ValueError("session_id required for session scope")
            if archive:
                self._archive("session_id = ?", (session_id,), f"session-{session_id}")
            deleted = conn.execute(
                "DELETE FROM timeline WHERE session_id = ?", (session_id,)
            ).rowcount
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        else:
            raise ValueError(f"Unknown scope: {scope}")

        conn.commit()
        return deleted

    # ── Sessions ─────────────────────────────────────────────────

    def create_session(
        self,
        project_path: str,
        started_by: str,
        name: str | None = None,
        description: str | None = None,
    ) -> Session:
        """Start a new, active session."""
        conn = self._get_conn()
        session = Session(
            id=str(uuid.uuid4()),
            project_path=project_path,
            name=name or None,
            description=description or None,
            started_by=started_by,
        )
        conn.execute(
            """INSERT INTO sessions
            (id, name, project_path, description, started_at, started_by, active)
            VALUES (?, ?, ?, ?, ?, ?, 1)""",
            (
                session.id,
                session.name,
                session.project_path,
                session.description,
                _to_ms(session.started_at),
                session.started_by,
            ),
        )
        conn.commit()
        return session

    def get_session(self, session_id: str) -> Session | None:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._row_to_session(row) if row else None

    def list_sessions(
        self,
        project_path: str,
        active_only: bool = True,
        limit: int = 10,
    ) -> list[Session]:
        """List a project's sessions, most recently started first."""
        conn = self._get_conn()
        sql = "SELECT * FROM sessions WHERE project_path = ?"
        if active_only:
            sql += " AND active = 1"
        sql += " ORDER BY started_at DESC LIMIT ?"
        rows = conn.execute(sql, (project_path, limit)).fetchall()
        return [self._row_to_session(r) for r in rows]

    def end_session(self, session_id: str, summary: str | None = None) -> Session | None:
        """Mark a session as ended. Ended sessions are returned unchanged."""
        session = self.get_session(session_id)
        if session is None or not session.active:
            return session

        conn = self._get_conn()
        conn.execute(
            "UPDATE sessions SET ended_at = ?, summary = ?, active = 0 WHERE id = ?",
            (_now_ms(), summary or None, session_id),
        )
        conn.commit()
        return self.get_session(session_id)
