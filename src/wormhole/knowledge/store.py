"""SQLite storage for knowledge objects."""

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from wormhole.config import DB_PATH
from wormhole.errors import DuplicateKnowledgeError, KnowledgeValidationError
from wormhole.knowledge.models import (
    MAX_TITLE_LENGTH,
    KnowledgeObject,
    KnowledgeSearchResult,
    KnowledgeType,
    SearchIntent,
)
from wormhole.knowledge.ranker import DEFAULT_MAX_RESULTS, rank_knowledge

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS knowledge_objects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_path TEXT NOT NULL,
    knowledge_type TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    source_event_id INTEGER,
    confidence REAL NOT NULL DEFAULT 1.0,
    created_at INTEGER NOT NULL,
    metadata TEXT
);

CREATE INDEX IF NOT EXISTS idx_knowledge_project ON knowledge_objects(project_path, knowledge_type);
CREATE INDEX IF NOT EXISTS idx_knowledge_source ON knowledge_objects(source_event_id);
"""


def _load_metadata(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class KnowledgeStore:
    """SQLite-backed knowledge objects, one set per project."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
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

    def _row_to_object(self, row: sqlite3.Row) -> KnowledgeObject:
        return KnowledgeObject(
            id=row["id"],
            project_path=row["project_path"],
            knowledge_type=KnowledgeType(row["knowledge_type"]),
            title=row["title"],
            content=row["content"],
            source_event_id=row["source_event_id"],
            confidence=row["confidence"],
            created_at=datetime.fromtimestamp(row["created_at"] / 1000, tz=timezone.utc),
            metadata=_load_metadata(row["metadata"]),
        )

    def exists(self, project_path: str, knowledge_type: KnowledgeType | str, title: str) -> bool:
        conn = self._get_conn()
        row = conn.execute(
            """SELECT 1 FROM knowledge_objects
            WHERE project_path = ? AND knowledge_type = ? AND title = ? LIMIT 1""",
            (project_path, KnowledgeType(knowledge_type).value, title),
        ).fetchone()
        return row is not None

    def save_knowledge(
        self,
        project_path: str,
        knowledge_type: KnowledgeType | str,
        title: str,
        content: str,
        source_event_id: int | None = None,
        confidence: float = 1.0,
        metadata: dict[str, Any] | None = None,
    ) -> KnowledgeObject:
        """Validate and insert a knowledge object.

        Raises KnowledgeValidationError for bad input (nothing is written) and
        DuplicateKnowledgeError if the project already has an object with the
        same type and title.
        """
        if not title or not title.strip():
            raise KnowledgeValidationError("title must not be empty", field="title")
        if len(title) > MAX_TITLE_LENGTH:
            raise KnowledgeValidationError(
                f"title must be {MAX_TITLE_LENGTH} characters or fewer (got {len(title)})",
                field="title",
            )
        try:
            kind = KnowledgeType(knowledge_type)
        except ValueError:
            allowed = ", ".join(t.value for t in KnowledgeType)
            raise KnowledgeValidationError(
                f"knowledge_type must be one of: {allowed}", field="knowledge_type"
            ) from None
        if not 0.0 <= confidence <= 1.0:
            raise KnowledgeValidationError("confidence must be between 0 and 1", field="confidence")

        if self.exists(project_path, kind, title):
            raise DuplicateKnowledgeError(project_path, kind.value, title)

        conn = self._get_conn()
        created_ms = int(time.time() * 1000)
        cursor = conn.execute(
            """INSERT INTO knowledge_objects
            (project_path, knowledge_type, title, content, source_event_id, confidence, created_at, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                project_path,
                kind.value,
                title,
                content,
                source_event_id,
                confidence,
                created_ms,
                json.dumps(metadata) if metadata is not None else None,
            ),
        )
        conn.commit()
        logger.debug("Saved %s knowledge %r for %s", kind.value, title, project_path)
        return self.get_knowledge_object(cursor.lastrowid)  # type: ignore[return-value]

    def get_knowledge_object(self, knowledge_id: int) -> KnowledgeObject | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM knowledge_objects WHERE id = ?", (knowledge_id,)
        ).fetchone()
        return self._row_to_object(row) if row else None

    def get_knowledge_objects(
        self,
        project_path: str,
        knowledge_type: KnowledgeType | str | None = None,
    ) -> list[KnowledgeObject]:
        """A project's knowledge, highest confidence and newest first."""
        conn = self._get_conn()
        sql = "SELECT * FROM knowledge_objects WHERE project_path = ?"
        params: list = [project_path]
        if knowledge_type:
            sql += " AND knowledge_type = ?"
            params.append(KnowledgeType(knowledge_type).value)
        sql += " ORDER BY confidence DESC, created_at DESC, id ASC"
        rows = conn.execute(sql, params).fetchall()
        return [self._row_to_object(r) for r in rows]

    def search(
        self,
        project_path: str,
        intent: SearchIntent | str,
        query: str | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[KnowledgeSearchResult]:
        """Ranked knowledge for an intent, optionally narrowed by a text query."""
        return rank_knowledge(
            self.get_knowledge_objects(project_path),
            intent,
            query=query,
            max_results=max_results,
        )
