"""MCP server exposing the shared timeline and project knowledge."""

import json
import logging
from typing import Any, Literal

from mcp.server.fastmcp import FastMCP

from wormhole.config import DetailLevel, WormholeConfig, load_config
from wormhole.errors import DuplicateKnowledgeError, KnowledgeError
from wormhole.knowledge.store import KnowledgeStore
from wormhole.timeline.conflicts import find_conflicts
from wormhole.timeline.formatting import (
    format_events,
    format_relative_time,
    is_event_relevant,
    short_agent,
    summarize_logged,
    truncate_payload,
)
from wormhole.timeline.models import make_cursor
from wormhole.timeline.sessions import ActiveSessions
from wormhole.timeline.staleness import partition_file_edits
from wormhole.timeline.store import TimelineStore

logger = logging.getLogger(__name__)

mcp = FastMCP("wormhole")
store = TimelineStore()
knowledge = KnowledgeStore()
active_sessions = ActiveSessions()
config: WormholeConfig | None = None

SESSION_NOT_FOUND = "error: session not found"


def get_config() -> WormholeConfig:
    global config
    if config is None:
        config = load_config()
    return config


def _truncate_content(content: dict[str, Any], max_chars: int) -> dict[str, Any]:
    # Diffs are kept whole: staleness checks compare them against the file.
    return {
        key: truncate_payload(value, max_chars) if isinstance(value, str) and key != "diff" else value
        for key, value in content.items()
    }


@mcp.tool()
def log(
    action: str,
    agent_id: str,
    project_path: str,
    content: dict[str, Any],
    isolate: bool = False,
    tags: list[str] | None = None,
) -> str:
    """Log any agent action to the shared timeline.

    Conventional action types and their content:
    - cmd_run: {command, output?, exit_code?}
    - file_edit: {file_path, description?, diff?}
    - decision: {decision, rationale?, alternatives?}
    - test_result: {test_suite, status, summary?}
    - feedback: {agent_suggestion, user_response, user_note?}
    - todos: {items: [{status, ...}]}
    - plan_output: {title, type?}
    Any other action name is stored as a custom event.

    Args:
        action: Action type (see above) or a custom name
        agent_id: Agent identifier (e.g. "claude-code")
        project_path: Absolute path to the project
        content: Action-specific content
        isolate: Hide all earlier project history from later queries
        tags: Optional category labels (e.g. ["auth", "backend"])
    """
    cfg = get_config()
    truncated = _truncate_content(content, cfg.max_payload_chars)
    event_id = store.add_event(
        agent_id=agent_id,
        action=action,
        payload=json.dumps(truncated),
        project_path=project_path,
        isolated=isolate,
        session_id=active_sessions.get(project_path),
        tags=tags,
    )
    return f"logged: {summarize_logged(action, truncated)} ({make_cursor(event_id)})"


@mcp.tool()
def get_recent(
    project_path: str,
    limit: int | None = None,
    detail: DetailLevel | None = None,
    since_cursor: str | None = None,
    related_to: list[str] | None = None,
    action_types: list[str] | None = None,
    tags: list[str] | None = None,
) -> str:
    """Get recent agent activity for a project, oldest first.

    File edits whose diff no longer matches the file on disk are left out.
    Pass the returned cursor as since_cursor to fetch only newer events.

    Args:
        project_path: Absolute path to the project
        limit: Maximum events (default from config)
        detail: minimal, normal or full (default from config)
        since_cursor: Cursor from a previous call for delta queries
        related_to: Only events touching these files
        action_types: Only these action types
        tags: Only events carrying any of these tags
    """
    cfg = get_config()
    result = store.get_recent_events(
        project_path,
        limit or cfg.default_limit,
        since_cursor=since_cursor,
        action_types=action_types,
        tags=tags,
    )

    events = result.events
    if related_to:
        events = [e for e in events if is_event_relevant(e, related_to)]

    events, stale = partition_file_edits(events, project_path)
    if stale:
        store.mark_rejected(e.id for e in stale)

    return format_events(events, detail or cfg.default_detail, result.cursor)


@mcp.tool()
def check_conflicts(
    project_path: str,
    time_window: int = 60,
    files: list[str] | None = None,
) -> str:
    """Check for files recently edited by more than one agent.

    Args:
        project_path: Absolute path to the project
        time_window: Minutes to look back (default 60)
        files: Only check these files
    """
    conflicts = find_conflicts(store, project_path, time_window, files)
    if not conflicts:
        return "no conflicts"

    lines = []
    for file_path, events in conflicts.items():
        agents = ", ".join(
            f"{short_agent(e.agent_id)}@{format_relative_time(e.timestamp)}" for e in events
        )
        lines.append(f"{file_path} ({agents})")
    return "conflicts:\n" + "\n".join(lines)


@mcp.tool()
def cleanup(
    scope: Literal["all", "project", "session"],
    project_path: str | None = None,
    session_id: str | None = None,
    force: bool = False,
    archive: bool | None = None,
) -> str:
    """Clean up timeline events.

    Without force, only events past the retention window are removed.
    With force, everything in the scope is deleted.

    Args:
        scope: all, project or session
        project_path: Required for project scope
        session_id: Required for session scope
        force: Delete the whole scope instead of only expired events
        archive: Write events to the archive directory before deleting
    """
    cfg = get_config()
    before = store.database_size()
    if force:
        try:
            deleted = store.cleanup_by_scope(scope, project_path, session_id, archive=bool(archive))
        except ValueError as exc:
            return f"error: {exc}"
        if scope == "session" and session_id:
            active_sessions.forget_session(session_id)
        elif scope == "project" and project_path:
            active_sessions.clear(project_path)
    else:
        do_archive = cfg.archive_before_delete if archive is None else archive
        deleted = store.cleanup_old_events(cfg.retention_hours, archive=do_archive)
    freed = max(0, before - store.database_size())
    return f"cleaned: {deleted} events, {round(freed / 1024)}KB freed"


# ── Sessions ─────────────────────────────────────────────────────


@mcp.tool()
def start_session(
    project_path: str,
    agent_id: str,
    name: str | None = None,
    description: str | None = None,
    isolate: bool = True,
) -> str:
    """Start a named work session and make it the project's current session.

    By default earlier project history is hidden from later queries.

    Args:
        project_path: Absolute path to the project
        agent_id: Agent starting the session
        name: Session name (e.g. "bugfix-auth")
        description: Session goal
        isolate: Hide previous context (default true)
    """
    session = store.create_session(project_path, agent_id, name, description)
    active_sessions.set(project_path, session.id)

    if isolate:
        store.add_event(
            agent_id=agent_id,
            action="session_start",
            payload=json.dumps({"session_id": session.id, "name": name}),
            project_path=project_path,
            isolated=True,
            session_id=session.id,
        )

    return f"session started: {session.display_name} ({session.id})"


@mcp.tool()
def end_session(
    session_id: str | None = None,
    summary: str | None = None,
    project_path: str | None = None,
) -> str:
    """End a session with an optional summary.

    Args:
        session_id: Session to end (default: the project's current session)
        summary: What was accomplished
        project_path: Project whose current session to end when no id is given
    """
    if not session_id and project_path:
        session_id = active_sessions.get(project_path)
    if not session_id:
        return "error: session_id required"

    session = store.end_session(session_id, summary)
    if session is None:
        return SESSION_NOT_FOUND
    return f"session ended: {session.display_name}"


@mcp.tool()
def list_sessions(
    project_path: str,
    active_only: bool = True,
    limit: int = 10,
) -> str:
    """List a project's sessions, most recent first.

    Args:
        project_path: Absolute path to the project
        active_only: Only sessions that have not ended (default true)
        limit: Maximum sessions (default 10)
    """
    sessions = store.list_sessions(project_path, active_only=active_only, limit=limit)
    if not sessions:
        return "no sessions"

    current = active_sessions.get(project_path)
    lines = []
    for s in sessions:
        status = "●" if s.active else "○"
        marker = " *" if s.id == current else ""
        lines.append(
            f"{status} {s.display_name} ({format_relative_time(s.started_at)}) by {s.started_by}{marker}"
        )
    return "\n".join(lines)


@mcp.tool()
def switch_session(session_id: str) -> str:
    """Attach new events of the session's project to this session.

    Switching to an ended session does not reactivate it.

    Args:
        session_id: Session to switch to
    """
    session = store.get_session(session_id)
    if session is None:
        return SESSION_NOT_FOUND
    active_sessions.set(session.project_path, session.id)
    return f"switched to: {session.display_name}"


@mcp.tool()
def get_tags(project_path: str, with_counts: bool = True) -> str:
    """List the tags used in a project.

    Args:
        project_path: Absolute path to the project
        with_counts: Include how many events carry each tag (default true)
    """
    counts = store.get_tag_counts(project_path)
    if not counts:
        return "no tags found"
    if with_counts:
        return "tags:\n" + "\n".join(f"{tag} ({count})" for tag, count in counts.items())
    return "tags: " + ", ".join(sorted(counts))


# ── Knowledge ────────────────────────────────────────────────────


@mcp.tool()
def save_knowledge(
    project_path: str,
    knowledge_type: str,
    title: str,
    content: str,
    source_event_id: int | None = None,
    confidence: float = 1.0,
    metadata: dict[str, Any] | None = None,
) -> dict:
    """Save a distilled insight about the project for future sessions.

    Args:
        project_path: Absolute path to the project
        knowledge_type: decision, pitfall, constraint or convention
        title: Short unique title (max 200 characters)
        content: The full insight
        source_event_id: Timeline event this was derived from
        confidence: How sure the agent is, 0 to 1 (default 1.0)
        metadata: Any extra structured data
    """
    try:
        obj = knowledge.save_knowledge(
            project_path,
            knowledge_type,
            title,
            content,
            source_event_id=source_event_id,
            confidence=confidence,
            metadata=metadata,
        )
    except DuplicateKnowledgeError as exc:
        return {"success": False, "duplicate": True, "error": str(exc)}
    except KnowledgeError as exc:
        return {"success": False, "duplicate": False, "error": str(exc)}
    return {"success": True, "id": obj.id}


@mcp.tool()
def search_project_knowledge(
    project_path: str,
    intent: str = "unknown",
    query: str | None = None,
    max_results: int = 10,
) -> dict:
    """Find project knowledge relevant to what you are about to do.

    Args:
        project_path: Absolute path to the project
        intent: debugging, feature, refactor, test or unknown
        query: Optional words to look for in titles and content
        max_results: Maximum results (default 10)
    """
    results = knowledge.search(project_path, intent, query=query, max_results=max_results)
    return {"results": [r.model_dump(mode="json") for r in results]}


def serve() -> None:
    """Run the server over stdio, dropping expired events first if configured."""
    cfg = get_config()
    if cfg.auto_cleanup:
        cleaned = store.cleanup_old_events(cfg.retention_hours, archive=cfg.archive_before_delete)
        if cleaned:
            logger.info("Cleaned %d old events", cleaned)
    logger.info("Wormhole MCP server started")
    mcp.run()
