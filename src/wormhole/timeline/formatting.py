"""Render timeline events as compact text for agents."""

import json
from datetime import datetime, timezone
from typing import Any

from wormhole.config import DetailLevel
from wormhole.timeline.models import (
    CmdRunPayload,
    DecisionPayload,
    EventPayload,
    FeedbackPayload,
    FileEditPayload,
    PlanOutputPayload,
    SessionStartPayload,
    TestResultPayload,
    TimelineEvent,
    TodosPayload,
    parse_payload,
)


def format_relative_time(timestamp: datetime, now: datetime | None = None) -> str:
    """Age of a timestamp as ``5m``, ``2h`` or ``1d``."""
    now = now or datetime.now(timezone.utc)
    minutes = max(0, int((now - timestamp).total_seconds() // 60))
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


def truncate_payload(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def short_agent(agent_id: str) -> str:
    """``claude-code`` -> ``claude``."""
    return agent_id.split("-")[0]


def _exit_status(exit_code: Any) -> str:
    return "✓" if exit_code == 0 else f"✗ {exit_code if exit_code is not None else '?'}"


def _extra_json(payload: EventPayload) -> str:
    return json.dumps(payload.model_dump(exclude_none=True))


def format_event_compact(event: TimelineEvent) -> str:
    time = format_relative_time(event.timestamp)
    prefix = f"[{time}] {short_agent(event.agent_id)}:"
    payload = event.parsed_payload()
    if payload is None:
        return f"{prefix} {event.action}"

    if isinstance(payload, CmdRunPayload):
        out = f" {truncate_payload(payload.output, 30)}" if payload.output else ""
        return f"{prefix} {truncate_payload(payload.command, 40)} → {_exit_status(payload.exit_code)}{out}"
    if isinstance(payload, FileEditPayload):
        desc = f' "{truncate_payload(payload.description, 30)}"' if payload.description else ""
        diff = " [+diff]" if payload.diff else ""
        return f"{prefix} edit {payload.file_path or 'unknown'}{desc}{diff}"
    if isinstance(payload, DecisionPayload):
        return f'{prefix} decided "{truncate_payload(payload.decision, 50)}"'
    if isinstance(payload, TestResultPayload):
        status = "✓" if payload.status == "passed" else "✗"
        count = f" ({payload.failed_count} failed)" if payload.failed_count else ""
        return f"{prefix} {payload.test_suite or 'tests'} {status}{count}"
    if isinstance(payload, FeedbackPayload):
        note = f" - {truncate_payload(payload.user_note, 30)}" if payload.user_note else ""
        return f"{prefix} feedback {payload.user_response or 'unknown'}{note}"
    if isinstance(payload, SessionStartPayload):
        return f'{prefix} ▸ session "{payload.name or "unnamed"}"'
    if isinstance(payload, TodosPayload):
        return f"{prefix} todos {payload.pending_count}/{len(payload.items)} pending"
    if isinstance(payload, PlanOutputPayload):
        title = truncate_payload(payload.title or "untitled", 40)
        return f"{prefix} {payload.type or 'plan'}: {title}"
    return f"{prefix} {event.action} {truncate_payload(_extra_json(payload), 50)}"


def format_event_normal(event: TimelineEvent) -> str:
    time = format_relative_time(event.timestamp)
    header = f"[{time}] {event.agent_id}: {event.action}"
    payload = event.parsed_payload()
    if payload is None:
        return header

    lines = [header]
    if isinstance(payload, CmdRunPayload):
        lines.append(f"  {payload.command or 'unknown'}")
        if payload.exit_code is not None:
            lines.append(f"  exit: {payload.exit_code}")
        if payload.output:
            lines.append(f"  {truncate_payload(payload.output, 100)}")
    elif isinstance(payload, FileEditPayload):
        lines.append(f"  {payload.file_path or 'unknown'}")
        if payload.description:
            lines.append(f"  {payload.description}")
        if payload.diff:
            lines.append("  diff:")
            lines.extend(f"    {line}" for line in payload.diff.split("\n"))
    elif isinstance(payload, DecisionPayload):
        lines.append(f"  {payload.decision or 'unknown'}")
        if payload.rationale:
            lines.append(f"  rationale: {truncate_payload(payload.rationale, 80)}")
    elif isinstance(payload, TestResultPayload):
        lines.append(f"  {payload.test_suite}: {payload.status}")
        if payload.summary:
            lines.append(f"  {truncate_payload(payload.summary, 80)}")
    elif isinstance(payload, FeedbackPayload):
        lines.append(f"  {payload.user_response}: {payload.agent_suggestion or ''}")
        if payload.user_note:
            lines.append(f"  note: {truncate_payload(payload.user_note, 80)}")
    else:
        lines.append(f"  {truncate_payload(_extra_json(payload), 100)}")

    return "\n".join(lines)


def format_event_full(event: TimelineEvent) -> str:
    time = format_relative_time(event.timestamp)
    return f"[{time}] {event.agent_id}: {event.action}\n{event.payload}"


def format_events(events: list[TimelineEvent], detail: DetailLevel, cursor: str | None) -> str:
    """Render a query result at the requested detail level."""
    if not events:
        return "no recent activity"

    if detail == "normal":
        output = "\n\n".join(format_event_normal(e) for e in events)
    elif detail == "full":
        output = "\n\n---\n\n".join(format_event_full(e) for e in events)
    else:
        output = "\n".join(format_event_compact(e) for e in events)

    if cursor:
        output += f"\ncursor: {cursor}"
    return output


def summarize_logged(action: str, content: dict[str, Any]) -> str:
    """One-line confirmation for a freshly logged event."""
    payload = parse_payload(action, json.dumps(content))

    if isinstance(payload, CmdRunPayload):
        return f"{truncate_payload(payload.command, 30)} → {_exit_status(payload.exit_code)}"
    if isinstance(payload, FileEditPayload):
        return f"edit {payload.file_path or 'unknown'}"
    if isinstance(payload, DecisionPayload):
        return f"decided: {truncate_payload(payload.decision, 40)}"
    if isinstance(payload, TestResultPayload):
        status = "✓" if payload.status == "passed" else "✗"
        return f"{payload.test_suite or 'tests'} {status}"
    if isinstance(payload, FeedbackPayload):
        return f"feedback: {payload.user_response or 'unknown'}"
    if isinstance(payload, TodosPayload):
        return f"todos: {payload.pending_count}/{len(payload.items)} pending"
    if isinstance(payload, PlanOutputPayload):
        return f"{payload.type or 'plan'}: {truncate_payload(payload.title or 'untitled', 30)}"
    return action


def extract_file_paths(event: TimelineEvent) -> list[str]:
    payload = event.parsed_payload()
    return payload.file_paths() if payload else []


def is_event_relevant(event: TimelineEvent, related_to: list[str]) -> bool:
    """True if the event touches any of the given files (substring either way)."""
    if not related_to:
        return True
    paths = extract_file_paths(event)
    return any(p in r or r in p for p in paths for r in related_to)
