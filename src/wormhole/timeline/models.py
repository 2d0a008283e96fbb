"""Timeline data models: events, sessions, and action payloads."""

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CURSOR_PREFIX = "evt_"


class TimelineEvent(BaseModel):
    """A single fact written to the shared timeline."""

    id: int
    agent_id: str
    action: str
    payload: str = Field(description="Raw JSON text as it was logged")
    timestamp: datetime
    project_path: str
    isolated: bool = False
    session_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    rejected: bool = False

    @property
    def cursor(self) -> str:
        return make_cursor(self.id)

    def parsed_payload(self) -> "EventPayload | None":
        return parse_payload(self.action, self.payload)


class Session(BaseModel):
    """A named unit of work within a project."""

    id: str
    project_path: str
    name: str | None = None
    description: str | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: datetime | None = None
    started_by: str
    summary: str | None = None
    active: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.id[:8]


class QueryResult(BaseModel):
    events: list[TimelineEvent] = Field(default_factory=list)
    cursor: str | None = None


def make_cursor(event_id: int) -> str:
    return f"{CURSOR_PREFIX}{event_id}"


def parse_cursor(cursor: str | None) -> int | None:
    """Return the event id encoded in a cursor, or None if it is malformed."""
    if not cursor:
        return None
    raw = cursor[len(CURSOR_PREFIX):] if cursor.startswith(CURSOR_PREFIX) else cursor
    if not (raw.isascii() and raw.isdigit()):
        return None
    return int(raw)


# ── Payload variants ─────────────────────────────────────────────


class EventPayload(BaseModel):
    """Structured payload of an event. Unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    def file_paths(self) -> list[str]:
        """Files this payload refers to, used for relevance filtering."""
        paths: list[str] = []
        extra = self.model_extra or {}
        for key in ("related_files", "context_files"):
            value = extra.get(key)
            if isinstance(value, list):
                paths.extend(str(v) for v in value)
        return paths


class CmdRunPayload(EventPayload):
    command: str = ""
    output: str | None = None
    exit_code: int | None = None


class FileEditPayload(EventPayload):
    file_path: str | None = None
    description: str | None = None
    diff: str | None = None

    def file_paths(self) -> list[str]:
        paths = [self.file_path] if self.file_path else []
        return paths + super().file_paths()


class DecisionPayload(EventPayload):
    decision: str = ""
    rationale: str | None = None
    alternatives: Any = None


class TestResultPayload(EventPayload):
    test_suite: str | None = None
    status: str | None = None
    summary: str | None = None
    failed_count: int | None = None


class FeedbackPayload(EventPayload):
    agent_suggestion: str | None = None
    user_response: str | None = None
    user_note: str | None = None


class TodosPayload(EventPayload):
    items: list[Any] = Field(default_factory=list)

    @property
    def pending_count(self) -> int:
        return sum(
            1 for item in self.items if not (isinstance(item, dict) and item.get("status") == "done")
        )


class PlanOutputPayload(EventPayload):
    title: str | None = None
    type: str | None = None


class SessionStartPayload(EventPayload):
    session_id: str | None = None
    name: str | None = None


class CustomPayload(EventPayload):
    """Payload of an action with no known shape; keeps the raw data."""


PAYLOAD_TYPES: dict[str, type[EventPayload]] = {
    "cmd_run": CmdRunPayload,
    "file_edit": FileEditPayload,
    "decision": DecisionPayload,
    "test_result": TestResultPayload,
    "feedback": FeedbackPayload,
    "todos": TodosPayload,
    "plan_output": PlanOutputPayload,
    "session_start": SessionStartPayload,
}


def parse_payload(action: str, raw: str) -> EventPayload | None:
    """Parse a raw payload into the variant for ``action``.

    Returns None when the text is not a JSON object; callers treat that as
    "no extractable data". Fields with the wrong type are dropped so the
    rest of the payload stays usable.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None

    model = PAYLOAD_TYPES.get(action, CustomPayload)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        bad_fields = {err["loc"][0] for err in exc.errors() if err["loc"]}

    cleaned = {key: value for key, value in data.items() if key not in bad_fields}
    try:
        return model.model_validate(cleaned)
    except ValidationError:
        return None
