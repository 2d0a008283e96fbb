"""Detect files edited by more than one agent within a time window."""

from datetime import datetime, timedelta, timezone

from wormhole.timeline.models import FileEditPayload, TimelineEvent
from wormhole.timeline.staleness import FileReader, filter_stale_file_edits, read_file
from wormhole.timeline.store import TimelineStore


def _matches_any(file_path: str, files: list[str]) -> bool:
    return any(f in file_path or file_path in f for f in files)


def group_edits_by_file(
    events: list[TimelineEvent],
    files: list[str] | None = None,
) -> dict[str, list[TimelineEvent]]:
    """Group ``file_edit`` events by the exact path in their payload.

    Events whose payload has no usable ``file_path`` are skipped.
    """
    groups: dict[str, list[TimelineEvent]] = {}
    for event in events:
        payload = event.parsed_payload()
        if not isinstance(payload, FileEditPayload) or not payload.file_path:
            continue
        if files and not _matches_any(payload.file_path, files):
            continue
        groups.setdefault(payload.file_path, []).append(event)
    return groups


def _agent_count(events: list[TimelineEvent]) -> int:
    return len({e.agent_id for e in events})


def find_conflicts(
    store: TimelineStore,
    project_path: str,
    time_window_minutes: int = 60,
    files: list[str] | None = None,
    reader: FileReader = read_file,
) -> dict[str, list[TimelineEvent]]:
    """Map each contested file to the still-valid edits made to it.

    A file is contested when at least two distinct agents edited it within
    the window. Edits that no longer match the file are discarded, and a
    file is only reported if two or more valid edits remain.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=time_window_minutes)
    events = store.get_file_edits_since(project_path, cutoff)

    conflicts: dict[str, list[TimelineEvent]] = {}
    for file_path, edits in group_edits_by_file(events, files).items():
        if _agent_count(edits) < 2:
            continue
        valid = filter_stale_file_edits(edits, project_path, reader)
        if len(valid) >= 2:
            conflicts[file_path] = valid
    return conflicts
