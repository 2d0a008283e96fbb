"""Decide whether logged file edits still match the files on disk.

A ``file_edit`` event carries the diff its agent produced. By the time
another agent reads the timeline the file may have been edited again or
reverted, so before an edit is shown it is checked against the live file:

* every line the diff removed must be gone from the file, and
* enough of the lines it added must still be present, allowing for
  reformatting and moved lines.

Files are only read at query time, never when an event is logged.
"""

import logging
import math
from pathlib import Path
from typing import Callable

from wormhole.timeline.models import FileEditPayload, TimelineEvent

logger = logging.getLogger(__name__)

# Fraction of added lines that must still be found in the file.
PATCH_MATCH_THRESHOLD = 0.6

FileReader = Callable[[Path], str]


def read_file(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def extract_patch(diff: str | None) -> str | None:
    """Keep the added, removed and context lines of a unified diff.

    File and hunk headers are dropped. Returns None when nothing is left.
    """
    if not diff:
        return None

    patch_lines = []
    for line in diff.split("\n"):
        if line.startswith("+") and not line.startswith("+++"):
            patch_lines.append(line)
        elif line.startswith("-") and not line.startswith("---"):
            patch_lines.append(line)
        elif line.startswith(" "):
            patch_lines.append(line)

    return "\n".join(patch_lines) if patch_lines else None


def _resolve(file_path: str, project_path: str) -> Path:
    path = Path(file_path)
    if path.is_absolute():
        return path
    return Path(project_path) / path


def _line_matches(added: str, exact: set[str], current: list[str]) -> bool:
    if added in exact:
        return True
    return any(added in line or line in added for line in current)


def validate_patch(
    file_path: str,
    patch: str | None,
    project_path: str,
    reader: FileReader = read_file,
) -> bool:
    """Return True if ``patch`` still describes the file at ``file_path``."""
    if not patch:
        return True

    path = _resolve(file_path, project_path)
    try:
        content = reader(path)
    except FileNotFoundError:
        logger.debug("Edited file no longer exists: %s", path)
        return False
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Could not read %s for staleness check: %s", path, exc)
        return False

    current_lines = [line.strip() for line in content.split("\n")]
    exact = set(current_lines)
    # Blank lines are substrings of everything; keep them out of fuzzy matching.
    fuzzy_candidates = [line for line in exact if line]

    added: list[str] = []
    for line in patch.split("\n"):
        if line.startswith("+") and not line.startswith("+++"):
            added.append(line[1:].strip())
        elif line.startswith("-") and not line.startswith("---"):
            removed = line[1:].strip()
            if removed and removed in content:
                return False

    if not added:
        return True

    # Blank added lines count toward the total but never match.
    matches = sum(1 for text in added if text and _line_matches(text, exact, fuzzy_candidates))
    threshold = math.ceil(len(added) * PATCH_MATCH_THRESHOLD)
    return matches >= threshold


def _is_valid_edit(event: TimelineEvent, project_path: str, reader: FileReader) -> bool:
    payload = event.parsed_payload()
    if not isinstance(payload, FileEditPayload):
        return True
    if not payload.file_path or not payload.diff:
        return True
    return validate_patch(payload.file_path, extract_patch(payload.diff), project_path, reader)


def partition_file_edits(
    events: list[TimelineEvent],
    project_path: str,
    reader: FileReader = read_file,
) -> tuple[list[TimelineEvent], list[TimelineEvent]]:
    """Split events into those to show and ``file_edit`` events that just went stale.

    Events already flagged as rejected are dropped without being re-checked
    and appear in neither list.
    """
    kept: list[TimelineEvent] = []
    stale: list[TimelineEvent] = []
    for event in events:
        if event.action != "file_edit":
            kept.append(event)
        elif event.rejected:
            continue
        elif _is_valid_edit(event, project_path, reader):
            kept.append(event)
        else:
            stale.append(event)
    return kept, stale


def filter_stale_file_edits(
    events: list[TimelineEvent],
    project_path: str,
    reader: FileReader = read_file,
) -> list[TimelineEvent]:
    """Drop ``file_edit`` events whose recorded diff no longer matches the file."""
    kept, _ = partition_file_edits(events, project_path, reader)
    return kept
