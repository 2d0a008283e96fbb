"""Write timeline events to JSON archive files before they are deleted."""

import json
import re
import time
from pathlib import Path

from wormhole.timeline.models import TimelineEvent


def archive_filename(label: str = "") -> str:
    stamp = int(time.time() * 1000)
    safe = re.sub(r"[^a-zA-Z0-9-]", "_", label)
    return f"archive-{safe}-{stamp}.json" if safe else f"archive-{stamp}.json"


def archive_events(events: list[TimelineEvent], archive_dir: Path, label: str = "") -> Path | None:
    """Serialize events to a new file in ``archive_dir``.

    Returns the written path, or None when there was nothing to archive.
    """
    if not events:
        return None

    archive_dir.mkdir(parents=True, exist_ok=True)
    path = archive_dir / archive_filename(label)
    path.write_text(json.dumps([e.model_dump(mode="json") for e in events], indent=2) + "\n")
    return path
